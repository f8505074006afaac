"""
Error taxonomy for the primitive runtime.

Every failure the runtime can describe is a PrimitiveRuntimeError carrying an
``error_kind`` string. The registry and executor catch these at their
boundary and fold them into result objects; callers see the kind and the
message, never the exception.
"""

from __future__ import annotations


class PrimitiveRuntimeError(Exception):
    """Base class for every runtime failure."""

    error_kind: str = "internal_error"


class ValidationError(PrimitiveRuntimeError):
    """Caller-supplied arguments do not satisfy the declared input schema."""

    error_kind = "validation_error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class SecurityError(PrimitiveRuntimeError):
    """Handler text matches one or more blocked patterns."""

    error_kind = "security_error"

    def __init__(self, message: str, blocked: list[str] | None = None) -> None:
        super().__init__(message)
        self.blocked = list(blocked or [])


class CompilationError(PrimitiveRuntimeError):
    error_kind = "compilation_error"


class HandlerTimeoutError(PrimitiveRuntimeError, TimeoutError):
    error_kind = "timeout"


class HandlerError(PrimitiveRuntimeError):
    """The handler body itself raised."""

    error_kind = "runtime_error"


class OutputTooLargeError(PrimitiveRuntimeError):
    error_kind = "output_too_large"


class NotFoundError(PrimitiveRuntimeError):
    error_kind = "not_found"


class DuplicateError(PrimitiveRuntimeError):
    error_kind = "duplicate"


class ConflictError(PrimitiveRuntimeError):
    """The operation is not allowed in the primitive's current state."""

    error_kind = "conflict"


class PersistenceError(PrimitiveRuntimeError):
    error_kind = "persistence_error"
