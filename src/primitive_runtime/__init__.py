"""
primitive-runtime: registration, sandboxed compilation and bounded execution
of user-authored primitives.

Public API re-exports from kernel/ (machinery) and catalog/ (vocabulary).
"""
from .kernel.errors import (
    CompilationError,
    ConflictError,
    DuplicateError,
    HandlerError,
    HandlerTimeoutError,
    NotFoundError,
    OutputTooLargeError,
    PersistenceError,
    PrimitiveRuntimeError,
    SecurityError,
    ValidationError,
)
from .kernel.schema import (
    CreatePluginRequest,
    CreatePrimitiveRequest,
    ExecutionContext,
    ExecutionRecord,
    InputSchema,
    PluginDefinition,
    PrimitiveDefinition,
    UpdatePrimitiveRequest,
)
from .kernel.security import scan
from .kernel.validation import validate
from .kernel.sandbox import compile_handler
from .kernel.cache import HandlerCache
from .kernel.store import PrimitiveStore
from .kernel.registry import PrimitiveRegistry
from .kernel.executor import ExecutionOptions, ExecutionResult, PrimitiveExecutor
from .kernel.engine import PrimitiveRuntime
from .catalog import load_builtin_primitives
from .config import RuntimeConfig

__all__ = [
    # Errors
    "CompilationError",
    "ConflictError",
    "DuplicateError",
    "HandlerError",
    "HandlerTimeoutError",
    "NotFoundError",
    "OutputTooLargeError",
    "PersistenceError",
    "PrimitiveRuntimeError",
    "SecurityError",
    "ValidationError",
    # Schema
    "CreatePluginRequest",
    "CreatePrimitiveRequest",
    "ExecutionContext",
    "ExecutionRecord",
    "InputSchema",
    "PluginDefinition",
    "PrimitiveDefinition",
    "UpdatePrimitiveRequest",
    # Components
    "scan",
    "validate",
    "compile_handler",
    "HandlerCache",
    "PrimitiveStore",
    "PrimitiveRegistry",
    "ExecutionOptions",
    "ExecutionResult",
    "PrimitiveExecutor",
    # Engine
    "PrimitiveRuntime",
    "load_builtin_primitives",
    "RuntimeConfig",
]
