"""
Kernel: the machinery of the primitive runtime.

This package contains the execution infrastructure:
- errors: Error taxonomy with error kinds
- schema: Definition, context and record models
- security: Textual screening of handler bodies
- validation: Argument checks against input schemas
- sandbox: Compilation of handler text into restricted callables
- cache: Compiled handler cache
- store: SQLite persistence
- registry: Definition and mount lifecycle
- executor: Time- and size-bounded invocation with telemetry
- engine: The owned runtime instance

The kernel is distinct from catalog (the built-in vocabulary).
"""
from .errors import (
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
from .schema import (
    CreatePluginRequest,
    CreatePrimitiveRequest,
    ExecutionContext,
    ExecutionRecord,
    InputSchema,
    PluginDefinition,
    PluginInfo,
    PrimitiveDefinition,
    PrimitiveInfo,
    RegistryStats,
    UpdatePrimitiveRequest,
)
from .security import SecurityReport, scan
from .validation import ValidationReport, validate
from .sandbox import CompiledHandler, compile_handler
from .cache import HandlerCache
from .store import PrimitiveStore
from .registry import InitializeResult, MountedPrimitive, OperationResult, PrimitiveRegistry
from .executor import (
    ExecutionOptions,
    ExecutionResult,
    ExecutionStats,
    PreviewResult,
    PrimitiveExecutor,
)
from .engine import PrimitiveRuntime

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
    "PluginInfo",
    "PrimitiveDefinition",
    "PrimitiveInfo",
    "RegistryStats",
    "UpdatePrimitiveRequest",
    # Screening
    "SecurityReport",
    "scan",
    "ValidationReport",
    "validate",
    # Compilation
    "CompiledHandler",
    "compile_handler",
    "HandlerCache",
    # Store
    "PrimitiveStore",
    # Registry
    "InitializeResult",
    "MountedPrimitive",
    "OperationResult",
    "PrimitiveRegistry",
    # Executor
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionStats",
    "PreviewResult",
    "PrimitiveExecutor",
    # Engine
    "PrimitiveRuntime",
]
