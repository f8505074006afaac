"""
Executor: validated, time-bounded, size-bounded invocation of primitives.

Pipeline for one call:

    validate input -> re-scan handler -> resolve compiled handler
        -> race handler against timer -> measure output -> record telemetry

Every path ends in an ExecutionResult; nothing raised inside the pipeline
escapes to the caller.

Timeout is advisory. Synchronous handlers run on a daemon thread and
asynchronous handlers run as tasks on the caller's loop; when the timer wins,
the caller gets a timeout failure but the handler keeps running until it
finishes on its own. Its eventual result is discarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from pydantic import ValidationError as ModelValidationError

from .errors import (
    HandlerError,
    HandlerTimeoutError,
    NotFoundError,
    OutputTooLargeError,
    PrimitiveRuntimeError,
    SecurityError,
    ValidationError,
)
from .registry import MountedPrimitive, PrimitiveRegistry
from .sandbox import CompiledHandler, fingerprint
from .schema import (
    DEFAULT_TIMEOUT_MS,
    ExecutionContext,
    ExecutionRecord,
    PrimitiveDefinition,
    generate_id,
    utcnow,
)
from .security import scan
from .store import PrimitiveStore
from .validation import validate


logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024

PrimitiveLike = Union[PrimitiveDefinition, MountedPrimitive]


@dataclass
class ExecutionOptions:
    timeout_ms: Optional[int] = None
    skip_validation: bool = False
    skip_security: bool = False
    record_metrics: bool = True
    debug: bool = False
    max_output_bytes: Optional[int] = None


@dataclass
class ExecutionResult:
    success: bool
    execution_time_ms: float
    invocation_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    output_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
            "invocation_id": self.invocation_id,
        }
        if self.success:
            data["result"] = self.result
            data["output_size"] = self.output_size
        else:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        return data


@dataclass
class PreviewResult:
    """Outcome of an authoring preview run: findings plus the execution."""
    success: bool
    execution_time_ms: float
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    security_warnings: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
            "result": self.result,
            "error": self.error,
            "error_kind": self.error_kind,
            "validation_errors": list(self.validation_errors),
            "security_warnings": list(self.security_warnings),
            "blocked": list(self.blocked),
        }


@dataclass
class ExecutionStats:
    total_executions: int
    success_count: int
    error_count: int
    average_execution_time_ms: float
    last_execution: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "average_execution_time_ms": self.average_execution_time_ms,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
        }


def _settle(future: asyncio.Future, outcome: Any, failed: bool) -> None:
    if future.done():
        return
    if failed:
        future.set_exception(outcome)
    else:
        future.set_result(outcome)


def _run_on_thread(
    loop: asyncio.AbstractEventLoop,
    future: asyncio.Future,
    handler: CompiledHandler,
    args: Dict[str, Any],
    context: ExecutionContext,
) -> None:
    try:
        outcome, failed = handler(args, context), False
    except Exception as exc:
        if isinstance(exc, StopIteration):
            exc = RuntimeError("StopIteration raised inside handler")
        outcome, failed = exc, True

    try:
        loop.call_soon_threadsafe(_settle, future, outcome, failed)
    except RuntimeError:
        logger.debug("Dropped result of %s: event loop already closed", context.invocation_id)


def measure_output(value: Any, limit: int) -> int:
    """Serialized size of a handler result in bytes; raises past ``limit``."""
    try:
        encoded = json.dumps(value, default=str)
    except (TypeError, ValueError) as exc:
        raise HandlerError(f"Handler result is not serializable: {exc}") from exc

    size = len(encoded.encode("utf-8"))
    if size > limit:
        raise OutputTooLargeError(f"Output too large: {size} bytes exceeds limit of {limit} bytes")
    return size


class PrimitiveExecutor:
    def __init__(
        self,
        registry: PrimitiveRegistry,
        store: Optional[PrimitiveStore] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self._registry = registry
        self._store = store if store is not None else registry.store
        self.default_timeout_ms = default_timeout_ms
        self.max_output_bytes = max_output_bytes
        # Timed-out invocations still running; held until they settle
        self._orphans: Set[asyncio.Future] = set()

    @property
    def pending_orphans(self) -> int:
        return len(self._orphans)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def execute(
        self,
        primitive: PrimitiveLike,
        args: Optional[Dict[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        options = options or ExecutionOptions()
        args = {} if args is None else args
        mounted = primitive if isinstance(primitive, MountedPrimitive) else None
        definition = mounted.definition if mounted is not None else primitive

        invocation_id = generate_id("exec")
        started_at = utcnow()
        clock = time.perf_counter()
        timeout_ms = options.timeout_ms or definition.timeout_ms or self.default_timeout_ms
        limit = options.max_output_bytes or self.max_output_bytes

        ctx: Optional[ExecutionContext] = None
        value: Any = None
        size: Optional[int] = None
        failure: Optional[PrimitiveRuntimeError] = None
        try:
            ctx = self._build_context(definition, mounted, invocation_id, started_at, timeout_ms, options, context)

            if not options.skip_validation:
                report = validate(args, definition.input_schema)
                if not report.valid:
                    raise ValidationError(
                        "Input validation failed:\n- " + "\n- ".join(report.errors),
                        errors=report.errors,
                    )

            if not options.skip_security:
                security = scan(definition.handler)
                if not security.safe:
                    raise SecurityError(
                        "Handler security validation failed:\n- " + "\n- ".join(security.blocked),
                        blocked=security.blocked,
                    )
                if options.debug and security.warnings:
                    logger.warning(
                        "[%s] Security warnings:\n- %s", definition.name, "\n- ".join(security.warnings)
                    )

            handler = self._resolve_handler(definition, mounted)
            value = await self._invoke(handler, args, ctx, timeout_ms)
            size = measure_output(value, limit)
        except PrimitiveRuntimeError as exc:
            failure = exc
        except Exception as exc:
            logger.exception("Unexpected fault executing %s", definition.name)
            failure = PrimitiveRuntimeError(str(exc) or type(exc).__name__)

        completed_at = utcnow()
        elapsed_ms = (time.perf_counter() - clock) * 1000

        if options.record_metrics:
            self._record(definition, args, value, failure, started_at, completed_at, elapsed_ms, ctx, invocation_id)

        if failure is not None:
            if options.debug:
                logger.info("[%s] %s: %s", definition.name, failure.error_kind, failure)
            return ExecutionResult(
                success=False,
                execution_time_ms=elapsed_ms,
                invocation_id=invocation_id,
                error=str(failure),
                error_kind=failure.error_kind,
            )

        self._registry.record_invocation(definition.id)
        return ExecutionResult(
            success=True,
            execution_time_ms=elapsed_ms,
            invocation_id=invocation_id,
            result=value,
            output_size=size,
        )

    async def test_primitive(
        self,
        primitive: PrimitiveLike,
        test_input: Dict[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> PreviewResult:
        """
        Authoring preview: report schema and security findings, then run.

        Nothing is written to the execution log.
        """
        definition = primitive.definition if isinstance(primitive, MountedPrimitive) else primitive
        clock = time.perf_counter()

        validation = validate(test_input, definition.input_schema)
        security = scan(definition.handler)

        if not validation.valid:
            return PreviewResult(
                success=False,
                execution_time_ms=(time.perf_counter() - clock) * 1000,
                error="Input validation failed",
                error_kind=ValidationError.error_kind,
                validation_errors=validation.errors,
                security_warnings=security.warnings,
            )

        if not security.safe:
            return PreviewResult(
                success=False,
                execution_time_ms=(time.perf_counter() - clock) * 1000,
                error="Handler security check failed",
                error_kind=SecurityError.error_kind,
                security_warnings=security.warnings,
                blocked=security.blocked,
            )

        result = await self.execute(
            primitive,
            test_input,
            context,
            ExecutionOptions(record_metrics=False, debug=True),
        )
        return PreviewResult(
            success=result.success,
            execution_time_ms=result.execution_time_ms,
            result=result.result,
            error=result.error,
            error_kind=result.error_kind,
            security_warnings=security.warnings,
        )

    async def execute_by_id_or_name(
        self,
        id_or_name: str,
        args: Optional[Dict[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        mounted = self._registry.get_mounted_primitive(id_or_name)
        if mounted is None:
            return ExecutionResult(
                success=False,
                execution_time_ms=0.0,
                error=f"Primitive not found or not mounted: {id_or_name}",
                error_kind=NotFoundError.error_kind,
            )
        return await self.execute(mounted, args, context, options)

    def get_execution_stats(self, primitive_id: str) -> ExecutionStats:
        stats = self._store.execution_stats(primitive_id)
        last = stats["last_started"]
        return ExecutionStats(
            total_executions=stats["total"],
            success_count=stats["successes"],
            error_count=stats["total"] - stats["successes"],
            average_execution_time_ms=stats["average_ms"],
            last_execution=datetime.fromisoformat(last) if last else None,
        )

    def get_recent_executions(self, primitive_id: str, limit: int = 10) -> List[ExecutionRecord]:
        return self._store.recent_executions(primitive_id, limit=limit)

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _build_context(
        definition: PrimitiveDefinition,
        mounted: Optional[MountedPrimitive],
        invocation_id: str,
        started_at: datetime,
        timeout_ms: int,
        options: ExecutionOptions,
        caller: Optional[Mapping[str, Any]],
    ) -> ExecutionContext:
        fields: Dict[str, Any] = {"config": dict(mounted.config) if mounted is not None else {}}
        fields.update(caller or {})
        fields.update(
            primitive_id=definition.id,
            primitive_name=definition.name,
            invocation_id=invocation_id,
            started_at=started_at,
            timeout_ms=timeout_ms,
            debug=options.debug,
        )
        try:
            return ExecutionContext.model_validate(fields)
        except ModelValidationError as exc:
            raise ValidationError(f"Invalid execution context: {exc}") from exc

    def _resolve_handler(
        self, definition: PrimitiveDefinition, mounted: Optional[MountedPrimitive]
    ) -> CompiledHandler:
        handler = mounted.handler if mounted is not None else self._registry.get_compiled_handler(definition.id)
        if handler is None or handler.fingerprint != fingerprint(definition.handler):
            handler = self._registry.cache.get_or_compile(definition.id, definition.handler)
        return handler

    async def _invoke(
        self,
        handler: CompiledHandler,
        args: Dict[str, Any],
        context: ExecutionContext,
        timeout_ms: int,
    ) -> Any:
        loop = asyncio.get_running_loop()
        if handler.is_async:
            pending: asyncio.Future = loop.create_task(handler(args, context))
        else:
            pending = loop.create_future()
            worker = threading.Thread(
                target=_run_on_thread,
                args=(loop, pending, handler, args, context),
                name=f"primitive-{context.invocation_id}",
                daemon=True,
            )
            worker.start()

        done, _ = await asyncio.wait({pending}, timeout=timeout_ms / 1000)
        if not done:
            self._orphans.add(pending)
            pending.add_done_callback(self._release_orphan)
            logger.warning(
                "Primitive %s timed out after %dms; handler left running",
                context.primitive_name,
                timeout_ms,
            )
            raise HandlerTimeoutError(f"Execution timeout after {timeout_ms}ms")

        if pending.cancelled():
            raise HandlerError("Handler was cancelled")
        exc = pending.exception()
        if exc is not None:
            raise HandlerError(str(exc) or type(exc).__name__) from exc
        return pending.result()

    def _release_orphan(self, pending: asyncio.Future) -> None:
        self._orphans.discard(pending)
        if not pending.cancelled() and pending.exception() is not None:
            logger.debug("Timed-out handler later failed: %s", pending.exception())

    def _record(
        self,
        definition: PrimitiveDefinition,
        args: Any,
        value: Any,
        failure: Optional[PrimitiveRuntimeError],
        started_at: datetime,
        completed_at: datetime,
        elapsed_ms: float,
        context: Optional[ExecutionContext],
        invocation_id: str,
    ) -> None:
        """Append an execution record; failures are logged and dropped."""
        try:
            record = ExecutionRecord(
                id=invocation_id,
                primitive_id=definition.id,
                workflow_execution_id=context.workflow_execution_id if context else None,
                user_id=context.user_id if context else None,
                agent_id=context.agent_id if context else None,
                input=args if isinstance(args, dict) else {"value": args},
                output=value if failure is None else None,
                success=failure is None,
                error=str(failure) if failure is not None else None,
                started_at=started_at,
                completed_at=completed_at,
                execution_time_ms=elapsed_ms,
            )
            self._store.append_execution(record)
        except (PrimitiveRuntimeError, TypeError, ValueError):
            logger.exception("Failed to record execution %s", invocation_id)
