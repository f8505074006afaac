"""
PrimitiveRuntime: the single owned entry point for all interfaces.

    CLI ----+
    API ----+--> PrimitiveRuntime --> registry (lifecycle) / executor (invocation)
    Tests --+

One instance owns one store, one registry and one executor. Construct it,
call ``initialize()`` (or ``load_catalog()``), and ``close()`` when done.
There is no module-level instance; callers that want one hold it themselves.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .cache import HandlerCache
from .executor import (
    DEFAULT_MAX_OUTPUT_BYTES,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStats,
    PreviewResult,
    PrimitiveExecutor,
    PrimitiveLike,
)
from .registry import InitializeResult, MountedPrimitive, OperationResult, PrimitiveRegistry
from .sandbox import CompiledHandler
from .schema import (
    DEFAULT_TIMEOUT_MS,
    CreatePluginRequest,
    CreatePrimitiveRequest,
    ExecutionRecord,
    PluginInfo,
    PrimitiveInfo,
    RegistryStats,
    UpdatePrimitiveRequest,
)
from .store import PrimitiveStore


class PrimitiveRuntime:
    """
    Owned runtime instance exposing the whole public surface.

    Example:
        runtime = PrimitiveRuntime("primitives.db")
        runtime.initialize()
        result = asyncio.run(runtime.execute_by_id_or_name("format_text", {...}))
        runtime.close()
    """

    def __init__(
        self,
        db_path: str,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ):
        """
        Args:
            db_path: Path to the SQLite database (created if missing).
            default_timeout_ms: Timeout for primitives that do not declare one.
            max_output_bytes: Cap on the serialized size of a handler result.
        """
        self.db_path = db_path
        self.store = PrimitiveStore(db_path)
        self.registry = PrimitiveRegistry(self.store, HandlerCache())
        self.executor = PrimitiveExecutor(
            self.registry,
            self.store,
            default_timeout_ms=default_timeout_ms,
            max_output_bytes=max_output_bytes,
        )

    @classmethod
    def from_config(cls, config: Any) -> "PrimitiveRuntime":
        """Build from a RuntimeConfig (or anything with the same attributes)."""
        return cls(
            config.db_path,
            default_timeout_ms=config.default_timeout_ms,
            max_output_bytes=config.max_output_bytes,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> InitializeResult:
        return self.registry.initialize()

    def load_catalog(self, entries: Optional[Sequence[Mapping[str, Any]]] = None) -> Any:
        """Upsert built-in primitives, then initialize. Returns a CatalogLoadResult."""
        from ..catalog import load_builtin_primitives

        return load_builtin_primitives(self.registry, self.store, entries)

    def reset(self) -> None:
        self.registry.reset()

    def close(self) -> None:
        self.registry.reset()
        self.store.close()

    # =========================================================================
    # Registry surface
    # =========================================================================

    def create_primitive(self, request: Union[CreatePrimitiveRequest, Mapping[str, Any]]) -> OperationResult:
        return self.registry.create_primitive(request)

    def update_primitive(
        self, primitive_id: str, patch: Union[UpdatePrimitiveRequest, Mapping[str, Any]]
    ) -> OperationResult:
        return self.registry.update_primitive(primitive_id, patch)

    def delete_primitive(self, primitive_id: str, force: bool = False) -> OperationResult:
        return self.registry.delete_primitive(primitive_id, force=force)

    def mount_primitive(self, primitive_id: str, config: Optional[Dict[str, Any]] = None) -> OperationResult:
        return self.registry.mount_primitive(primitive_id, config=config)

    def dismount_primitive(self, primitive_id: str) -> OperationResult:
        return self.registry.dismount_primitive(primitive_id)

    def list_primitives(self, filter: str = "all", **filters: Any) -> List[PrimitiveInfo]:
        return self.registry.list_primitives(filter, **filters)

    def get_mounted_primitive(self, id_or_name: str) -> Optional[MountedPrimitive]:
        return self.registry.get_mounted_primitive(id_or_name)

    def get_compiled_handler(self, primitive_id: str) -> Optional[CompiledHandler]:
        return self.registry.get_compiled_handler(primitive_id)

    def record_invocation(self, primitive_id: str) -> None:
        self.registry.record_invocation(primitive_id)

    def create_plugin(self, request: Union[CreatePluginRequest, Mapping[str, Any]]) -> OperationResult:
        return self.registry.create_plugin(request)

    def set_plugin_enabled(self, plugin_id: str, enabled: bool) -> OperationResult:
        return self.registry.set_plugin_enabled(plugin_id, enabled)

    def delete_plugin(self, plugin_id: str) -> OperationResult:
        return self.registry.delete_plugin(plugin_id)

    def list_plugins(self, enabled: Optional[bool] = None, search: Optional[str] = None) -> List[PluginInfo]:
        return self.registry.list_plugins(enabled=enabled, search=search)

    def get_stats(self) -> RegistryStats:
        return self.registry.get_stats()

    # =========================================================================
    # Execution surface
    # =========================================================================

    async def execute_primitive(
        self,
        primitive: PrimitiveLike,
        args: Optional[Dict[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        return await self.executor.execute(primitive, args, context, options)

    async def test_primitive(
        self,
        primitive: PrimitiveLike,
        test_input: Dict[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> PreviewResult:
        return await self.executor.test_primitive(primitive, test_input, context)

    async def execute_by_id_or_name(
        self,
        id_or_name: str,
        args: Optional[Dict[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        return await self.executor.execute_by_id_or_name(id_or_name, args, context, options)

    def get_execution_stats(self, primitive_id: str) -> ExecutionStats:
        return self.executor.get_execution_stats(primitive_id)

    def get_recent_executions(self, primitive_id: str, limit: int = 10) -> List[ExecutionRecord]:
        return self.executor.get_recent_executions(primitive_id, limit=limit)
