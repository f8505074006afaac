"""
Primitive Registry: the owner of definitions, mounts and compiled handlers.

Lifecycle per primitive id:

    unregistered -> defined -> (mounted <-> dismounted) -> deleted

Definitions are persisted through the store and mirrored in memory; mounts and
compiled handlers exist only in memory. Every mutating operation returns an
OperationResult instead of raising, so callers see the error kind and message
of a refusal without handling exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

from .cache import HandlerCache
from .errors import (
    CompilationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    PrimitiveRuntimeError,
    SecurityError,
)
from .sandbox import CompiledHandler, compile_handler
from .schema import (
    DEFAULT_TIMEOUT_MS,
    CreatePluginRequest,
    CreatePrimitiveRequest,
    PluginDefinition,
    PluginInfo,
    PrimitiveDefinition,
    PrimitiveInfo,
    RegistryStats,
    UpdatePrimitiveRequest,
    generate_id,
    increment_version,
    slugify,
    utcnow,
)
from .security import scan
from .store import PrimitiveStore


logger = logging.getLogger(__name__)

LIST_FILTERS = ("all", "mounted", "available")


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


@dataclass
class MountedPrimitive:
    """A definition whose handler is compiled and ready to invoke."""
    definition: PrimitiveDefinition
    handler: CompiledHandler
    mounted_at: datetime = field(default_factory=utcnow)
    invocation_count: int = 0
    last_invoked_at: Optional[datetime] = None
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.definition.version,
            "mounted_at": self.mounted_at.isoformat(),
            "invocation_count": self.invocation_count,
            "last_invoked_at": self.last_invoked_at.isoformat() if self.last_invoked_at else None,
            "is_async": self.handler.is_async,
        }


@dataclass
class OperationResult:
    """Outcome of a registry mutation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, error: Optional[str] = None) -> "OperationResult":
        return cls(success=True, data=data, error=error)

    @classmethod
    def failure(cls, exc: PrimitiveRuntimeError) -> "OperationResult":
        return cls(success=False, error=str(exc), error_kind=exc.error_kind)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "data": _jsonable(self.data)}
        if self.error is not None:
            result["error"] = self.error
        if not self.success:
            result["error_kind"] = self.error_kind
        return result


@dataclass
class InitializeResult:
    loaded: int = 0
    mounted: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"loaded": self.loaded, "mounted": self.mounted, "errors": list(self.errors)}


def _screen(handler_text: str) -> None:
    """Security scan plus compile-only dry run; raises on refusal."""
    report = scan(handler_text)
    if not report.safe:
        raise SecurityError(
            f"Handler security failed: {', '.join(report.blocked)}",
            blocked=report.blocked,
        )
    try:
        compile_handler(handler_text)
    except CompilationError as exc:
        raise CompilationError(f"Handler compilation failed: {exc}") from exc


def _matches_filters(
    definition: PrimitiveDefinition,
    category: Optional[str],
    tags: Optional[Iterable[str]],
    plugin_id: Optional[str],
    search: Optional[str],
) -> bool:
    if category and definition.category != category:
        return False
    if plugin_id and definition.plugin_id != plugin_id:
        return False
    if tags and not set(tags) & set(definition.tags):
        return False
    if search:
        needle = search.lower()
        if needle not in definition.name.lower() and needle not in definition.description.lower():
            return False
    return True


class PrimitiveRegistry:
    """
    Single owned registry instance; construct one per store.

    The three in-memory maps (definitions, mounts, compiled handlers) are only
    ever written here. ``reset()`` tears them down for reloads and tests.
    """

    def __init__(self, store: PrimitiveStore, cache: Optional[HandlerCache] = None) -> None:
        self._store = store
        self._cache = cache if cache is not None else HandlerCache()
        self._definitions: Dict[str, PrimitiveDefinition] = {}
        self._mounted: Dict[str, MountedPrimitive] = {}
        self._initialized = False

    @property
    def store(self) -> PrimitiveStore:
        return self._store

    @property
    def cache(self) -> HandlerCache:
        return self._cache

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> InitializeResult:
        """
        Load every enabled definition from the store and mount it.

        Safe to call repeatedly: once a run has completed, later calls return
        an empty result. A store failure leaves the registry uninitialized so
        the next call retries.
        """
        result = InitializeResult()
        if self._initialized:
            return result

        try:
            definitions = self._store.list_primitives(enabled=True)
        except PrimitiveRuntimeError as exc:
            result.errors.append(f"Failed to initialize registry: {exc}")
            logger.error("Registry initialization failed: %s", exc)
            return result

        for definition in definitions:
            self._definitions[definition.id] = definition
            result.loaded += 1

            if definition.id in self._mounted:
                result.mounted += 1
                continue

            mount = self.mount_primitive(definition.id)
            if mount.success:
                result.mounted += 1
            else:
                result.errors.append(f"Failed to mount {definition.name}: {mount.error}")

        self._initialized = True
        logger.info(
            "Registry initialized: %d loaded, %d mounted, %d errors",
            result.loaded,
            result.mounted,
            len(result.errors),
        )
        return result

    def reset(self) -> None:
        self._definitions.clear()
        self._mounted.clear()
        self._cache.clear()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Primitive management
    # =========================================================================

    def _lookup(self, primitive_id: str) -> Optional[PrimitiveDefinition]:
        definition = self._definitions.get(primitive_id)
        if definition is None:
            definition = self._store.get_primitive(primitive_id)
        return definition

    def create_primitive(
        self, request: Union[CreatePrimitiveRequest, Mapping[str, Any]]
    ) -> OperationResult:
        if not isinstance(request, CreatePrimitiveRequest):
            request = CreatePrimitiveRequest.model_validate(request)

        try:
            _screen(request.handler)

            if self._store.get_primitive_by_name(request.name) is not None:
                raise DuplicateError(f'Primitive with name "{request.name}" already exists')

            if request.plugin_id and self._store.get_plugin(request.plugin_id) is None:
                raise NotFoundError(f"Plugin not found: {request.plugin_id}")

            now = utcnow()
            definition = PrimitiveDefinition(
                id=generate_id("prim"),
                name=request.name,
                description=request.description,
                input_schema=request.input_schema,
                handler=request.handler,
                category=request.category,
                tags=list(request.tags),
                icon=request.icon,
                author=request.author,
                timeout_ms=request.timeout_ms or DEFAULT_TIMEOUT_MS,
                enabled=True,
                built_in=request.built_in,
                plugin_id=request.plugin_id,
                created_at=now,
                updated_at=now,
            )
            self._store.insert_primitive(definition)
        except PrimitiveRuntimeError as exc:
            logger.warning("Refused to create primitive %s: %s", request.name, exc)
            return OperationResult.failure(exc)

        self._definitions[definition.id] = definition
        logger.info("Created primitive %s (%s)", definition.name, definition.id)

        data = {"id": definition.id, "mounted": False}
        if request.auto_mount:
            mount = self.mount_primitive(definition.id)
            if not mount.success:
                return OperationResult.ok(data, error=f"Created but mount failed: {mount.error}")
            data["mounted"] = True
        return OperationResult.ok(data)

    def update_primitive(
        self, primitive_id: str, patch: Union[UpdatePrimitiveRequest, Mapping[str, Any]]
    ) -> OperationResult:
        if not isinstance(patch, UpdatePrimitiveRequest):
            patch = UpdatePrimitiveRequest.model_validate(patch)

        try:
            existing = self._lookup(primitive_id)
            if existing is None:
                raise NotFoundError(f"Primitive not found: {primitive_id}")

            if patch.handler is not None:
                _screen(patch.handler)

            changes = patch.model_dump(exclude_none=True, exclude={"input_schema"})
            if patch.input_schema is not None:
                changes["input_schema"] = patch.input_schema
            changes["version"] = increment_version(existing.version)
            changes["updated_at"] = utcnow()
            definition = existing.model_copy(update=changes)

            if not self._store.update_primitive(definition):
                raise NotFoundError(f"Primitive not found: {primitive_id}")
        except PrimitiveRuntimeError as exc:
            logger.warning("Refused to update primitive %s: %s", primitive_id, exc)
            return OperationResult.failure(exc)

        self._definitions[primitive_id] = definition
        self._cache.invalidate(primitive_id)

        remounted = False
        if primitive_id in self._mounted:
            config = self._mounted[primitive_id].config
            self.dismount_primitive(primitive_id)
            if definition.enabled:
                mount = self.mount_primitive(primitive_id, config=config)
                if not mount.success:
                    return OperationResult.ok(
                        {"id": primitive_id, "version": definition.version, "mounted": False},
                        error=f"Updated but remount failed: {mount.error}",
                    )
                remounted = True

        logger.info("Updated primitive %s to version %s", definition.name, definition.version)
        return OperationResult.ok(
            {"id": primitive_id, "version": definition.version, "mounted": remounted}
        )

    def delete_primitive(self, primitive_id: str, force: bool = False) -> OperationResult:
        if primitive_id in self._mounted:
            if not force:
                exc = ConflictError("Primitive is mounted. Use force=True to dismount and delete.")
                logger.warning("Refused to delete primitive %s: %s", primitive_id, exc)
                return OperationResult.failure(exc)
            self.dismount_primitive(primitive_id)

        try:
            if not self._store.delete_primitive(primitive_id):
                raise NotFoundError(f"Primitive not found: {primitive_id}")
        except PrimitiveRuntimeError as exc:
            return OperationResult.failure(exc)

        self._definitions.pop(primitive_id, None)
        self._cache.invalidate(primitive_id)
        logger.info("Deleted primitive %s", primitive_id)
        return OperationResult.ok({"id": primitive_id})

    # =========================================================================
    # Mounting
    # =========================================================================

    def mount_primitive(
        self, primitive_id: str, config: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        """Mount a defined primitive. Without a config, a plugin-owned primitive gets its plugin's."""
        try:
            definition = self._definitions.get(primitive_id)
            if definition is None:
                raise NotFoundError(f"Primitive not found in cache: {primitive_id}")
            if primitive_id in self._mounted:
                raise DuplicateError(f"Primitive already mounted: {primitive_id}")
            if not definition.enabled:
                raise ConflictError(f"Primitive is disabled: {primitive_id}")

            report = scan(definition.handler)
            if not report.safe:
                raise SecurityError(
                    f"Handler security failed: {', '.join(report.blocked)}",
                    blocked=report.blocked,
                )
            handler = self._cache.get_or_compile(primitive_id, definition.handler)
            if config is None and definition.plugin_id:
                plugin = self._store.get_plugin(definition.plugin_id)
                config = plugin.config if plugin is not None else None
        except PrimitiveRuntimeError as exc:
            logger.warning("Refused to mount primitive %s: %s", primitive_id, exc)
            return OperationResult.failure(exc)

        self._mounted[primitive_id] = MountedPrimitive(
            definition=definition,
            handler=handler,
            config=dict(config or {}),
        )
        logger.info("Mounted primitive %s (%s)", definition.name, primitive_id)
        return OperationResult.ok({"id": primitive_id})

    def dismount_primitive(self, primitive_id: str) -> OperationResult:
        if primitive_id not in self._mounted:
            return OperationResult.failure(NotFoundError(f"Primitive not mounted: {primitive_id}"))

        del self._mounted[primitive_id]
        self._cache.invalidate(primitive_id)
        logger.info("Dismounted primitive %s", primitive_id)
        return OperationResult.ok({"id": primitive_id})

    def get_mounted_primitive(self, id_or_name: str) -> Optional[MountedPrimitive]:
        mounted = self._mounted.get(id_or_name)
        if mounted is not None:
            return mounted
        for candidate in self._mounted.values():
            if candidate.definition.name == id_or_name:
                return candidate
        return None

    def get_mounted_primitives(self) -> List[MountedPrimitive]:
        return list(self._mounted.values())

    def is_mounted(self, primitive_id: str) -> bool:
        return primitive_id in self._mounted

    def get_compiled_handler(self, primitive_id: str) -> Optional[CompiledHandler]:
        mounted = self._mounted.get(primitive_id)
        return mounted.handler if mounted is not None else None

    def record_invocation(self, primitive_id: str) -> None:
        mounted = self._mounted.get(primitive_id)
        if mounted is not None:
            mounted.invocation_count += 1
            mounted.last_invoked_at = utcnow()

    def list_primitives(
        self,
        filter: str = "all",
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        plugin_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[PrimitiveInfo]:
        """
        List primitives as views.

        ``filter`` is one of "all", "mounted" (in-memory mounts only) or
        "available" (enabled but not mounted). Store failures propagate.
        """
        if filter not in LIST_FILTERS:
            raise ValueError(f"Unknown filter {filter!r}; expected one of {', '.join(LIST_FILTERS)}")

        if filter == "mounted":
            return [
                PrimitiveInfo.from_definition(mounted.definition, mounted=True)
                for mounted in sorted(self._mounted.values(), key=lambda m: m.name)
                if _matches_filters(mounted.definition, category, tags, plugin_id, search)
            ]

        infos: List[PrimitiveInfo] = []
        for definition in self._store.list_primitives(
            category=category, tags=tags, plugin_id=plugin_id, search=search
        ):
            is_mounted = definition.id in self._mounted
            if filter == "available" and (is_mounted or not definition.enabled):
                continue
            infos.append(PrimitiveInfo.from_definition(definition, mounted=is_mounted))
        return infos

    # =========================================================================
    # Plugin management
    # =========================================================================

    def create_plugin(self, request: Union[CreatePluginRequest, Mapping[str, Any]]) -> OperationResult:
        if not isinstance(request, CreatePluginRequest):
            request = CreatePluginRequest.model_validate(request)

        slug = request.slug or slugify(request.name)
        try:
            if self._store.find_plugin(request.name, slug) is not None:
                raise DuplicateError("Plugin with name or slug already exists")

            now = utcnow()
            plugin = PluginDefinition(
                id=generate_id("plug"),
                name=request.name,
                slug=slug,
                description=request.description,
                version=request.version,
                icon=request.icon,
                color=request.color,
                author=request.author,
                config=dict(request.config),
                config_schema=request.config_schema,
                enabled=False,
                built_in=request.built_in,
                created_at=now,
                updated_at=now,
            )
            self._store.insert_plugin(plugin)
        except PrimitiveRuntimeError as exc:
            logger.warning("Refused to create plugin %s: %s", request.name, exc)
            return OperationResult.failure(exc)

        logger.info("Created plugin %s (%s)", plugin.name, plugin.id)
        return OperationResult.ok({"id": plugin.id, "slug": plugin.slug})

    def set_plugin_enabled(self, plugin_id: str, enabled: bool) -> OperationResult:
        """Flip a plugin's flag, then mount or dismount its enabled primitives to match."""
        try:
            plugin = self._store.get_plugin(plugin_id)
            if plugin is None:
                raise NotFoundError(f"Plugin not found: {plugin_id}")
            self._store.set_plugin_enabled(plugin_id, enabled, utcnow().isoformat())
            owned = self._store.list_primitives(enabled=True, plugin_id=plugin_id)
        except PrimitiveRuntimeError as exc:
            return OperationResult.failure(exc)

        changed: List[str] = []
        errors: List[str] = []
        for definition in owned:
            self._definitions.setdefault(definition.id, definition)
            if enabled and definition.id not in self._mounted:
                mount = self.mount_primitive(definition.id, config=plugin.config)
                if mount.success:
                    changed.append(definition.id)
                else:
                    errors.append(f"Failed to mount {definition.name}: {mount.error}")
            elif not enabled and definition.id in self._mounted:
                self.dismount_primitive(definition.id)
                changed.append(definition.id)

        logger.info(
            "Plugin %s %s; %d primitives %s",
            plugin.name,
            "enabled" if enabled else "disabled",
            len(changed),
            "mounted" if enabled else "dismounted",
        )
        return OperationResult.ok(
            {"id": plugin_id, "enabled": enabled, "primitives": changed, "errors": errors}
        )

    def delete_plugin(self, plugin_id: str) -> OperationResult:
        try:
            if self._store.get_plugin(plugin_id) is None:
                raise NotFoundError(f"Plugin not found: {plugin_id}")
            owned = self._store.list_primitives(plugin_id=plugin_id)
        except PrimitiveRuntimeError as exc:
            return OperationResult.failure(exc)

        for definition in owned:
            if definition.id in self._mounted:
                self.dismount_primitive(definition.id)
            self._definitions.pop(definition.id, None)
            self._cache.invalidate(definition.id)

        try:
            self._store.delete_plugin(plugin_id)
        except PrimitiveRuntimeError as exc:
            return OperationResult.failure(exc)

        logger.info("Deleted plugin %s with %d primitives", plugin_id, len(owned))
        return OperationResult.ok({"id": plugin_id, "deleted_primitives": len(owned)})

    def list_plugins(
        self, enabled: Optional[bool] = None, search: Optional[str] = None
    ) -> List[PluginInfo]:
        return self._store.list_plugins(enabled=enabled, search=search)

    def get_stats(self) -> RegistryStats:
        return RegistryStats(
            primitive_count=self._store.count_primitives(),
            mounted_count=len(self._mounted),
            plugin_count=self._store.count_plugins(),
            enabled_plugin_count=self._store.count_plugins(enabled=True),
            total_executions=self._store.count_executions(),
        )
