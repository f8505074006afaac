"""
Primitive Runtime HTTP API.

Exposes registration, mounting, execution and telemetry over HTTP so
workflow engines, agents and admin tools can drive the runtime.

Run with: uvicorn primitive_runtime.api:app --port 8000
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from .config import RuntimeConfig, configure_logging
from .kernel.engine import PrimitiveRuntime
from .kernel.executor import ExecutionOptions
from .kernel.registry import OperationResult
from .kernel.schema import (
    CreatePluginRequest,
    CreatePrimitiveRequest,
    PrimitiveDefinition,
    UpdatePrimitiveRequest,
)

# --- Pydantic Models ---


class ExecuteRequest(BaseModel):
    """Request body for primitive execution."""

    args: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = None
    skip_validation: bool = False
    debug: bool = False


class PreviewRequest(BaseModel):
    """Request body for an authoring preview run."""

    input: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


class PrimitiveListResponse(BaseModel):
    primitives: List[Dict[str, Any]]
    count: int


class PluginListResponse(BaseModel):
    plugins: List[Dict[str, Any]]
    count: int


# --- FastAPI App ---

app = FastAPI(
    title="Primitive Runtime API",
    description="HTTP interface to the primitive execution runtime",
    version="0.1.0",
)

STATUS_BY_KIND = {
    "not_found": 404,
    "duplicate": 409,
    "conflict": 409,
    "persistence_error": 500,
    "internal_error": 500,
}


def get_config() -> RuntimeConfig:
    """Get the runtime configuration from the environment."""
    return RuntimeConfig.from_env()


# --- Engine Singleton ---

_engine: Optional[PrimitiveRuntime] = None


def get_engine() -> PrimitiveRuntime:
    """Get or create the PrimitiveRuntime for this process."""
    global _engine
    if _engine is None:
        config = get_config()
        configure_logging(config.log_level)
        _engine = PrimitiveRuntime.from_config(config)
        _engine.initialize()
    return _engine


@app.on_event("shutdown")
async def shutdown_engine():
    """Clean up engine resources on shutdown."""
    global _engine
    if _engine:
        _engine.close()
        _engine = None


def fail(error_kind: Optional[str], message: Optional[str]) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error_kind or "", 400),
        detail={"error_kind": error_kind, "error_message": message},
    )


def unwrap(result: OperationResult) -> Dict[str, Any]:
    if not result.success:
        raise fail(result.error_kind, result.error)
    return result.to_dict()


def find_primitive(engine: PrimitiveRuntime, id_or_name: str) -> PrimitiveDefinition:
    definition = engine.store.get_primitive(id_or_name) or engine.store.get_primitive_by_name(id_or_name)
    if definition is None:
        raise fail("not_found", f"Primitive not found: {id_or_name}")
    return definition


# --- Endpoints ---


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "primitive-runtime"}


@app.get("/stats")
async def registry_stats():
    return get_engine().get_stats().model_dump()


@app.get("/primitives", response_model=PrimitiveListResponse)
async def list_primitives(
    filter: str = Query("all", pattern="^(all|mounted|available)$"),
    category: Optional[str] = None,
    tag: Optional[List[str]] = Query(None),
    plugin_id: Optional[str] = None,
    search: Optional[str] = None,
):
    """
    List primitives.

    ``filter=mounted`` lists only live mounts; ``filter=available`` lists
    enabled primitives that are not mounted.
    """
    infos = get_engine().list_primitives(
        filter, category=category, tags=tag, plugin_id=plugin_id, search=search
    )
    primitives = [info.model_dump(mode="json") for info in infos]
    return PrimitiveListResponse(primitives=primitives, count=len(primitives))


@app.post("/primitives")
async def create_primitive(request: CreatePrimitiveRequest):
    return unwrap(get_engine().create_primitive(request))


@app.get("/primitives/{primitive_id}")
async def get_primitive(primitive_id: str):
    engine = get_engine()
    definition = find_primitive(engine, primitive_id)
    data = definition.model_dump(mode="json", by_alias=True)
    data["mounted"] = engine.get_mounted_primitive(definition.id) is not None
    return data


@app.patch("/primitives/{primitive_id}")
async def update_primitive(primitive_id: str, patch: UpdatePrimitiveRequest):
    return unwrap(get_engine().update_primitive(primitive_id, patch))


@app.delete("/primitives/{primitive_id}")
async def delete_primitive(primitive_id: str, force: bool = False):
    return unwrap(get_engine().delete_primitive(primitive_id, force=force))


@app.post("/primitives/{primitive_id}/mount")
async def mount_primitive(primitive_id: str):
    return unwrap(get_engine().mount_primitive(primitive_id))


@app.post("/primitives/{primitive_id}/dismount")
async def dismount_primitive(primitive_id: str):
    return unwrap(get_engine().dismount_primitive(primitive_id))


@app.post("/primitives/{id_or_name}/test")
async def preview_primitive(id_or_name: str, request: PreviewRequest):
    """Run a stored primitive with sample input, without recording telemetry."""
    engine = get_engine()
    definition = find_primitive(engine, id_or_name)
    preview = await engine.test_primitive(definition, request.input, request.context)
    return preview.to_dict()


@app.get("/primitives/{id_or_name}/stats")
async def execution_stats(id_or_name: str):
    engine = get_engine()
    definition = find_primitive(engine, id_or_name)
    return {"id": definition.id, "name": definition.name, **engine.get_execution_stats(definition.id).to_dict()}


@app.get("/primitives/{id_or_name}/history")
async def execution_history(id_or_name: str, limit: int = Query(10, ge=1, le=500)):
    engine = get_engine()
    definition = find_primitive(engine, id_or_name)
    records = engine.get_recent_executions(definition.id, limit=limit)
    return {"executions": [record.model_dump(mode="json") for record in records], "count": len(records)}


@app.post("/execute/{id_or_name}")
async def execute(id_or_name: str, request: ExecuteRequest):
    """
    Execute a mounted primitive by id or name.

    Failures (validation, security, timeout, output size, handler errors)
    come back as HTTP errors carrying ``error_kind`` and ``error_message``.
    """
    options = ExecutionOptions(
        timeout_ms=request.timeout_ms,
        skip_validation=request.skip_validation,
        debug=request.debug,
    )
    result = await get_engine().execute_by_id_or_name(id_or_name, request.args, request.context, options)
    if not result.success:
        raise fail(result.error_kind, result.error)
    return result.to_dict()


@app.get("/plugins", response_model=PluginListResponse)
async def list_plugins(enabled: Optional[bool] = None, search: Optional[str] = None):
    plugins = [info.model_dump(mode="json") for info in get_engine().list_plugins(enabled=enabled, search=search)]
    return PluginListResponse(plugins=plugins, count=len(plugins))


@app.post("/plugins")
async def create_plugin(request: CreatePluginRequest):
    return unwrap(get_engine().create_plugin(request))


@app.post("/plugins/{plugin_id}/enable")
async def enable_plugin(plugin_id: str):
    return unwrap(get_engine().set_plugin_enabled(plugin_id, True))


@app.post("/plugins/{plugin_id}/disable")
async def disable_plugin(plugin_id: str):
    return unwrap(get_engine().set_plugin_enabled(plugin_id, False))


@app.delete("/plugins/{plugin_id}")
async def delete_plugin(plugin_id: str):
    return unwrap(get_engine().delete_plugin(plugin_id))
