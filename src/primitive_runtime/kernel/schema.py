from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_TIMEOUT_MS = 30_000
INITIAL_VERSION = "1.0.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def increment_version(version: str) -> str:
    """Bump the patch component of a semantic version string.

    Anything that does not parse as MAJOR.MINOR.PATCH restarts at 1.0.1 so
    the result still sorts after the initial version.
    """
    match = re.fullmatch(r"(\d+)\.(\d+)\.(\d+)", version.strip())
    if not match:
        return "1.0.1"
    major, minor, patch = (int(part) for part in match.groups())
    return f"{major}.{minor}.{patch + 1}"


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug."""
    text = text.lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


class InputSchema(BaseModel):
    """Declared shape of a primitive's arguments (a JSON Schema subset)."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = "object"
    properties: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additional_properties: bool = Field(default=True, alias="additionalProperties")


class PrimitiveDefinition(BaseModel):
    id: str
    name: str
    version: str = INITIAL_VERSION
    description: str = ""
    input_schema: InputSchema = Field(default_factory=InputSchema)
    handler: str
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    author: Optional[str] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    enabled: bool = True
    built_in: bool = False
    plugin_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PluginDefinition(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    version: str = INITIAL_VERSION
    icon: Optional[str] = None
    color: Optional[str] = None
    author: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    config_schema: Optional[Dict[str, Any]] = None
    enabled: bool = False
    installed: bool = True
    built_in: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExecutionContext(BaseModel):
    """Context handed to a handler as its second argument.

    Correlation fields are supplied by the caller (a workflow step, an agent,
    an API request). Unknown caller fields are kept so upstream systems can
    thread their own identifiers through.
    """

    model_config = ConfigDict(extra="allow")

    primitive_id: str
    primitive_name: str
    invocation_id: str
    started_at: datetime = Field(default_factory=utcnow)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    debug: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    workflow_execution_id: Optional[str] = None
    workflow_id: Optional[str] = None
    workflow_variables: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    agent_id: Optional[str] = None


class ExecutionRecord(BaseModel):
    """Append-only audit entry for one invocation."""

    id: str
    primitive_id: str
    workflow_execution_id: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Any] = None
    success: bool
    error: Optional[str] = None
    started_at: datetime
    completed_at: datetime
    execution_time_ms: float


# --- Requests ---


class CreatePrimitiveRequest(BaseModel):
    name: str
    description: str = ""
    input_schema: InputSchema = Field(default_factory=InputSchema)
    handler: str
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    author: Optional[str] = None
    timeout_ms: Optional[int] = None
    plugin_id: Optional[str] = None
    built_in: bool = False
    auto_mount: bool = True


class UpdatePrimitiveRequest(BaseModel):
    """Patch for an existing primitive; omitted fields keep their value."""

    description: Optional[str] = None
    input_schema: Optional[InputSchema] = None
    handler: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    icon: Optional[str] = None
    author: Optional[str] = None
    timeout_ms: Optional[int] = None
    enabled: Optional[bool] = None


class CreatePluginRequest(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    version: str = INITIAL_VERSION
    icon: Optional[str] = None
    color: Optional[str] = None
    author: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    config_schema: Optional[Dict[str, Any]] = None
    built_in: bool = False


# --- Views ---


class PrimitiveInfo(BaseModel):
    id: str
    name: str
    description: str
    version: str
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    icon: Optional[str] = None
    author: Optional[str] = None
    mounted: bool
    enabled: bool
    built_in: bool = False
    plugin_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_definition(cls, definition: PrimitiveDefinition, mounted: bool) -> "PrimitiveInfo":
        return cls(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            version=definition.version,
            tags=list(definition.tags),
            category=definition.category,
            icon=definition.icon,
            author=definition.author,
            mounted=mounted,
            enabled=definition.enabled,
            built_in=definition.built_in,
            plugin_id=definition.plugin_id,
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )


class PluginInfo(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    version: str
    icon: Optional[str] = None
    color: Optional[str] = None
    author: Optional[str] = None
    enabled: bool
    installed: bool
    built_in: bool
    primitive_count: int = 0
    created_at: datetime
    updated_at: datetime


class RegistryStats(BaseModel):
    primitive_count: int
    mounted_count: int
    plugin_count: int
    enabled_plugin_count: int
    total_executions: int
