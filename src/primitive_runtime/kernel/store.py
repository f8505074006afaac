from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import PersistenceError
from .schema import ExecutionRecord, PluginDefinition, PluginInfo, PrimitiveDefinition


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


class PrimitiveStore:
    """
    SQLite persistence for primitive definitions, plugins and execution records.

    The store is the durable owner of all three; the registry reads it on
    cold start and writes through it on every mutation. Every sqlite3 failure
    surfaces as PersistenceError.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open store at {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        # Required for ON DELETE CASCADE from plugins to primitives
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._ensure_schema()

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def _guard(self, action: str) -> Iterator[sqlite3.Cursor]:
        cur = self._conn.cursor()
        try:
            yield cur
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"{action} failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self._guard("Schema setup") as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS plugins (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    slug TEXT NOT NULL UNIQUE,
                    description TEXT,
                    version TEXT NOT NULL,
                    icon TEXT,
                    color TEXT,
                    author TEXT,
                    config_json TEXT NOT NULL DEFAULT '{}',
                    config_schema_json TEXT,
                    enabled INTEGER NOT NULL DEFAULT 0,
                    installed INTEGER NOT NULL DEFAULT 1,
                    built_in INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS primitives (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    version TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    input_schema_json TEXT NOT NULL,
                    handler TEXT NOT NULL,
                    category TEXT,
                    tags_json TEXT NOT NULL DEFAULT '[]',
                    icon TEXT,
                    author TEXT,
                    timeout_ms INTEGER NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    built_in INTEGER NOT NULL DEFAULT 0,
                    plugin_id TEXT REFERENCES plugins(id) ON DELETE CASCADE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_primitives_category ON primitives(category)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_primitives_plugin ON primitives(plugin_id)")

            # Append-only audit log, kept even after its primitive is deleted
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    id TEXT PRIMARY KEY,
                    primitive_id TEXT NOT NULL,
                    workflow_execution_id TEXT,
                    user_id TEXT,
                    agent_id TEXT,
                    input_json TEXT NOT NULL,
                    output_json TEXT,
                    success INTEGER NOT NULL,
                    error TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    execution_time_ms REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_executions_primitive
                ON executions(primitive_id, started_at)
                """
            )

    # =========================================================================
    # Primitives
    # =========================================================================

    def _primitive_row(self, definition: PrimitiveDefinition) -> Dict[str, Any]:
        return {
            "id": definition.id,
            "name": definition.name,
            "version": definition.version,
            "description": definition.description,
            "input_schema_json": _dumps(definition.input_schema.model_dump(by_alias=True)),
            "handler": definition.handler,
            "category": definition.category,
            "tags_json": _dumps(definition.tags),
            "icon": definition.icon,
            "author": definition.author,
            "timeout_ms": definition.timeout_ms,
            "enabled": int(definition.enabled),
            "built_in": int(definition.built_in),
            "plugin_id": definition.plugin_id,
            "created_at": definition.created_at.isoformat(),
            "updated_at": definition.updated_at.isoformat(),
        }

    @staticmethod
    def _to_primitive(row: sqlite3.Row) -> PrimitiveDefinition:
        return PrimitiveDefinition(
            id=row["id"],
            name=row["name"],
            version=row["version"],
            description=row["description"],
            input_schema=json.loads(row["input_schema_json"]),
            handler=row["handler"],
            category=row["category"],
            tags=json.loads(row["tags_json"]),
            icon=row["icon"],
            author=row["author"],
            timeout_ms=row["timeout_ms"],
            enabled=bool(row["enabled"]),
            built_in=bool(row["built_in"]),
            plugin_id=row["plugin_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def insert_primitive(self, definition: PrimitiveDefinition) -> None:
        row = self._primitive_row(definition)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{key}" for key in row)
        with self._guard(f"Insert primitive {definition.name}") as cur:
            cur.execute(f"INSERT INTO primitives ({columns}) VALUES ({placeholders})", row)

    def update_primitive(self, definition: PrimitiveDefinition) -> bool:
        row = self._primitive_row(definition)
        assignments = ", ".join(f"{key} = :{key}" for key in row if key not in ("id", "created_at"))
        with self._guard(f"Update primitive {definition.id}") as cur:
            cur.execute(f"UPDATE primitives SET {assignments} WHERE id = :id", row)
            return cur.rowcount > 0

    def delete_primitive(self, primitive_id: str) -> bool:
        with self._guard(f"Delete primitive {primitive_id}") as cur:
            cur.execute("DELETE FROM primitives WHERE id = ?", (primitive_id,))
            return cur.rowcount > 0

    def get_primitive(self, primitive_id: str) -> Optional[PrimitiveDefinition]:
        with self._guard("Load primitive") as cur:
            cur.execute("SELECT * FROM primitives WHERE id = ?", (primitive_id,))
            row = cur.fetchone()
        return self._to_primitive(row) if row else None

    def get_primitive_by_name(self, name: str) -> Optional[PrimitiveDefinition]:
        with self._guard("Load primitive by name") as cur:
            cur.execute("SELECT * FROM primitives WHERE name = ?", (name,))
            row = cur.fetchone()
        return self._to_primitive(row) if row else None

    def list_primitives(
        self,
        enabled: Optional[bool] = None,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        plugin_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[PrimitiveDefinition]:
        """List primitives; tags match when any of them overlaps, search is case-insensitive."""
        query = "SELECT * FROM primitives WHERE 1=1"
        params: List[Any] = []

        if enabled is not None:
            query += " AND enabled = ?"
            params.append(int(enabled))
        if category:
            query += " AND category = ?"
            params.append(category)
        if plugin_id:
            query += " AND plugin_id = ?"
            params.append(plugin_id)
        if tags:
            marks = ", ".join("?" for _ in tags)
            query += f" AND EXISTS (SELECT 1 FROM json_each(primitives.tags_json) WHERE value IN ({marks}))"
            params.extend(tags)
        if search:
            query += " AND (name LIKE ? OR description LIKE ?)"
            params.extend([f"%{search}%", f"%{search}%"])

        query += " ORDER BY name"

        with self._guard("List primitives") as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._to_primitive(row) for row in rows]

    def count_primitives(self) -> int:
        with self._guard("Count primitives") as cur:
            cur.execute("SELECT COUNT(*) AS cnt FROM primitives")
            return cur.fetchone()["cnt"]

    # =========================================================================
    # Plugins
    # =========================================================================

    @staticmethod
    def _to_plugin(row: sqlite3.Row) -> PluginDefinition:
        return PluginDefinition(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            version=row["version"],
            icon=row["icon"],
            color=row["color"],
            author=row["author"],
            config=json.loads(row["config_json"]),
            config_schema=json.loads(row["config_schema_json"]) if row["config_schema_json"] else None,
            enabled=bool(row["enabled"]),
            installed=bool(row["installed"]),
            built_in=bool(row["built_in"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def insert_plugin(self, plugin: PluginDefinition) -> None:
        with self._guard(f"Insert plugin {plugin.name}") as cur:
            cur.execute(
                """
                INSERT INTO plugins (
                    id, name, slug, description, version, icon, color, author,
                    config_json, config_schema_json, enabled, installed, built_in,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    plugin.id,
                    plugin.name,
                    plugin.slug,
                    plugin.description,
                    plugin.version,
                    plugin.icon,
                    plugin.color,
                    plugin.author,
                    _dumps(plugin.config),
                    _dumps(plugin.config_schema) if plugin.config_schema is not None else None,
                    int(plugin.enabled),
                    int(plugin.installed),
                    int(plugin.built_in),
                    plugin.created_at.isoformat(),
                    plugin.updated_at.isoformat(),
                ),
            )

    def get_plugin(self, plugin_id: str) -> Optional[PluginDefinition]:
        with self._guard("Load plugin") as cur:
            cur.execute("SELECT * FROM plugins WHERE id = ?", (plugin_id,))
            row = cur.fetchone()
        return self._to_plugin(row) if row else None

    def find_plugin(self, name: str, slug: str) -> Optional[PluginDefinition]:
        with self._guard("Find plugin") as cur:
            cur.execute("SELECT * FROM plugins WHERE name = ? OR slug = ?", (name, slug))
            row = cur.fetchone()
        return self._to_plugin(row) if row else None

    def set_plugin_enabled(self, plugin_id: str, enabled: bool, updated_at: str) -> bool:
        with self._guard(f"Update plugin {plugin_id}") as cur:
            cur.execute(
                "UPDATE plugins SET enabled = ?, updated_at = ? WHERE id = ?",
                (int(enabled), updated_at, plugin_id),
            )
            return cur.rowcount > 0

    def delete_plugin(self, plugin_id: str) -> bool:
        with self._guard(f"Delete plugin {plugin_id}") as cur:
            cur.execute("DELETE FROM plugins WHERE id = ?", (plugin_id,))
            return cur.rowcount > 0

    def list_plugins(self, enabled: Optional[bool] = None, search: Optional[str] = None) -> List[PluginInfo]:
        query = """
            SELECT p.*, (SELECT COUNT(*) FROM primitives m WHERE m.plugin_id = p.id) AS primitive_count
            FROM plugins p
            WHERE 1=1
        """
        params: List[Any] = []
        if enabled is not None:
            query += " AND p.enabled = ?"
            params.append(int(enabled))
        if search:
            query += " AND (p.name LIKE ? OR p.description LIKE ?)"
            params.extend([f"%{search}%", f"%{search}%"])
        query += " ORDER BY p.name"

        with self._guard("List plugins") as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        infos: List[PluginInfo] = []
        for row in rows:
            plugin = self._to_plugin(row)
            infos.append(
                PluginInfo(
                    **plugin.model_dump(exclude={"config", "config_schema"}),
                    primitive_count=row["primitive_count"],
                )
            )
        return infos

    def count_plugins(self, enabled: Optional[bool] = None) -> int:
        query = "SELECT COUNT(*) AS cnt FROM plugins"
        params: List[Any] = []
        if enabled is not None:
            query += " WHERE enabled = ?"
            params.append(int(enabled))
        with self._guard("Count plugins") as cur:
            cur.execute(query, params)
            return cur.fetchone()["cnt"]

    # =========================================================================
    # Execution records
    # =========================================================================

    def append_execution(self, record: ExecutionRecord) -> None:
        with self._guard(f"Record execution {record.id}") as cur:
            cur.execute(
                """
                INSERT INTO executions (
                    id, primitive_id, workflow_execution_id, user_id, agent_id,
                    input_json, output_json, success, error,
                    started_at, completed_at, execution_time_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.primitive_id,
                    record.workflow_execution_id,
                    record.user_id,
                    record.agent_id,
                    _dumps(record.input),
                    _dumps(record.output) if record.success else None,
                    int(record.success),
                    record.error,
                    record.started_at.isoformat(),
                    record.completed_at.isoformat(),
                    record.execution_time_ms,
                ),
            )

    def execution_stats(self, primitive_id: str) -> Dict[str, Any]:
        with self._guard("Aggregate executions") as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(success), 0) AS successes,
                    AVG(execution_time_ms) AS average_ms,
                    MAX(started_at) AS last_started
                FROM executions
                WHERE primitive_id = ?
                """,
                (primitive_id,),
            )
            row = cur.fetchone()
        return {
            "total": row["total"],
            "successes": row["successes"],
            "average_ms": row["average_ms"] or 0.0,
            "last_started": row["last_started"],
        }

    def recent_executions(self, primitive_id: str, limit: int = 10) -> List[ExecutionRecord]:
        with self._guard("List executions") as cur:
            cur.execute(
                """
                SELECT * FROM executions
                WHERE primitive_id = ?
                ORDER BY started_at DESC, rowid DESC
                LIMIT ?
                """,
                (primitive_id, limit),
            )
            rows = cur.fetchall()
        return [
            ExecutionRecord(
                id=row["id"],
                primitive_id=row["primitive_id"],
                workflow_execution_id=row["workflow_execution_id"],
                user_id=row["user_id"],
                agent_id=row["agent_id"],
                input=json.loads(row["input_json"]),
                output=json.loads(row["output_json"]) if row["output_json"] is not None else None,
                success=bool(row["success"]),
                error=row["error"],
                started_at=row["started_at"],
                completed_at=row["completed_at"],
                execution_time_ms=row["execution_time_ms"],
            )
            for row in rows
        ]

    def count_executions(self) -> int:
        with self._guard("Count executions") as cur:
            cur.execute("SELECT COUNT(*) AS cnt FROM executions")
            return cur.fetchone()["cnt"]

    def close(self) -> None:
        self._conn.close()
