"""SQLite store tests: JSON columns, filters, cascades and the execution log."""
from datetime import timedelta

import pytest

from primitive_runtime.kernel.errors import PersistenceError
from primitive_runtime.kernel.schema import (
    ExecutionRecord,
    InputSchema,
    PluginDefinition,
    PrimitiveDefinition,
    utcnow,
)


def primitive(name, **fields):
    fields.setdefault("handler", "return 1")
    return PrimitiveDefinition(id=f"prim-{name}", name=name, **fields)


def record(primitive_id, index, success=True):
    started = utcnow() + timedelta(milliseconds=index)
    return ExecutionRecord(
        id=f"exec-{primitive_id}-{index}",
        primitive_id=primitive_id,
        input={"i": index},
        output=index if success else None,
        success=success,
        error=None if success else "boom",
        started_at=started,
        completed_at=started,
        execution_time_ms=float(index),
    )


class TestPrimitives:
    def test_round_trip_keeps_json_columns(self, store):
        schema = InputSchema(
            properties={"x": {"type": "number"}},
            required=["x"],
            additional_properties=False,
        )
        store.insert_primitive(primitive("echo", input_schema=schema, tags=["a", "b"]))

        loaded = store.get_primitive("prim-echo")
        assert loaded.input_schema.required == ["x"]
        assert loaded.input_schema.additional_properties is False
        assert loaded.tags == ["a", "b"]
        assert store.get_primitive_by_name("echo").id == "prim-echo"

    def test_duplicate_name_is_a_persistence_error(self, store):
        store.insert_primitive(primitive("echo"))
        with pytest.raises(PersistenceError):
            store.insert_primitive(PrimitiveDefinition(id="prim-other", name="echo", handler="return 2"))

    def test_update_and_delete_report_missing_rows(self, store):
        assert store.update_primitive(primitive("ghost")) is False
        assert store.delete_primitive("prim-ghost") is False

    def test_filters(self, store):
        store.insert_primitive(primitive("csv", category="text", tags=["csv", "parse"], description="Parse CSV"))
        store.insert_primitive(primitive("round", category="math", tags=["math"], enabled=False))
        store.insert_primitive(primitive("slug", category="text", tags=["url"]))

        assert [p.name for p in store.list_primitives()] == ["csv", "round", "slug"]
        assert [p.name for p in store.list_primitives(enabled=True)] == ["csv", "slug"]
        assert [p.name for p in store.list_primitives(category="text")] == ["csv", "slug"]
        assert [p.name for p in store.list_primitives(tags=["url", "math"])] == ["round", "slug"]
        assert [p.name for p in store.list_primitives(search="parse")] == ["csv"]
        assert store.count_primitives() == 3


class TestPlugins:
    def test_deleting_a_plugin_cascades_to_its_primitives(self, store):
        store.insert_plugin(PluginDefinition(id="plug-1", name="Text", slug="text"))
        store.insert_primitive(primitive("upper", plugin_id="plug-1"))
        store.insert_primitive(primitive("loose"))

        assert store.list_plugins()[0].primitive_count == 1
        assert store.delete_plugin("plug-1") is True
        assert store.get_primitive("prim-upper") is None
        assert store.get_primitive("prim-loose") is not None

    def test_primitive_with_unknown_plugin_is_refused(self, store):
        with pytest.raises(PersistenceError):
            store.insert_primitive(primitive("orphan", plugin_id="plug-missing"))

    def test_enabled_flag_and_counts(self, store):
        store.insert_plugin(PluginDefinition(id="plug-1", name="Text", slug="text"))
        store.insert_plugin(PluginDefinition(id="plug-2", name="Math", slug="math"))

        assert store.set_plugin_enabled("plug-1", True, utcnow().isoformat()) is True
        assert store.get_plugin("plug-1").enabled is True
        assert store.count_plugins() == 2
        assert store.count_plugins(enabled=True) == 1
        assert [p.name for p in store.list_plugins(enabled=False)] == ["Math"]
        assert store.find_plugin("Other", "text").id == "plug-1"


class TestExecutions:
    def test_stats_aggregate_successes_and_failures(self, store):
        for i in range(3):
            store.append_execution(record("prim-a", i))
        store.append_execution(record("prim-a", 3, success=False))

        stats = store.execution_stats("prim-a")
        assert stats["total"] == 4
        assert stats["successes"] == 3
        assert stats["average_ms"] == pytest.approx(1.5)
        assert stats["last_started"] is not None

    def test_stats_for_unknown_primitive_are_zero(self, store):
        assert store.execution_stats("prim-none") == {
            "total": 0,
            "successes": 0,
            "average_ms": 0.0,
            "last_started": None,
        }

    def test_recent_executions_are_newest_first(self, store):
        for i in range(4):
            store.append_execution(record("prim-a", i))
        store.append_execution(record("prim-b", 9))

        recent = store.recent_executions("prim-a", limit=3)
        assert [r.output for r in recent] == [3, 2, 1]
        assert recent[0].input == {"i": 3}
        assert store.count_executions() == 5

    def test_failed_execution_keeps_no_output(self, store):
        store.append_execution(record("prim-a", 0, success=False))
        [failed] = store.recent_executions("prim-a")
        assert failed.success is False
        assert failed.output is None
        assert failed.error == "boom"
