"""Built-in catalog tests: seeding, idempotence and the shipped handlers."""
import asyncio

import pytest

from primitive_runtime.catalog import builtin_primitive_names, read_catalog
from primitive_runtime.kernel.security import scan


def run(runtime, name, args):
    result = asyncio.run(runtime.execute_by_id_or_name(name, args))
    assert result.success, result.error
    return result.result


@pytest.fixture
def seeded(runtime):
    result = runtime.load_catalog()
    assert result.errors == []
    return runtime


class TestCatalogFile:
    def test_names_are_unique(self):
        names = builtin_primitive_names()
        assert len(names) == len(set(names)) == 11

    @pytest.mark.parametrize("entry", read_catalog(), ids=lambda entry: entry["name"])
    def test_every_handler_passes_the_security_scan(self, entry):
        report = scan(entry["handler"])
        assert report.safe, report.blocked


class TestLoading:
    def test_seeding_loads_and_mounts_everything(self, runtime):
        result = runtime.load_catalog()

        assert (result.loaded, result.skipped, result.errors) == (11, 0, [])
        assert result.initialized.mounted == 11
        assert all(info.built_in for info in runtime.list_primitives())

    def test_reseeding_skips_existing_built_ins(self, seeded):
        result = seeded.load_catalog()
        assert (result.loaded, result.skipped) == (0, 11)
        assert len(seeded.list_primitives("mounted")) == 11

    def test_operator_primitive_with_a_catalog_name_is_updated(self, runtime):
        created = runtime.create_primitive({"name": "format_text", "handler": "return 'mine'"})

        result = runtime.load_catalog()

        assert result.loaded == 11
        definition = runtime.store.get_primitive(created.data["id"])
        assert definition.version == "1.0.1"
        assert definition.built_in is False
        assert run(runtime, "format_text", {"template": "Hi {{who}}", "variables": {"who": "Ada"}}) == "Hi Ada"

    def test_updated_entry_without_a_timeout_gets_the_default(self, runtime):
        created = runtime.create_primitive({"name": "slow", "handler": "return 0", "timeout_ms": 500})

        result = runtime.load_catalog([{"name": "slow", "handler": "return 1"}])

        assert result.errors == []
        assert runtime.store.get_primitive(created.data["id"]).timeout_ms == 30000

    def test_bad_entries_are_reported_and_skipped(self, runtime):
        result = runtime.load_catalog(
            [
                {"name": "good", "handler": "return 1"},
                {"name": "evil", "handler": "return eval('1')"},
                {"handler": "return 2"},
            ]
        )

        assert result.loaded == 1
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Failed to load evil:")
        assert run(runtime, "good", {}) == 1


class TestBuiltinHandlers:
    def test_pick_fields(self, seeded):
        assert run(seeded, "pick_fields", {"data": {"a": 1, "b": 2, "c": 3}, "fields": ["c", "a", "z"]}) == {
            "c": 3,
            "a": 1,
        }

    def test_validate_data(self, seeded):
        result = run(
            seeded,
            "validate_data",
            {
                "data": {"age": "old"},
                "schema": {"required": ["name"], "properties": {"age": {"type": "number"}}},
            },
        )
        assert result["valid"] is False
        assert [error["field"] for error in result["errors"]] == ["name", "age"]

    def test_format_text(self, seeded):
        args = {"template": "{{greeting}}, {{name}}!", "variables": {"greeting": "Hello", "name": "World"}}
        assert run(seeded, "format_text", args) == "Hello, World!"

    def test_parse_csv_with_header(self, seeded):
        assert run(seeded, "parse_csv", {"csv": "a,b\n1,2\n3"}) == [
            {"a": "1", "b": "2"},
            {"a": "3", "b": ""},
        ]

    def test_parse_csv_without_header(self, seeded):
        assert run(seeded, "parse_csv", {"csv": "1;2", "delimiter": ";", "has_header": False}) == [
            {"column0": "1", "column1": "2"},
        ]

    def test_slugify_text(self, seeded):
        assert run(seeded, "slugify_text", {"text": "Hello, World!"}) == "hello-world"
        assert run(seeded, "slugify_text", {"text": "Hello World", "separator": "_"}) == "hello_world"

    def test_regex_extract_named_groups(self, seeded):
        result = run(seeded, "regex_extract", {"text": "a1 b22", "pattern": r"(?P<letter>[a-z])(?P<digits>\d+)"})
        assert result == {
            "count": 2,
            "matches": [{"letter": "a", "digits": "1"}, {"letter": "b", "digits": "22"}],
        }

    def test_aggregate_ignores_non_numbers(self, seeded):
        result = run(seeded, "aggregate", {"values": [1, 2, 3, "x", True]})
        assert result == {"sum": 6, "avg": 2, "min": 1, "max": 3, "count": 3}

    @pytest.mark.parametrize(
        "args,expected",
        [
            ({"value": 2.675}, 2.68),
            ({"value": 2.665, "mode": "half_even"}, 2.66),
            ({"value": 1.234, "places": 1, "mode": "up"}, 1.3),
            ({"value": 7.9, "places": 0, "mode": "down"}, 7.0),
        ],
    )
    def test_round_number(self, seeded, args, expected):
        assert run(seeded, "round_number", args) == expected

    def test_round_number_rejects_unknown_mode(self, seeded):
        result = asyncio.run(seeded.execute_by_id_or_name("round_number", {"value": 1, "mode": "sideways"}))
        assert result.error_kind == "validation_error"

    def test_switch_case(self, seeded):
        assert run(seeded, "switch_case", {"value": 2, "cases": {"2": "two"}}) == "two"
        assert run(seeded, "switch_case", {"value": 3, "cases": {"2": "two"}, "default": "other"}) == "other"

    def test_format_date(self, seeded):
        args = {"date": "2024-03-05T07:08:09Z", "format": "DD/MM/YYYY HH:mm:ss"}
        assert run(seeded, "format_date", args) == "05/03/2024 07:08:09"

    def test_date_diff(self, seeded):
        args = {"start_date": "2024-01-01", "end_date": "2024-01-31"}
        assert run(seeded, "date_diff", args) == 30
        assert run(seeded, "date_diff", {**args, "unit": "hours"}) == 720
