"""
CLI tests.

Each call to main() is a separate process as far as the runtime is
concerned: state carries over only through the database.
"""
import json

import pytest

from primitive_runtime.cli import main


@pytest.fixture
def cli(temp_db, capsys):
    def invoke(*argv):
        code = main(["--db", temp_db, *argv])
        captured = capsys.readouterr()
        output = json.loads(captured.out) if captured.out.strip() else None
        return code, output, captured.err

    return invoke


class TestCli:
    def test_seed_then_list_mounted(self, cli):
        code, seeded, _ = cli("seed")
        assert code == 0
        assert seeded["loaded"] == 11

        code, listed, _ = cli("list", "--filter", "mounted", "--category", "text")
        assert code == 0
        assert [item["name"] for item in listed] == [
            "format_text",
            "parse_csv",
            "regex_extract",
            "slugify_text",
        ]

    def test_run_prints_the_result(self, cli):
        cli("seed")
        code, result, _ = cli(
            "run", "format_text", "--input", '{"template": "Hi {{x}}", "variables": {"x": 1}}'
        )
        assert code == 0
        assert result["success"] is True
        assert result["result"] == "Hi 1"

    def test_run_failure_exits_nonzero(self, cli):
        cli("seed")
        code, result, _ = cli("run", "format_text", "--input", "{}")
        assert code == 1
        assert result["error_kind"] == "validation_error"

    def test_invalid_json_input(self, cli):
        code, output, err = cli("run", "format_text", "--input", "{not json")
        assert code == 1
        assert output is None
        assert "Invalid JSON input" in err

    def test_scan(self, cli):
        code, report, _ = cli("scan", "--handler", "import os\nreturn os.name")
        assert code == 1
        assert report["safe"] is False
        assert "Module import statement" in report["blocked"]

    def test_dismount_persists_across_invocations(self, cli):
        cli("seed")
        code, _, _ = cli("dismount", "slugify_text")
        assert code == 0

        _, mounted, _ = cli("list", "--filter", "mounted")
        assert "slugify_text" not in [item["name"] for item in mounted]
        code, result, _ = cli("run", "slugify_text", "--input", '{"text": "A B"}')
        assert result["error_kind"] == "not_found"

        code, _, _ = cli("mount", "slugify_text")
        assert code == 0
        code, result, _ = cli("run", "slugify_text", "--input", '{"text": "A B"}')
        assert result["result"] == "a-b"

    def test_history_and_stats(self, cli):
        cli("seed")
        cli("run", "switch_case", "--input", '{"value": "a", "cases": {"a": 1}}')
        cli("run", "switch_case", "--input", "{}")

        code, history, _ = cli("history", "switch_case", "--limit", "1")
        assert code == 0
        assert len(history) == 1
        assert history[0]["success"] is False

        code, stats, _ = cli("stats", "switch_case")
        assert (stats["total_executions"], stats["success_count"], stats["error_count"]) == (2, 1, 1)

        code, registry, _ = cli("stats")
        assert registry["primitive_count"] == 11
        assert registry["total_executions"] == 2

    def test_test_command_leaves_no_history(self, cli):
        cli("seed")
        code, preview, _ = cli("test", "aggregate", "--input", '{"values": [1, 2]}')
        assert code == 0
        assert preview["result"]["sum"] == 3

        _, history, _ = cli("history", "aggregate")
        assert history == []

    def test_unknown_primitive(self, cli):
        code, result, _ = cli("history", "nope")
        assert code == 1
        assert result["error_kind"] == "not_found"
