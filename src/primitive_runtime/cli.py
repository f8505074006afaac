"""
Command line membrane for the primitive runtime.

Every command prints JSON on stdout and exits 1 when the result is a failure.

Usage:
    primitive-runtime seed                                   # Load built-in catalog
    primitive-runtime list [--filter mounted] [--category text] [--tag csv] [--search q]
    primitive-runtime run <id_or_name> [--input '{"key": "value"}'] [--timeout-ms 500]
    primitive-runtime test <id_or_name> [--input '{"key": "value"}']
    primitive-runtime scan (--handler 'return 1' | --file handler.py)
    primitive-runtime mount <id_or_name>                     # Enable and mount
    primitive-runtime dismount <id_or_name>                  # Dismount and disable
    primitive-runtime stats [<id_or_name>]
    primitive-runtime history <id_or_name> [--limit 10]

Every command accepts --db (default: $PRIMITIVE_RUNTIME_DB or primitive-runtime.db).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import RuntimeConfig, configure_logging
from .kernel.engine import PrimitiveRuntime
from .kernel.errors import PrimitiveRuntimeError
from .kernel.executor import ExecutionOptions
from .kernel.schema import PrimitiveDefinition
from .kernel.security import scan


# =============================================================================
# Helpers
# =============================================================================

def emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def parse_input(raw: Optional[str]) -> Dict[str, Any]:
    """Parse --input JSON; raises ValueError with a readable message."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON input: {e}") from e
    if not isinstance(value, dict):
        raise ValueError("Input must be a JSON object")
    return value


def open_runtime(args: argparse.Namespace, config: RuntimeConfig) -> PrimitiveRuntime:
    if args.db:
        config.db_path = args.db
    return PrimitiveRuntime.from_config(config)


def resolve_definition(runtime: PrimitiveRuntime, id_or_name: str) -> Optional[PrimitiveDefinition]:
    return runtime.store.get_primitive(id_or_name) or runtime.store.get_primitive_by_name(id_or_name)


# =============================================================================
# Commands
# =============================================================================

def cmd_seed(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    result = runtime.load_catalog()
    emit(result.to_dict())
    return 0 if not result.errors else 1


def cmd_list(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    runtime.initialize()
    primitives = runtime.list_primitives(
        args.filter,
        category=args.category,
        tags=args.tag,
        search=args.search,
    )
    emit([info.model_dump(mode="json") for info in primitives])
    return 0


def cmd_run(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    inputs = parse_input(args.input)
    runtime.initialize()
    options = ExecutionOptions(
        timeout_ms=args.timeout_ms,
        skip_validation=args.skip_validation,
        debug=args.debug,
    )
    result = asyncio.run(runtime.execute_by_id_or_name(args.primitive, inputs, options=options))
    emit(result.to_dict())
    return 0 if result.success else 1


def cmd_test(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    inputs = parse_input(args.input)
    definition = resolve_definition(runtime, args.primitive)
    if definition is None:
        emit({"success": False, "error": f"Primitive not found: {args.primitive}", "error_kind": "not_found"})
        return 1
    preview = asyncio.run(runtime.test_primitive(definition, inputs))
    emit(preview.to_dict())
    return 0 if preview.success else 1


def cmd_scan(args: argparse.Namespace) -> int:
    text = args.handler if args.handler is not None else Path(args.file).read_text(encoding="utf-8")
    report = scan(text)
    emit(report.to_dict())
    return 0 if report.safe else 1


def cmd_mount(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    definition = resolve_definition(runtime, args.primitive)
    if definition is None:
        emit({"success": False, "error": f"Primitive not found: {args.primitive}", "error_kind": "not_found"})
        return 1

    runtime.initialize()
    if not definition.enabled:
        updated = runtime.update_primitive(definition.id, {"enabled": True})
        if not updated.success:
            emit(updated.to_dict())
            return 1

    if runtime.get_mounted_primitive(definition.id) is not None:
        emit({"success": True, "data": {"id": definition.id, "mounted": True}})
        return 0

    result = runtime.mount_primitive(definition.id)
    emit(result.to_dict())
    return 0 if result.success else 1


def cmd_dismount(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    definition = resolve_definition(runtime, args.primitive)
    if definition is None:
        emit({"success": False, "error": f"Primitive not found: {args.primitive}", "error_kind": "not_found"})
        return 1

    runtime.initialize()
    # Disabling persists across processes; the update dismounts as well
    result = runtime.update_primitive(definition.id, {"enabled": False})
    emit(result.to_dict())
    return 0 if result.success else 1


def cmd_stats(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    if not args.primitive:
        runtime.initialize()
        emit(runtime.get_stats().model_dump())
        return 0

    definition = resolve_definition(runtime, args.primitive)
    if definition is None:
        emit({"success": False, "error": f"Primitive not found: {args.primitive}", "error_kind": "not_found"})
        return 1
    emit({"id": definition.id, "name": definition.name, **runtime.get_execution_stats(definition.id).to_dict()})
    return 0


def cmd_history(runtime: PrimitiveRuntime, args: argparse.Namespace) -> int:
    definition = resolve_definition(runtime, args.primitive)
    if definition is None:
        emit({"success": False, "error": f"Primitive not found: {args.primitive}", "error_kind": "not_found"})
        return 1
    records = runtime.get_recent_executions(definition.id, limit=args.limit)
    emit([record.model_dump(mode="json") for record in records])
    return 0


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="primitive-runtime",
        description="Primitive Runtime - register, mount and run primitives",
    )
    parser.add_argument("--db", help="Database path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("seed", help="Load the built-in primitive catalog")

    list_parser = subparsers.add_parser("list", help="List primitives")
    list_parser.add_argument(
        "--filter", default="all", choices=["all", "mounted", "available"],
        help="Which primitives to list (default: all)"
    )
    list_parser.add_argument("--category", help="Only this category")
    list_parser.add_argument("--tag", action="append", help="Any of these tags (repeatable)")
    list_parser.add_argument("--search", "-s", help="Search name and description")

    run_parser = subparsers.add_parser("run", help="Execute a mounted primitive")
    run_parser.add_argument("primitive", help="Primitive id or name")
    run_parser.add_argument("--input", "-i", help="JSON arguments")
    run_parser.add_argument("--timeout-ms", type=int, help="Override the primitive's timeout")
    run_parser.add_argument("--skip-validation", action="store_true", help="Skip input validation")
    run_parser.add_argument("--debug", action="store_true", help="Log security warnings")

    test_parser = subparsers.add_parser("test", help="Preview a primitive without recording telemetry")
    test_parser.add_argument("primitive", help="Primitive id or name")
    test_parser.add_argument("--input", "-i", help="JSON arguments")

    scan_parser = subparsers.add_parser("scan", help="Screen handler text for blocked patterns")
    source = scan_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--handler", help="Handler text")
    source.add_argument("--file", help="File containing handler text")

    mount_parser = subparsers.add_parser("mount", help="Enable and mount a primitive")
    mount_parser.add_argument("primitive", help="Primitive id or name")

    dismount_parser = subparsers.add_parser("dismount", help="Dismount and disable a primitive")
    dismount_parser.add_argument("primitive", help="Primitive id or name")

    stats_parser = subparsers.add_parser("stats", help="Registry stats, or execution stats for one primitive")
    stats_parser.add_argument("primitive", nargs="?", help="Primitive id or name")

    history_parser = subparsers.add_parser("history", help="Recent executions of a primitive")
    history_parser.add_argument("primitive", help="Primitive id or name")
    history_parser.add_argument(
        "--limit", "-n", type=int, default=10,
        help="Number of executions to show (default: 10)"
    )

    return parser


COMMANDS = {
    "seed": cmd_seed,
    "list": cmd_list,
    "run": cmd_run,
    "test": cmd_test,
    "mount": cmd_mount,
    "dismount": cmd_dismount,
    "stats": cmd_stats,
    "history": cmd_history,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = RuntimeConfig.from_env()
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    configure_logging(config.log_level)

    if args.command == "scan":
        return cmd_scan(args)

    try:
        runtime = open_runtime(args, config)
    except PrimitiveRuntimeError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](runtime, args)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except PrimitiveRuntimeError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    finally:
        runtime.close()


if __name__ == "__main__":
    sys.exit(main())
