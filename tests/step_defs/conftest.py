"""
Shared steps for the runtime feature files.

Handlers are referred to by key so feature files stay readable; the texts
live in HANDLERS below.
"""
import asyncio
import json

import pytest
from pytest_bdd import given, parsers, then, when


HANDLERS = {
    "echo": 'return args["x"]',
    "double": 'return args["x"] * 2',
    "constant": "return 42",
    "reads context": 'return {"name": context.primitive_name, "user": context.user_id}',
    "sleeps": 'await asyncio.sleep(args.get("seconds", 5))\nreturn "late"',
    "huge output": 'return "x" * 2048',
    "raises": 'raise ValueError("boom")',
    "syntax error": "return (",
    "uses an import": "import os\nreturn os.name",
    "uses os access": "return os.getcwd()",
    "uses eval": "return eval('1 + 1')",
    "uses open": "return open('/etc/passwd').read()",
    "uses class traversal": "return ().__class__.__bases__",
    "uses a socket": "return socket",
    "uses an unbounded loop": "while True:\n    pass",
    "uses a compiled regex": 'pat = re.compile(args["p"])\nreturn bool(pat.search(args["s"]))',
}


@pytest.fixture
def handlers():
    return HANDLERS


@pytest.fixture
def test_context():
    """Shared context for passing data between steps."""
    return {
        "runtime": None,
        "ids": {},
        "result": None,
        "execution": None,
        "executions": [],
    }


def create(test_context, name, handler_key, **fields):
    runtime = test_context["runtime"]
    request = {"name": name, "handler": HANDLERS[handler_key]}
    request.update(fields)
    result = runtime.create_primitive(request)
    assert result.success, result.error
    test_context["ids"][name] = result.data["id"]
    return result


def primitive_id(test_context, name):
    return test_context["ids"][name]


# =============================================================================
# Given Steps
# =============================================================================


@given("a fresh runtime")
def fresh_runtime(test_context, runtime):
    test_context["runtime"] = runtime


@given(parsers.parse('a mounted primitive "{name}" with the "{handler_key}" handler'))
def mounted_primitive(test_context, name, handler_key):
    create(test_context, name, handler_key)


@given(parsers.parse('a mounted primitive "{name}" with the "{handler_key}" handler requiring "{field}"'))
def mounted_primitive_requiring(test_context, name, handler_key, field):
    create(
        test_context,
        name,
        handler_key,
        input_schema={"type": "object", "properties": {field: {"type": "number"}}, "required": [field]},
    )


@given(parsers.parse('a mounted primitive "{name}" with the "{handler_key}" handler and a {timeout:d} ms timeout'))
def mounted_primitive_with_timeout(test_context, name, handler_key, timeout):
    create(test_context, name, handler_key, timeout_ms=timeout)


# =============================================================================
# When Steps
# =============================================================================


@when(parsers.parse('I execute "{name}" with {arguments}'))
def execute_by_name(test_context, name, arguments):
    runtime = test_context["runtime"]
    execution = asyncio.run(runtime.execute_by_id_or_name(name, json.loads(arguments)))
    test_context["execution"] = execution
    test_context["executions"].append(execution)


@when(parsers.parse('I mount "{name}"'))
def mount_by_name(test_context, name):
    runtime = test_context["runtime"]
    test_context["result"] = runtime.mount_primitive(primitive_id(test_context, name))


@when(parsers.parse('I dismount "{name}"'))
def dismount_by_name(test_context, name):
    runtime = test_context["runtime"]
    test_context["result"] = runtime.dismount_primitive(primitive_id(test_context, name))


# =============================================================================
# Then Steps
# =============================================================================


@then("the operation succeeds")
def operation_succeeds(test_context):
    result = test_context["result"]
    assert result.success, result.error


@then(parsers.parse('the operation fails with kind "{kind}"'))
def operation_fails(test_context, kind):
    result = test_context["result"]
    assert not result.success
    assert result.error_kind == kind, result.error


@then(parsers.parse("the execution returns {expected}"))
def execution_returns(test_context, expected):
    execution = test_context["execution"]
    assert execution.success, execution.error
    assert execution.result == json.loads(expected)


@then(parsers.parse('the execution fails with kind "{kind}"'))
def execution_fails(test_context, kind):
    execution = test_context["execution"]
    assert not execution.success
    assert execution.error_kind == kind, execution.error


@then(parsers.parse('"{name}" is mounted'))
def is_mounted(test_context, name):
    runtime = test_context["runtime"]
    assert runtime.get_mounted_primitive(primitive_id(test_context, name)) is not None


@then(parsers.parse('"{name}" is not mounted'))
def is_not_mounted(test_context, name):
    runtime = test_context["runtime"]
    assert runtime.get_mounted_primitive(primitive_id(test_context, name)) is None


@then(parsers.parse('"{name}" has {count:d} invocations'))
def invocation_count(test_context, name, count):
    mounted = test_context["runtime"].get_mounted_primitive(primitive_id(test_context, name))
    assert mounted is not None
    assert mounted.invocation_count == count
