"""
Step definitions for input schema validation.

These tests verify the order-independent collection of violations:
required fields, types, enums, string bounds, patterns, numeric ranges
and unknown fields.
"""

import json

from pytest_bdd import given, parsers, scenarios, then, when

from primitive_runtime.kernel.schema import InputSchema
from primitive_runtime.kernel.validation import validate

# Load scenarios from feature file
scenarios("../features/input_validation.feature")


PRODUCT_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 3, "maxLength": 40},
        "price": {"type": "number", "minimum": 0},
        "status": {"type": "string", "enum": ["draft", "active"]},
        "sku": {"type": "string", "pattern": r"^[A-Z]{3}-\d+$"},
        "in_stock": {"type": "boolean"},
        "tags": {"type": "array"},
    },
    "required": ["title"],
    "additionalProperties": False,
}


@given("the product input schema")
def product_schema(test_context):
    test_context["schema"] = InputSchema.model_validate(PRODUCT_SCHEMA)


@when(parsers.parse("I validate {arguments}"))
def validate_arguments(test_context, arguments):
    test_context["report"] = validate(json.loads(arguments), test_context["schema"])


@then("validation passes")
def validation_passes(test_context):
    report = test_context["report"]
    assert report.valid, report.errors
    assert report.errors == []


@then(parsers.parse("validation fails with an error containing '{message}'"))
def validation_fails_with(test_context, message):
    report = test_context["report"]
    assert report.valid is False
    assert any(message in error for error in report.errors), report.errors


@then(parsers.parse("validation fails with {count:d} errors"))
def validation_error_count(test_context, count):
    report = test_context["report"]
    assert report.valid is False
    assert len(report.errors) == count, report.errors
