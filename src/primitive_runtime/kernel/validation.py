from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from .schema import InputSchema


@dataclass
class ValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors)}


def _schema_dict(schema: Union[InputSchema, Mapping[str, Any], None]) -> Dict[str, Any]:
    if schema is None:
        return {}
    if isinstance(schema, InputSchema):
        return schema.model_dump(by_alias=True)
    return dict(schema)


def _type_matches(expected: str, value: Any) -> bool:
    # bool is an int subclass; JSON keeps them apart
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, (list, tuple))
    if expected == "object":
        return isinstance(value, dict)
    if expected == "null":
        return value is None
    return True


def _check_property(key: str, prop: Mapping[str, Any], value: Any, errors: List[str]) -> None:
    expected = prop.get("type")
    if isinstance(expected, str) and not _type_matches(expected, value):
        errors.append(f'Field "{key}" should be {"an" if expected[0] in "aeiou" else "a"} {expected}')

    enum = prop.get("enum")
    if enum is not None and value not in enum:
        errors.append(f'Field "{key}" must be one of: {", ".join(str(option) for option in enum)}')

    if isinstance(value, str):
        min_length = prop.get("minLength")
        max_length = prop.get("maxLength")
        pattern = prop.get("pattern")
        if min_length is not None and len(value) < min_length:
            errors.append(f'Field "{key}" must be at least {min_length} characters')
        if max_length is not None and len(value) > max_length:
            errors.append(f'Field "{key}" must be at most {max_length} characters')
        if pattern is not None:
            try:
                if re.search(pattern, value) is None:
                    errors.append(f'Field "{key}" must match pattern: {pattern}')
            except re.error:
                errors.append(f'Field "{key}" has an invalid pattern in its schema: {pattern}')

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        minimum = prop.get("minimum")
        maximum = prop.get("maximum")
        if minimum is not None and value < minimum:
            errors.append(f'Field "{key}" must be at least {minimum}')
        if maximum is not None and value > maximum:
            errors.append(f'Field "{key}" must be at most {maximum}')


def validate(input_data: Any, schema: Union[InputSchema, Mapping[str, Any], None]) -> ValidationReport:
    """
    Check arguments against a declared input schema.

    Every violation is collected so the caller sees all problems in one pass:
    missing required fields, then per-field type, enum, string length and
    pattern, numeric range, and finally unknown fields when the schema sets
    ``additionalProperties: false``.
    """
    if not isinstance(input_data, dict):
        return ValidationReport(valid=False, errors=["Input must be an object"])

    declared = _schema_dict(schema)
    properties: Dict[str, Any] = declared.get("properties") or {}
    errors: List[str] = []

    for name in declared.get("required") or []:
        if name not in input_data:
            errors.append(f"Missing required field: {name}")

    for key, prop in properties.items():
        if key in input_data and isinstance(prop, Mapping):
            _check_property(key, prop, input_data[key], errors)

    if declared.get("additionalProperties", declared.get("additional_properties", True)) is False:
        for key in input_data:
            if key not in properties:
                errors.append(f"Unknown field: {key}")

    return ValidationReport(valid=not errors, errors=errors)
