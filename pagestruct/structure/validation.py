"""Structural JSON-Schema checks applied to model output.

Only the structural keywords are enforced: ``type``, ``required``,
``properties``, ``items`` and ``enum``. Semantic keywords (formats, ranges,
patterns) are ignored.
"""

from __future__ import annotations

from typing import Any

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    # bool is an int subclass in Python, JSON keeps them apart
    "integer": lambda v: (isinstance(v, int) and not isinstance(v, bool))
    or (isinstance(v, float) and v.is_integer()),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "null": lambda v: v is None,
}


def validate_instance(instance: Any, schema: dict[str, Any], path: str = "$") -> list[str]:
    """
    Return a list of violations (empty when ``instance`` conforms).

    Each entry reads like ``$.items[2].price: expected number, got string``.
    """
    errors: list[str] = []
    _validate(instance, schema or {}, path, errors)
    return errors


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _validate(value: Any, schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(schema, dict):
        return

    declared = schema.get("type")
    if declared is not None:
        allowed = declared if isinstance(declared, list) else [declared]
        known = [t for t in allowed if isinstance(t, str) and t in _TYPE_CHECKS]
        if known and not any(_TYPE_CHECKS[t](value) for t in known):
            errors.append(f"{path}: expected {' or '.join(known)}, got {_type_name(value)}")
            return

    if "enum" in schema and isinstance(schema["enum"], list) and value not in schema["enum"]:
        errors.append(f"{path}: value {value!r} not in enum")

    if isinstance(value, dict):
        required = schema.get("required")
        # Draft-3 puts a boolean "required" on the property itself; only the list form is enforced
        for name in required if isinstance(required, list) else []:
            if isinstance(name, str) and name not in value:
                errors.append(f"{path}: missing required field '{name}'")
        properties = schema.get("properties")
        for name, sub_schema in (properties.items() if isinstance(properties, dict) else ()):
            if name in value:
                _validate(value[name], sub_schema, f"{path}.{name}", errors)

    if isinstance(value, list):
        items = schema.get("items")
        if isinstance(items, dict):
            for i, item in enumerate(value):
                _validate(item, items, f"{path}[{i}]", errors)
