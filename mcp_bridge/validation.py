"""
Tool-call argument checks against a tool's input schema.

Covers what providers actually advertise: required fields, unknown
properties, the JSON primitive types and ``enum``. Properties with no
``type`` (or a type outside the JSON primitives) are not type-checked.
"""

from __future__ import annotations

from typing import Any

from mcp_bridge.errors import ToolArgumentError
from mcp_bridge.models import ToolDescriptor


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, int) and not isinstance(value, bool)


TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": _is_number,
    "integer": _is_integer,
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "null": lambda v: v is None,
}


def matches_type(value: Any, expected: Any) -> bool:
    """True if ``value`` fits a JSON-schema ``type`` (a name or a list of names)."""
    names = expected if isinstance(expected, list) else [expected]
    checks = [TYPE_CHECKS[n] for n in names if isinstance(n, str) and n in TYPE_CHECKS]
    if not checks:
        return True
    return any(check(value) for check in checks)


def validate_arguments(
    descriptor: ToolDescriptor,
    arguments: dict[str, Any],
    tool: str | None = None,
) -> None:
    """
    Check ``arguments`` against ``descriptor``'s input schema.

    Raises:
        ToolArgumentError: a required field is missing, a property is not
            in the schema, or a value has the wrong type or is outside
            its enum.
    """
    tool = tool or descriptor.name
    properties = descriptor.input_schema.get("properties") or {}

    for name in descriptor.required:
        if name not in arguments:
            raise ToolArgumentError(tool, f"missing required field: {name}")

    enums = {p.name: p.enum for p in descriptor.parameters if p.enum is not None}
    for name, value in arguments.items():
        if name not in properties:
            raise ToolArgumentError(tool, f"unknown property: {name}")

        prop = properties[name] if isinstance(properties[name], dict) else {}
        expected = prop.get("type")
        if expected is not None and not matches_type(value, expected):
            raise ToolArgumentError(
                tool,
                f"invalid value for {name}: expected {expected}, got {type(value).__name__}",
            )

        allowed = enums.get(name)
        if allowed is not None and value not in allowed:
            raise ToolArgumentError(
                tool,
                f"invalid value for {name}: {value!r} is not one of {list(allowed)}",
            )
