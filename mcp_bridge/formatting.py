"""Turning tool payloads into display text for the conversation."""

from __future__ import annotations

import json
from typing import Any


def is_row_records(payload: Any) -> bool:
    """A non-empty list whose items are all mappings."""
    return (
        isinstance(payload, list)
        and len(payload) > 0
        and all(isinstance(row, dict) for row in payload)
    )


def format_rows(rows: list[dict[str, Any]]) -> str:
    """
    Render row records as an aligned text table.

    Columns are the union of all row keys, sorted, with upper-cased
    headers and a dashed separator line. Missing cells are blank.
    """
    if not rows:
        return ""

    columns = sorted({col for row in rows for col in row})
    widths = {
        col: max([len(col)] + [len(_cell(row[col])) for row in rows if col in row])
        for col in columns
    }

    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(
            _cell(row[col]).ljust(widths[col]) if col in row else " " * widths[col]
            for col in columns
        ))
    return "\n".join(line.rstrip() for line in lines) + "\n"


def format_result(payload: Any) -> str:
    """Table for row records, the text itself for strings, JSON otherwise."""
    if is_row_records(payload):
        return format_rows(payload)
    if isinstance(payload, list) and not payload:
        return ""
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError) as e:
        return f"Error formatting result: {e}"


def clean_content(content: str) -> str:
    """Strip chat-template markers some models leak into their replies."""
    content = content.replace("<|im_start|>", "").replace("<|im_end|>", "")
    return content.strip()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
