"""
Built-in read-only SQLite query tool.

Exposed to the model as ``query_database``. Only single read-only
statements are accepted; the connection is additionally put in
``query_only`` mode so a statement that slips past the keyword check
still cannot write.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any

from mcp_bridge.errors import QueryError
from mcp_bridge.models import ToolDescriptor

logger = logging.getLogger(__name__)

TOOL_NAME = "query_database"

_READ_PREFIXES = ("select", "with", "explain")
_WRITE_KEYWORDS = re.compile(
    r"\b(insert|update|delete|drop|alter|create|replace|attach|detach|vacuum|pragma|reindex)\b",
    re.IGNORECASE,
)


@dataclass
class TableSchema:
    name: str
    columns: list[tuple[str, str]] = field(default_factory=list)


class QueryTool:
    """
    One shared SQLite connection plus the schema read at open time.

    The connection is used from whichever thread dispatches the tool
    call, so access is serialized with a lock.
    """

    def __init__(self, path: str):
        self.path = path
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.execute("PRAGMA query_only = ON")
        except sqlite3.Error as e:
            raise QueryError(f"failed to open database {path}: {e}") from e
        self._lock = threading.Lock()
        self._closed = False
        self.schemas: dict[str, TableSchema] = {}
        self._load_schemas()
        logger.info(f"Opened database {path} ({len(self.schemas)} tables)")

    def _load_schemas(self) -> None:
        try:
            tables = self._conn.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ).fetchall()
            for (table,) in tables:
                info = self._conn.execute(f'PRAGMA table_info("{table}")').fetchall()
                self.schemas[table] = TableSchema(
                    name=table,
                    columns=[(col[1], col[2]) for col in info],
                )
        except sqlite3.Error as e:
            raise QueryError(f"failed to load schemas: {e}") from e

    def descriptor(self) -> ToolDescriptor:
        """Tool descriptor, with the available tables listed in the description."""
        lines = ["Execute a read-only SQL query against the SQLite database."]
        if self.schemas:
            lines.append("Available schemas:")
            for schema in self.schemas.values():
                lines.append(f"Table {schema.name}:")
                lines.extend(f"  - {name} ({ctype})" for name, ctype in schema.columns)
        return ToolDescriptor.from_schema(
            TOOL_NAME,
            "\n".join(lines),
            {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "SQL query to execute"},
                },
                "required": ["query"],
            },
        )

    def execute(self, arguments: dict[str, Any]) -> list[dict[str, Any]]:
        """Run ``arguments["query"]`` and return the rows as dicts."""
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise QueryError("query parameter is required")

        validate_query(query)
        logger.debug(f"Executing query: {query}")

        with self._lock:
            if self._closed:
                raise QueryError("database is closed", query)
            try:
                cursor = self._conn.execute(query)
                columns = [d[0] for d in cursor.description or ()]
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise QueryError(f"failed to execute query: {e}", query) from e

        return [
            {col: _readable(val) for col, val in zip(columns, row) if val is not None}
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
        logger.debug(f"Closed database {self.path}")


def validate_query(query: str) -> None:
    """Reject anything but a single read-only statement."""
    stripped = query.strip().rstrip(";").strip()
    lowered = stripped.lower()
    if not lowered.startswith(_READ_PREFIXES):
        raise QueryError("only SELECT queries are allowed", query)
    if ";" in stripped:
        raise QueryError("only one statement may be executed at a time", query)
    match = _WRITE_KEYWORDS.search(stripped)
    if match:
        raise QueryError(f"only SELECT queries are allowed (found {match.group(1).upper()})", query)


def _readable(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
