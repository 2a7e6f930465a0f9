"""
Tool provider base class: the other end of the tool protocol.

A tool provider is a standalone process that:
1. Reads JSON-RPC requests from stdin, one per line
2. Dispatches to registered ToolHandlers
3. Writes JSON-RPC responses (and the odd notification) to stdout

To create a provider:

    from mcp_bridge.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }
        required = ["input"]

        def handle(self, params: dict) -> str:
            return f"processed: {params['input']}"

    if __name__ == "__main__":
        server = StdioToolServer("my-provider")
        server.register(MyTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Returns:
            A string, or anything JSON-serializable (sent as JSON text).
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool schema for discovery."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


class StdioToolServer:
    """
    JSON-RPC tool provider that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize" → protocol version and server info
        - "tools/list" → {"tools": [schema, ...]}
        - "tools/call" → {"content": [{"type": "text", "text": ...}], "isError": bool}
        - "ping"       → health check
    - Requests without an id are notifications and get no reply.
    """

    protocol_version = "2024-11-05"

    def __init__(
        self,
        name: str = "tool-server",
        version: str = "0.1.0",
        banner: str | None = None,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ):
        self.name = name
        self.version = version
        self.banner = banner
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self) -> None:
        """
        Main loop: read requests from stdin, dispatch, write responses to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        logger.info(f"Tool server starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        if self.banner:
            self._write_line(self.banner)
        self.notify("notifications/message", {"level": "info", "data": f"{self.name} ready"})

        for line in self._stdin:
            line = line.strip()
            if not line:
                continue
            self.handle_line(line)

    def handle_line(self, line: str) -> None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            self._write_error(None, PARSE_ERROR, f"Parse error: {e}")
            return
        if not isinstance(request, dict):
            self._write_error(None, PARSE_ERROR, "Parse error: expected an object")
            return

        method = request.get("method", "")
        params = request.get("params") or {}

        if "id" not in request:
            logger.debug(f"Notification: {method}")
            return

        request_id = request["id"]
        try:
            result = self._dispatch(method, params)
        except LookupError as e:
            self._write_error(request_id, METHOD_NOT_FOUND, str(e))
        except ValueError as e:
            self._write_error(request_id, INVALID_PARAMS, str(e))
        except Exception as e:
            logger.exception(f"{method} failed")
            self._write_error(request_id, INTERNAL_ERROR, str(e))
        else:
            self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": self.protocol_version,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            tool_params = params.get("arguments") or {}

            handler = self._handlers.get(tool_name)
            if not handler:
                raise ValueError(
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}"
                )

            try:
                output = handler.handle(tool_params)
            except Exception as e:
                logger.warning(f"Tool {tool_name} failed: {e}")
                return {"content": [{"type": "text", "text": str(e)}], "isError": True}

            if not isinstance(output, str):
                output = json.dumps(output)
            return {"content": [{"type": "text", "text": output}], "isError": False}

        raise LookupError(f"Unknown method: '{method}'")

    def notify(self, method: str, params: dict) -> None:
        """Write a notification (no id) to stdout."""
        self._write({"jsonrpc": "2.0", "method": method, "params": params})

    def _write_error(self, request_id: Any, code: int, message: str) -> None:
        """Write a JSON-RPC error response to stdout."""
        self._write({
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        })

    def _write(self, message: dict) -> None:
        self._write_line(json.dumps(message))

    def _write_line(self, line: str) -> None:
        self._stdout.write(line + "\n")
        self._stdout.flush()
