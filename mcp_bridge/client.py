"""
Provider client: the three tool-protocol operations over one transport.

Usage:
    client = ProviderClient.spawn(descriptor)   # launch + liveness probe
    caps = client.handshake()
    tools = client.list_tools()
    result = client.call_tool("echo", {"text": "hi"})
    client.close()
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp_bridge import __version__
from mcp_bridge.errors import (
    HandshakeError,
    ProtocolError,
    ProviderTimeoutError,
    StartupTimeoutError,
    TeardownError,
)
from mcp_bridge.models import (
    Capabilities,
    ProviderDescriptor,
    ToolCallResult,
    ToolDescriptor,
)
from mcp_bridge.transport import JsonRpcRequest, StdioTransport, Transport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "mcp-bridge"

PROBE_TIMEOUT = 5.0
HANDSHAKE_TIMEOUT = 10.0
REQUEST_TIMEOUT = 10.0


class ProviderClient:
    """
    Owns one tool-provider session.

    Every operation is blocking and bounded by a timeout. The transport
    serializes requests, so a client may be shared between threads.
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        self.name = name
        self.transport = transport
        self.request_timeout = request_timeout
        self.capabilities: Capabilities | None = None
        self._closed = False

    @classmethod
    def spawn(
        cls,
        descriptor: ProviderDescriptor,
        probe_timeout: float = PROBE_TIMEOUT,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> "ProviderClient":
        """
        Launch the provider and confirm it answers.

        The liveness probe is a tools/list request with a short bound. A
        provider that does not answer in time is torn down and
        StartupTimeoutError is raised.

        Raises:
            LaunchError: the process could not be started.
            StartupTimeoutError: the probe went unanswered.
        """
        transport = StdioTransport(descriptor.argv, env=descriptor.env, name=descriptor.name)
        transport.start()
        client = cls(descriptor.name, transport, request_timeout=request_timeout)

        try:
            client._probe(probe_timeout)
        except (ProviderTimeoutError, ProtocolError) as e:
            client._close_quietly()
            raise StartupTimeoutError(
                f"provider {descriptor.name} did not answer the liveness probe: {e}"
            ) from e

        logger.info(f"Provider {descriptor.name} started (pid {getattr(transport, 'pid', None)})")
        return client

    def _probe(self, timeout: float) -> None:
        response = self._request("tools/list", {}, timeout)
        logger.debug(f"[{self.name}] probe response: {response.result or response.error}")

    def handshake(self, timeout: float = HANDSHAKE_TIMEOUT) -> Capabilities:
        """Send initialize and the initialized notification."""
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"experimental": {}},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        }
        try:
            response = self._request("initialize", params, timeout)
        except (ProviderTimeoutError, ProtocolError) as e:
            raise HandshakeError(f"initialize failed for {self.name}: {e}") from e

        if response.is_error:
            raise HandshakeError(
                f"initialize rejected by {self.name}: {response.error_message}"
            )

        self.capabilities = Capabilities.from_result(response.result)
        try:
            self.transport.notify(JsonRpcRequest("notifications/initialized", {}))
        except ProtocolError as e:
            raise HandshakeError(f"initialized notification failed for {self.name}: {e}") from e

        logger.info(
            f"[{self.name}] initialized: server={self.capabilities.server_name or '?'} "
            f"protocol={self.capabilities.protocol_version or '?'}"
        )
        return self.capabilities

    def list_tools(self) -> list[ToolDescriptor]:
        """Fetch and decode the provider's tool list."""
        response = self._request("tools/list", {}, self.request_timeout)
        if response.is_error:
            raise ProtocolError(
                f"tools/list failed on {self.name}: {response.error_message}",
                error=response.error,
            )

        result = response.result
        entries = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(entries, list):
            raise ProtocolError(f"tools/list on {self.name} returned no tool list: {result!r}")

        tools = []
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                logger.warning(f"[{self.name}] skipping malformed tool entry: {entry!r}")
                continue
            schema = entry.get("inputSchema", entry.get("parameters"))
            tools.append(ToolDescriptor.from_schema(
                entry["name"],
                str(entry.get("description") or ""),
                schema,
            ))

        logger.debug(f"[{self.name}] tools: {[t.name for t in tools]}")
        return tools

    def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        call_id: str = "",
    ) -> ToolCallResult:
        """
        Invoke a tool and decode its content items into display text.

        Raises:
            ProtocolError: the provider answered with an error.
            ProviderTimeoutError: no answer within request_timeout.
        """
        response = self._request(
            "tools/call",
            {"name": name, "arguments": arguments},
            self.request_timeout,
        )
        if response.is_error:
            raise ProtocolError(
                f"tool call failed ({self.name}/{name}): {response.error_message}",
                error=response.error,
            )

        output = content_text(response.result)
        error = None
        if isinstance(response.result, dict) and response.result.get("isError"):
            error = output or f"{self.name}/{name} reported an error"
        return ToolCallResult(id=call_id, output=output, error=error)

    def close(self) -> None:
        """Close streams and terminate the process. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        logger.info(f"Closing provider {self.name}")
        self.transport.stop()

    def _close_quietly(self) -> None:
        try:
            self.close()
        except TeardownError as e:
            logger.warning(f"[{self.name}] errors while closing: {e}")

    def _request(self, method: str, params: dict, timeout: float):
        request = JsonRpcRequest(method=method, params=params, id=self.transport.next_id())
        return self.transport.send(request, timeout)


def content_text(result: Any) -> str:
    """Concatenate a tools/call result's content items into one string."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result.strip()
    if not isinstance(result, dict) or "content" not in result:
        return json.dumps(result, indent=2, default=str)

    content = result.get("content")
    if not isinstance(content, list):
        content = [content]

    parts = []
    for item in content:
        if isinstance(item, dict) and isinstance(item.get("text"), str):
            text = item["text"].strip()
        elif isinstance(item, str):
            text = item.strip()
        else:
            text = json.dumps(item, indent=2, default=str)
        if text:
            parts.append(text)
    return "\n".join(parts)
