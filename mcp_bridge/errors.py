"""
Exception hierarchy for the bridge.

Every error raised by the bridge derives from MCPBridgeError so callers
can catch the whole family at once. Provider start-up failures
(LaunchError, HandshakeError, StartupTimeoutError) abort orchestrator
initialization; ProtocolError / ProviderTimeoutError / ToolError abort
only the current tool dispatch; BridgeError wraps the terminal failure
of a whole process_message() call.
"""

from __future__ import annotations


class MCPBridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(MCPBridgeError):
    """Malformed or missing settings. Fatal at startup, never retried."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"configuration error in {field}: {message}")


class LaunchError(MCPBridgeError):
    """The provider process could not be started."""


class HandshakeError(MCPBridgeError):
    """The provider did not complete the initialize exchange."""


class StartupTimeoutError(MCPBridgeError):
    """The provider did not answer the liveness probe in time."""


class ProtocolError(MCPBridgeError):
    """Malformed or error-bearing provider response."""

    def __init__(self, message: str, error: dict | None = None):
        self.error = error
        super().__init__(message)


class ProviderTimeoutError(MCPBridgeError):
    """A provider did not answer a request within its budget."""


class EndpointError(MCPBridgeError):
    """The model endpoint failed: transport error, non-2xx, or bad body."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ToolError(MCPBridgeError):
    """A tool call could not be dispatched or executed."""

    def __init__(self, tool: str, message: str):
        self.tool = tool
        self.message = message
        super().__init__(f"tool error in {tool}: {message}")


class UnknownToolError(ToolError):
    def __init__(self, tool: str):
        super().__init__(tool, f"unknown tool: {tool}")


class UnknownProviderError(ToolError):
    def __init__(self, tool: str, provider: str):
        self.provider = provider
        super().__init__(tool, f"unknown provider: {provider}")


class ToolArgumentError(ToolError):
    """Tool-call arguments were missing or of the wrong type."""


class QueryError(ToolError):
    """The built-in database query was rejected or failed."""

    def __init__(self, message: str, query: str | None = None):
        self.query = query
        super().__init__("query_database", message)


class TeardownError(MCPBridgeError):
    """One or more steps of a close() failed. All failures are kept."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) during close: {details}")


class BridgeTimeoutError(MCPBridgeError):
    """The per-message time budget ran out."""


class BridgeError(MCPBridgeError):
    """Terminal failure of a bridge operation. The cause is chained."""

    def __init__(self, operation: str, message: str, err: BaseException | None = None):
        self.operation = operation
        self.message = message
        self.err = err
        text = f"bridge error during {operation}: {message}"
        if err is not None:
            text = f"{text}: {err}"
        super().__init__(text)
