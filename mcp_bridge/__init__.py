"""
mcp-bridge: connects a chat model to stdio tool providers.

Architecture:
    ┌──────────────┐    HTTP     ┌──────────────┐     stdio      ┌──────────────┐
    │  Chat model  │ ─────────── │ Orchestrator │ ────────────── │ Tool provider│
    │ (/api/chat)  │  tool calls │  + registry  │   JSON-RPC     │ (subprocess) │
    └──────────────┘             └──────────────┘     pipes      └──────────────┘

Each tool provider is a standalone process that communicates via
stdin/stdout using line-delimited JSON-RPC 2.0 messages.

The StdioTransport handles the wire; ProviderClient speaks the three
protocol operations (initialize, tools/list, tools/call) on top of it.
The Orchestrator starts every configured provider, registers their
tools under sanitized names next to the built-in query_database tool,
and runs the generate → dispatch → continue loop against the model.
"""

__version__ = "0.1.0"

from mcp_bridge.client import ProviderClient
from mcp_bridge.config import BridgeConfig
from mcp_bridge.errors import BridgeError, MCPBridgeError
from mcp_bridge.orchestrator import Orchestrator
from mcp_bridge.registry import ToolRegistry, sanitize_tool_name
from mcp_bridge.server import StdioToolServer, ToolHandler


# Bridge requires langchain; lazy import to keep providers lightweight
def to_langchain_tools(*args, **kwargs):
    from mcp_bridge.bridge import to_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "BridgeConfig",
    "BridgeError",
    "MCPBridgeError",
    "Orchestrator",
    "ProviderClient",
    "StdioToolServer",
    "ToolHandler",
    "ToolRegistry",
    "sanitize_tool_name",
    "to_langchain_tools",
]
