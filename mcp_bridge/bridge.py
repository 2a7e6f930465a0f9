"""
Bridge between the orchestrator's tool registry and LangChain.

Every registered tool (provider tools and the built-in query tool)
can be exported as a LangChain StructuredTool whose invocation goes
through Orchestrator.dispatch(), so a LangChain agent sees the same
tools the chat model does.

Usage:
    from mcp_bridge.bridge import to_langchain_tools

    with Orchestrator(config) as orchestrator:
        tools = to_langchain_tools(orchestrator)
        agent = create_agent(model, tools)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool

from mcp_bridge.errors import MCPBridgeError
from mcp_bridge.models import ToolCallRequest, ToolDescriptor

if TYPE_CHECKING:
    from mcp_bridge.orchestrator import Orchestrator


def to_langchain_tool(
    orchestrator: "Orchestrator",
    descriptor: ToolDescriptor,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to one registry entry.

    Args:
        orchestrator: An initialized Orchestrator
        descriptor: The tool, under its sanitized name
        description_override: Optional override for the tool description

    Returns:
        A StructuredTool whose result is the formatted tool output. Failures
        come back as an "Error calling ..." string so the agent can react.
    """
    def _call(**kwargs: Any) -> str:
        request = ToolCallRequest(
            id=f"lc_{uuid.uuid4().hex[:12]}",
            name=descriptor.name,
            arguments=kwargs,
        )
        try:
            result = orchestrator.dispatch(request)
        except MCPBridgeError as e:
            return f"Error calling {descriptor.name}: {e}"
        if not result.ok:
            return f"Error calling {descriptor.name}: {result.error}"
        return result.output

    return StructuredTool.from_function(
        func=_call,
        name=descriptor.name,
        description=description_override or descriptor.description or descriptor.name,
        args_schema=descriptor.input_schema or {"type": "object", "properties": {}},
    )


def to_langchain_tools(orchestrator: "Orchestrator") -> list[StructuredTool]:
    """Export every registered tool."""
    return [to_langchain_tool(orchestrator, d) for d in orchestrator.tools()]


def tool_prompt_instructions(descriptor: ToolDescriptor) -> str:
    """Generate prompt instructions from a tool descriptor."""
    lines = [f"## Tool: {descriptor.name}", descriptor.description, ""]
    if descriptor.parameters:
        lines.append("Parameters:")
        for param in descriptor.parameters:
            flag = " (required)" if param.required else ""
            lines.append(f"  - {param.name} ({param.type}){flag}: {param.description}")

    return "\n".join(lines)
