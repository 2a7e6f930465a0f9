"""
Plain data carried between the provider client, the registry,
the model adapter and the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Provider name recorded for tools implemented inside the orchestrator.
BUILTIN_PROVIDER = "__builtin__"


@dataclass(frozen=True)
class ProviderDescriptor:
    """How to launch one tool provider."""
    name: str
    command: str
    arguments: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    enum: tuple[Any, ...] | None = None


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as advertised by its provider (or the built-in query tool)."""
    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_schema(cls, name: str, description: str, schema: dict | None) -> "ToolDescriptor":
        """Build a descriptor from a JSON-schema style ``inputSchema``."""
        schema = schema if isinstance(schema, dict) else {}
        properties = schema.get("properties")
        if not isinstance(properties, dict):
            properties = {}
        required = schema.get("required")
        required = set(required) if isinstance(required, list) else set()

        params = []
        for pname, pinfo in properties.items():
            pinfo = pinfo if isinstance(pinfo, dict) else {}
            enum = pinfo.get("enum")
            params.append(ToolParameter(
                name=pname,
                type=str(pinfo.get("type", "string")),
                description=str(pinfo.get("description", "")),
                required=pname in required,
                enum=tuple(enum) if isinstance(enum, list) else None,
            ))

        return cls(
            name=name,
            description=description,
            parameters=tuple(params),
            input_schema={
                "type": "object",
                "properties": properties,
                "required": sorted(required),
            },
        )

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]


@dataclass(frozen=True)
class ToolRegistryEntry:
    """Sanitized model-facing name → owning provider and native tool name."""
    sanitized_name: str
    provider: str
    native_name: str
    descriptor: ToolDescriptor

    @property
    def is_builtin(self) -> bool:
        return self.provider == BUILTIN_PROVIDER


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallResult:
    id: str
    output: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ConversationTurn:
    """One message of an exchange. Tool turns carry the id of the call they answer."""
    role: str
    content: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    tool_call_id: str = ""


@dataclass
class ModelResponse:
    content: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class Capabilities:
    """What a provider reported in its initialize reply."""
    protocol_version: str = ""
    server_name: str = ""
    server_version: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: Any) -> "Capabilities":
        if not isinstance(result, dict):
            return cls()
        info = result.get("serverInfo")
        info = info if isinstance(info, dict) else {}
        caps = result.get("capabilities")
        return cls(
            protocol_version=str(result.get("protocolVersion", "")),
            server_name=str(info.get("name", "")),
            server_version=str(info.get("version", "")),
            raw=caps if isinstance(caps, dict) else {},
        )
