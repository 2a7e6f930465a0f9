"""Shared pytest fixtures for bridge tests."""

from __future__ import annotations

import sys

import pytest

from mcp_bridge.config import BridgeConfig, ProviderConfig
from mcp_bridge.database import QueryTool
from mcp_bridge.models import (
    ModelResponse,
    ProviderDescriptor,
    ToolCallResult,
    ToolDescriptor,
)


ECHO_MODULE = "mcp_bridge.servers.echo"


def echo_descriptor(name: str = "echo", *extra: str) -> ProviderDescriptor:
    """Descriptor that launches the echo provider with this interpreter."""
    return ProviderDescriptor(
        name=name,
        command=sys.executable,
        arguments=("-m", ECHO_MODULE, *extra),
    )


def echo_provider_config(name: str = "echo", *extra: str) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        command=sys.executable,
        arguments=["-m", ECHO_MODULE, *extra],
    )


# =============================================================================
# Test doubles
# =============================================================================

class ScriptedModel:
    """
    Stand-in for ModelAdapter.

    Each generate()/continue_with_results() call pops the next scripted
    item; exceptions are raised instead of returned.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.tools: list[ToolDescriptor] | None = None
        self.generate_calls: list[str] = []
        self.continuations: list[list[ToolCallResult]] = []
        self.closed = False

    def set_tools(self, tools):
        self.tools = list(tools)

    def generate(self, text: str) -> ModelResponse:
        self.generate_calls.append(text)
        return self._next()

    def continue_with_results(self, results) -> ModelResponse:
        self.continuations.append(list(results))
        return self._next()

    def close(self):
        self.closed = True

    def _next(self) -> ModelResponse:
        if not self.responses:
            raise AssertionError("model called more times than scripted")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeTransport:
    def __init__(self):
        self.alive = True

    def is_alive(self) -> bool:
        return self.alive


class FakeClient:
    """In-process stand-in for ProviderClient."""

    def __init__(self, name: str, tools: list[ToolDescriptor], outputs: dict | None = None):
        self.name = name
        self.tools = tools
        self.outputs = outputs or {}
        self.transport = _FakeTransport()
        self.calls: list[tuple[str, dict]] = []
        self.handshakes = 0
        self.closed = False

    def handshake(self):
        self.handshakes += 1

    def list_tools(self):
        return list(self.tools)

    def call_tool(self, name, arguments, call_id=""):
        self.calls.append((name, dict(arguments)))
        return ToolCallResult(id=call_id, output=self.outputs.get(name, f"{name} ok"))

    def close(self):
        self.closed = True
        self.transport.alive = False


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def query_tool():
    """An in-memory database behind the built-in query tool."""
    tool = QueryTool(":memory:")
    yield tool
    tool.close()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def bridge_config() -> BridgeConfig:
    """Config with no providers; tests add what they need."""
    return BridgeConfig()
