"""Tests for mcp_bridge.llm."""

import json

import httpx
import pytest

from mcp_bridge.errors import EndpointError
from mcp_bridge.llm import ModelAdapter, extract_tool_calls, tool_spec
from mcp_bridge.models import ToolCallResult, ToolDescriptor

ENDPOINT = "http://model.test/api"


class FakeEndpoint:
    """httpx.MockTransport handler that records requests and replays replies."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url == f"{ENDPOINT}/chat"
        self.requests.append(json.loads(request.content))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json={"model": "m", "message": reply})


def _adapter(endpoint: FakeEndpoint, system_prompt: str = "be brief") -> ModelAdapter:
    client = httpx.Client(transport=httpx.MockTransport(endpoint))
    return ModelAdapter(ENDPOINT, "test-model", system_prompt, client=client)


ECHO_TOOL = ToolDescriptor.from_schema(
    "echo",
    "Echo text",
    {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
)


class TestToolSpec:
    """Tests for function-calling schema translation."""

    def test_tool_spec(self):
        assert tool_spec(ECHO_TOOL) == {
            "type": "function",
            "function": {
                "name": "echo",
                "description": "Echo text",
                "parameters": {
                    "type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"],
                },
            },
        }


class TestExtractToolCalls:
    """Tests for tool-call parsing."""

    def test_object_arguments(self):
        [call] = extract_tool_calls({
            "tool_calls": [{"id": "c1", "function": {"name": "echo", "arguments": {"text": "hi"}}}],
        })
        assert (call.id, call.name, call.arguments) == ("c1", "echo", {"text": "hi"})

    def test_string_arguments(self):
        [call] = extract_tool_calls({
            "tool_calls": [{"function": {"name": "echo", "arguments": '{"text": "hi"}'}}],
        })
        assert call.arguments == {"text": "hi"}
        assert call.id.startswith("call_")

    def test_no_tool_calls(self):
        assert extract_tool_calls({"content": "hello"}) == []

    @pytest.mark.parametrize("arguments", ["{not json", "[1, 2]", 5])
    def test_malformed_arguments(self, arguments):
        with pytest.raises(EndpointError):
            extract_tool_calls({"tool_calls": [{"function": {"name": "echo", "arguments": arguments}}]})

    def test_missing_function_name(self):
        with pytest.raises(EndpointError):
            extract_tool_calls({"tool_calls": [{"function": {}}]})


class TestModelAdapter:
    """Tests for ModelAdapter request/response shaping."""

    def test_generate_request_shape(self):
        endpoint = FakeEndpoint({"role": "assistant", "content": "hello"})
        adapter = _adapter(endpoint)
        adapter.set_tools([ECHO_TOOL])

        response = adapter.generate("hi there")

        assert response.content == "hello"
        assert response.tool_calls == []
        [payload] = endpoint.requests
        assert payload["model"] == "test-model"
        assert payload["stream"] is False
        assert payload["messages"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi there"},
        ]
        assert payload["tools"][0]["function"]["name"] == "echo"

    def test_generate_with_tool_calls(self):
        endpoint = FakeEndpoint({
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "echo", "arguments": {"text": "hi"}}}],
        })
        response = _adapter(endpoint).generate("say hi")
        assert response.has_tool_calls
        assert response.tool_calls[0].name == "echo"

    def test_continue_with_results(self):
        endpoint = FakeEndpoint(
            {"role": "assistant", "content": "", "tool_calls": [
                {"id": "c1", "function": {"name": "echo", "arguments": {"text": "hi"}}},
            ]},
            {"role": "assistant", "content": "The tool said hi"},
        )
        adapter = _adapter(endpoint)
        adapter.set_tools([ECHO_TOOL])
        adapter.generate("say hi")

        response = adapter.continue_with_results([ToolCallResult(id="c1", output="hi")])

        assert response.content == "The tool said hi"
        payload = endpoint.requests[1]
        assert payload["tools"][0]["function"]["name"] == "echo"
        roles = [m["role"] for m in payload["messages"]]
        assert roles == ["system", "user", "assistant", "tool"]
        assert payload["messages"][-1] == {"role": "tool", "tool_call_id": "c1", "content": "hi"}

    def test_continue_reports_tool_errors(self):
        endpoint = FakeEndpoint({"role": "assistant", "content": ""}, {"role": "assistant", "content": "ok"})
        adapter = _adapter(endpoint, system_prompt="")
        adapter.generate("x")
        adapter.continue_with_results([ToolCallResult(id="c1", output="", error="boom")])
        assert endpoint.requests[1]["messages"][-1]["content"] == "Error: boom"

    def test_continue_before_generate(self):
        with pytest.raises(EndpointError):
            _adapter(FakeEndpoint()).continue_with_results([])

    def test_non_2xx_is_not_retryable(self):
        endpoint = FakeEndpoint(httpx.Response(500, text="model not loaded"))
        with pytest.raises(EndpointError) as exc_info:
            _adapter(endpoint).generate("hi")
        assert exc_info.value.status_code == 500
        assert not exc_info.value.retryable
        assert "model not loaded" in str(exc_info.value)

    def test_undecodable_body(self):
        endpoint = FakeEndpoint(httpx.Response(200, text="<html>"))
        with pytest.raises(EndpointError) as exc_info:
            _adapter(endpoint).generate("hi")
        assert not exc_info.value.retryable

    @pytest.mark.parametrize("exc", [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
    ])
    def test_network_errors_are_retryable(self, exc):
        with pytest.raises(EndpointError) as exc_info:
            _adapter(FakeEndpoint(exc)).generate("hi")
        assert exc_info.value.retryable

    def test_undecodable_content_encoding(self):
        broken = httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")
        with pytest.raises(EndpointError) as exc_info:
            _adapter(FakeEndpoint(broken)).generate("hi")
        assert not exc_info.value.retryable
        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)

    def test_history_is_kept_as_turns(self):
        endpoint = FakeEndpoint(
            {"role": "assistant", "content": "", "tool_calls": [
                {"id": "c1", "function": {"name": "echo", "arguments": '{"text": "hi"}'}},
            ]},
            {"role": "assistant", "content": "done"},
        )
        adapter = _adapter(endpoint)
        adapter.generate("say hi")
        adapter.continue_with_results([ToolCallResult(id="c1", output="hi")])

        history = adapter.history()
        assert [t.role for t in history] == ["system", "user", "assistant", "tool", "assistant"]
        assert history[2].tool_calls[0].arguments == {"text": "hi"}
        assert history[3].tool_call_id == "c1"

        replayed = endpoint.requests[1]["messages"][2]
        assert replayed["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "echo", "arguments": {"text": "hi"}}},
        ]
