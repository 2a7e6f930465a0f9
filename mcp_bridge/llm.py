"""
Model adapter for an Ollama-style chat endpoint.

- set_tools(): the tool set sent with every request
- generate(): one user message → content and/or tool calls
- continue_with_results(): feed tool outputs back and get the follow-up

The adapter never retries; retry policy belongs to the orchestrator.
Conversation history is kept per calling thread, so one adapter can
serve concurrent process_message() calls.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Any

import httpx

from mcp_bridge.errors import EndpointError
from mcp_bridge.models import (
    ConversationTurn,
    ModelResponse,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


def tool_spec(descriptor: ToolDescriptor) -> dict[str, Any]:
    """Build a function-calling spec for one tool."""
    schema = descriptor.input_schema or {}
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": {
                "type": "object",
                "properties": schema.get("properties", {}),
                "required": schema.get("required", descriptor.required),
            },
        },
    }


def extract_tool_calls(message: dict[str, Any]) -> list[ToolCallRequest]:
    """
    Normalize tool calls from a chat reply message.

    Arguments may arrive as an object or as a JSON-encoded string.
    Anything else is an EndpointError rather than a silent empty dict.
    """
    out = []
    raw_calls = message.get("tool_calls") or []
    if not isinstance(raw_calls, list):
        raise EndpointError(f"tool_calls is not a list: {raw_calls!r}")

    for raw in raw_calls:
        function = raw.get("function") if isinstance(raw, dict) else None
        if not isinstance(function, dict) or not isinstance(function.get("name"), str):
            raise EndpointError(f"malformed tool call: {raw!r}")

        args = function.get("arguments") or {}
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError as e:
                raise EndpointError(
                    f"tool call {function['name']} has undecodable arguments: {e}"
                ) from e
        if not isinstance(args, dict):
            raise EndpointError(
                f"tool call {function['name']} arguments must be an object, got {type(args).__name__}"
            )

        call_id = raw.get("id") or f"call_{uuid.uuid4().hex[:12]}"
        out.append(ToolCallRequest(id=str(call_id), name=function["name"], arguments=args))

    return out


def turn_message(turn: ConversationTurn) -> dict[str, Any]:
    """Wire form of one conversation turn."""
    message: dict[str, Any] = {"role": turn.role, "content": turn.content}
    if turn.tool_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in turn.tool_calls
        ]
    if turn.tool_call_id:
        message["tool_call_id"] = turn.tool_call_id
    return message


class ModelAdapter:
    """Chat-completion client with function calling."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        system_prompt: str = "",
        client: httpx.Client | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.system_prompt = system_prompt
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._tools: list[ToolDescriptor] = []
        self._local = threading.local()

    def set_tools(self, tools: list[ToolDescriptor]) -> None:
        self._tools = list(tools)
        logger.debug(f"Model tools: {[t.name for t in self._tools]}")

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools)

    def tool_specs(self) -> list[dict[str, Any]]:
        return [tool_spec(t) for t in self._tools]

    def generate(self, text: str) -> ModelResponse:
        """Start a fresh exchange: system prompt + user text."""
        turns: list[ConversationTurn] = []
        if self.system_prompt:
            turns.append(ConversationTurn(role="system", content=self.system_prompt))
        turns.append(ConversationTurn(role="user", content=text))
        self._local.turns = turns
        return self._chat(turns)

    def continue_with_results(self, results: list[ToolCallResult]) -> ModelResponse:
        """Append one tool turn per result and ask for the follow-up."""
        turns = getattr(self._local, "turns", None)
        if turns is None:
            raise EndpointError("continue_with_results() called before generate()")

        for result in results:
            content = result.output if result.ok else f"Error: {result.error}"
            turns.append(ConversationTurn(role="tool", content=content, tool_call_id=result.id))
        return self._chat(turns)

    def history(self) -> list[ConversationTurn]:
        """The calling thread's current exchange."""
        return list(getattr(self._local, "turns", None) or [])

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _chat(self, turns: list[ConversationTurn]) -> ModelResponse:
        messages = [turn_message(t) for t in turns]
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
        }
        specs = self.tool_specs()
        if specs:
            payload["tools"] = specs

        url = f"{self.endpoint}/chat"
        logger.debug(f"POST {url} ({len(messages)} messages, {len(specs)} tools)")
        try:
            resp = self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise EndpointError(f"timeout calling model endpoint: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise EndpointError(f"network error calling model endpoint: {e}", retryable=True) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Body decoding, redirect loops, malformed URLs.
            raise EndpointError(f"error calling model endpoint: {e}") from e

        if not resp.is_success:
            raise EndpointError(
                f"unexpected status code: {resp.status_code}, body: {resp.text[:500]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise EndpointError(f"failed to decode response: {e}") from e

        message = body.get("message") if isinstance(body, dict) else None
        if not isinstance(message, dict):
            raise EndpointError(f"response has no message: {str(body)[:500]}")

        response = ModelResponse(
            content=str(message.get("content") or ""),
            tool_calls=extract_tool_calls(message),
        )
        logger.debug(
            f"Model replied: {len(response.content)} chars, "
            f"tool calls={[c.name for c in response.tool_calls]}"
        )

        turns.append(ConversationTurn(
            role="assistant",
            content=response.content,
            tool_calls=response.tool_calls,
        ))
        return response
