"""
Orchestrator: routes a model's tool calls to the providers that own them.

The orchestrator is the bridge between the language model and the
running tool-provider processes. It owns every collaborator outright:
the provider sessions, the tool registry, the built-in query tool and
the model adapter. Nothing is global.

Usage:
    orchestrator = Orchestrator(config)
    orchestrator.initialize()        # spawn, handshake, list, register

    reply = orchestrator.process_message("What tables do we have?")

    orchestrator.close()             # or use it as a context manager
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from mcp_bridge.client import ProviderClient
from mcp_bridge.config import BridgeConfig
from mcp_bridge.database import TOOL_NAME as QUERY_TOOL_NAME
from mcp_bridge.database import QueryTool
from mcp_bridge.errors import (
    BridgeError,
    BridgeTimeoutError,
    EndpointError,
    MCPBridgeError,
    ProviderTimeoutError,
    TeardownError,
    ToolArgumentError,
    ToolError,
    UnknownProviderError,
)
from mcp_bridge.formatting import clean_content, format_result
from mcp_bridge.llm import ModelAdapter
from mcp_bridge.models import (
    BUILTIN_PROVIDER,
    ModelResponse,
    ProviderDescriptor,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
)
from mcp_bridge.registry import ReadWriteLock, ToolRegistry
from mcp_bridge.validation import validate_arguments

logger = logging.getLogger(__name__)


def is_retryable(err: BaseException) -> bool:
    """Only transient network / timeout conditions are worth another attempt."""
    if isinstance(err, EndpointError):
        return err.retryable
    return isinstance(err, ProviderTimeoutError)


class Orchestrator:
    """
    Aggregates tools from every configured provider plus the built-in
    query tool, and drives the generate → dispatch → continue loop.

    Responsibilities:
    - Launch providers and discover their tools (fail-fast)
    - Map sanitized tool names back to (provider, native name)
    - Retry transient model failures with exponential backoff
    - Format tool output and feed it back to the model
    - Tear everything down exactly once
    """

    def __init__(
        self,
        config: BridgeConfig,
        model: ModelAdapter | None = None,
        query_tool: QueryTool | None = None,
        client_factory: Callable[[ProviderDescriptor], ProviderClient] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.settings = config.bridge
        self.model = model or ModelAdapter(
            config.llm.endpoint,
            config.llm.model,
            config.llm.system_prompt,
            timeout=config.llm.timeout,
        )
        self._query_tool = query_tool
        self._client_factory = client_factory or ProviderClient.spawn
        self._sleep = sleep
        self._clock = clock

        self.registry = ToolRegistry()
        self._clients: dict[str, ProviderClient] = {}
        self._clients_lock = ReadWriteLock()
        self._closed = threading.Event()
        self._initialized = False

    # -- lifecycle -------------------------------------------------------

    def initialize(self) -> None:
        """
        Start every configured provider and build the registry.

        Any failure closes what was already started and re-raises the
        first error; there is no partial startup.
        """
        if self._initialized:
            raise RuntimeError("orchestrator already initialized")
        if self._closed.is_set():
            raise RuntimeError("orchestrator is closed")

        descriptors = self.config.provider_descriptors()
        logger.info(f"Initializing bridge with {len(descriptors)} provider(s)")

        try:
            if self._query_tool is None:
                self._query_tool = QueryTool(self.config.database.path)
            self.registry.register(BUILTIN_PROVIDER, self._query_tool.descriptor())

            for descriptor in descriptors:
                self._start_provider(descriptor)
        except BaseException:
            self._shutdown_quietly()
            raise

        self.model.set_tools(self.registry.descriptors())
        self.registry.freeze()
        self._initialized = True
        logger.info(f"Bridge ready: {len(self.registry)} tools from {len(self._clients)} provider(s)")

    def _start_provider(self, descriptor: ProviderDescriptor) -> None:
        logger.info(f"Starting provider {descriptor.name}: {' '.join(descriptor.argv)}")
        client = self._client_factory(descriptor)
        with self._clients_lock.write():
            self._clients[descriptor.name] = client

        client.handshake()
        tools = client.list_tools()
        for tool in tools:
            self.registry.register(descriptor.name, tool)
        logger.info(f"Provider {descriptor.name} ready: tools={[t.name for t in tools]}")

    def close(self) -> None:
        """Cancel in-flight work and close every provider and the database."""
        if self._closed.is_set():
            return
        self._closed.set()
        logger.info("Closing bridge")

        errors = self._shutdown()
        self.model.close()
        if errors:
            raise TeardownError(errors)

    def _shutdown(self) -> list[BaseException]:
        errors: list[BaseException] = []

        if self._query_tool is not None:
            try:
                self._query_tool.close()
            except MCPBridgeError as e:
                errors.append(e)

        with self._clients_lock.write():
            clients = list(self._clients.items())
            self._clients.clear()

        for name, client in clients:
            try:
                client.close()
            except TeardownError as e:
                logger.warning(f"Errors closing provider {name}: {e}")
                errors.append(e)
        return errors

    def _shutdown_quietly(self) -> None:
        for err in self._shutdown():
            logger.warning(f"Cleanup after failed startup: {err}")

    def __enter__(self) -> "Orchestrator":
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- introspection ---------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def tools(self) -> list[ToolDescriptor]:
        """Tools as the model sees them (sanitized names)."""
        return self.registry.descriptors()

    def list_providers(self) -> dict[str, bool]:
        """Provider name → whether its process is still running."""
        with self._clients_lock.read():
            return {name: c.transport.is_alive() for name, c in self._clients.items()}

    # -- conversation ----------------------------------------------------

    def process_message(self, text: str) -> str:
        """
        Answer one user message, running tools as the model asks for them.

        Returns the model's final text, or the last tool output when the
        model has nothing to add.

        Raises:
            BridgeError: generation failed (after retries for transient
                errors), a tool dispatch failed, or the time budget ran out.
        """
        if self._closed.is_set():
            raise BridgeError("process_message", "bridge is closed")
        if not self._initialized:
            raise BridgeError("process_message", "bridge is not initialized")

        logger.debug(f"Processing message: {text}")
        deadline = self._clock() + self.settings.message_timeout

        response = self._with_retry("process_message", lambda: self.model.generate(text), deadline)

        last_output = ""
        for turn in range(self.settings.max_turns):
            if not response.has_tool_calls:
                break

            try:
                results = self.handle_tool_calls(response.tool_calls)
            except MCPBridgeError as e:
                logger.error(f"Tool execution failed: {e}")
                raise BridgeError("handle_tools", "tool execution failed", e) from e
            if results:
                last_output = results[-1].output

            if turn == self.settings.max_turns - 1:
                logger.warning(f"Stopping after {self.settings.max_turns} tool turns")
                break

            self._check_deadline(deadline)
            response = self._with_retry(
                "continue_conversation",
                lambda: self.model.continue_with_results(results),
                deadline,
            )

        content = clean_content(response.content)
        return content or last_output

    def _with_retry(
        self,
        operation: str,
        call: Callable[[], ModelResponse],
        deadline: float,
    ) -> ModelResponse:
        backoff = self.settings.initial_backoff
        attempts = self.settings.max_attempts
        last_err: BaseException | None = None

        for attempt in range(1, attempts + 1):
            self._check_deadline(deadline)
            logger.debug(f"Generating model response (attempt {attempt}/{attempts})")
            try:
                return call()
            except MCPBridgeError as e:
                last_err = e
                if not is_retryable(e):
                    logger.debug(f"Non-retryable error encountered: {e}")
                    raise BridgeError(operation, "model request failed", e) from e

            if attempt < attempts:
                logger.warning(f"Retrying after error: {last_err} (attempt {attempt}/{attempts})")
                self._sleep(backoff)
                backoff *= 2

        raise BridgeError(operation, "failed after retry attempts", last_err) from last_err

    def _check_deadline(self, deadline: float) -> None:
        if self._closed.is_set():
            raise BridgeError("process_message", "bridge was closed")
        if self._clock() > deadline:
            err = BridgeTimeoutError(
                f"message not answered within {self.settings.message_timeout:g}s"
            )
            raise BridgeError("process_message", "timed out", err) from err

    # -- dispatch --------------------------------------------------------

    def handle_tool_calls(self, calls: list[ToolCallRequest]) -> list[ToolCallResult]:
        """Dispatch each call in order. The first failure aborts the batch."""
        results = []
        for call in calls:
            result = self.dispatch(call)
            if not result.ok:
                raise ToolError(call.name, result.error)
            results.append(result)
        return results

    def dispatch(self, call: ToolCallRequest) -> ToolCallResult:
        """
        Execute one tool call.

        Raises:
            UnknownToolError: the sanitized name isn't registered.
            UnknownProviderError: the owning provider isn't running.
            ToolArgumentError: arguments aren't a mapping or don't fit the
                tool's input schema (checked after numeric coercion).
            ProtocolError, ProviderTimeoutError: the provider failed.
        """
        entry = self.registry.resolve(call.name)
        if not isinstance(call.arguments, dict):
            raise ToolArgumentError(
                call.name,
                f"arguments must be an object, got {type(call.arguments).__name__}",
            )

        if entry.is_builtin:
            validate_arguments(entry.descriptor, call.arguments, tool=call.name)
            return self._run_builtin(call)

        with self._clients_lock.read():
            client = self._clients.get(entry.provider)
        if client is None:
            raise UnknownProviderError(call.name, entry.provider)

        arguments = self.coerce_arguments(call.arguments)
        validate_arguments(entry.descriptor, arguments, tool=call.name)
        logger.debug(
            f"Executing tool {entry.native_name} on provider {entry.provider} "
            f"with arguments: {arguments}"
        )
        return client.call_tool(entry.native_name, arguments, call_id=call.id)

    def _run_builtin(self, call: ToolCallRequest) -> ToolCallResult:
        if call.name != QUERY_TOOL_NAME or self._query_tool is None:
            raise UnknownProviderError(call.name, BUILTIN_PROVIDER)

        query = call.arguments.get("query")
        if not isinstance(query, str):
            raise ToolArgumentError(call.name, "invalid query argument: expected a string")

        logger.debug(f"Executing database query: {query}")
        rows = self._query_tool.execute({"query": query})
        return ToolCallResult(id=call.id, output=format_result(rows))

    def coerce_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Send numbers as strings for fields providers treat as string enums."""
        fields = set(self.settings.string_enum_fields)
        converted = {}
        for key, value in arguments.items():
            if key in fields and isinstance(value, (int, float)) and not isinstance(value, bool):
                if isinstance(value, float) and value.is_integer():
                    value = int(value)
                value = str(value)
            converted[key] = value
        return converted
