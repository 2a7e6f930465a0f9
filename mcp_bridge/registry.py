"""
Tool registry: model-facing tool names mapped back to their owners.

Provider tool names may contain characters the model's function-calling
schema rejects ("fetch price", "get-ticker"), so every tool is
registered under a sanitized name. Two tools that sanitize to the same
name collide; the later registration wins and the displaced one is
logged.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Iterator

from mcp_bridge.errors import UnknownToolError
from mcp_bridge.models import ToolDescriptor, ToolRegistryEntry

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_]+")


def sanitize_tool_name(name: str) -> str:
    """Replace each run of non-alphanumeric characters with one underscore."""
    return _UNSAFE.sub("_", name)


class ReadWriteLock:
    """Many readers or one writer. Writers are not starved by new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ToolRegistry:
    """
    Sanitized tool name → ToolRegistryEntry.

    Built during orchestrator initialization, then frozen. Lookups take
    the shared side of the lock so concurrent dispatches never block
    each other.
    """

    def __init__(self):
        self._entries: dict[str, ToolRegistryEntry] = {}
        self._lock = ReadWriteLock()
        self._frozen = False

    def register(self, provider: str, descriptor: ToolDescriptor) -> ToolRegistryEntry:
        """Register a tool. Returns the stored entry."""
        entry = ToolRegistryEntry(
            sanitized_name=sanitize_tool_name(descriptor.name),
            provider=provider,
            native_name=descriptor.name,
            descriptor=descriptor,
        )
        with self._lock.write():
            if self._frozen:
                raise RuntimeError("tool registry is frozen")
            previous = self._entries.get(entry.sanitized_name)
            if previous is not None:
                logger.warning(
                    f"Tool name collision on {entry.sanitized_name}: "
                    f"{provider}/{descriptor.name} replaces "
                    f"{previous.provider}/{previous.native_name}"
                )
            self._entries[entry.sanitized_name] = entry

        logger.debug(f"Registered tool {entry.sanitized_name} → {provider}/{descriptor.name}")
        return entry

    def resolve(self, sanitized_name: str) -> ToolRegistryEntry:
        with self._lock.read():
            entry = self._entries.get(sanitized_name)
        if entry is None:
            raise UnknownToolError(sanitized_name)
        return entry

    def freeze(self) -> None:
        with self._lock.write():
            self._frozen = True

    def clear(self) -> None:
        with self._lock.write():
            self._entries.clear()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def entries(self) -> list[ToolRegistryEntry]:
        with self._lock.read():
            return list(self._entries.values())

    def descriptors(self) -> list[ToolDescriptor]:
        """Descriptors renamed to their sanitized names, as the model sees them."""
        return [
            ToolDescriptor(
                name=e.sanitized_name,
                description=e.descriptor.description,
                parameters=e.descriptor.parameters,
                input_schema=e.descriptor.input_schema,
            )
            for e in self.entries()
        ]

    def __contains__(self, sanitized_name: str) -> bool:
        with self._lock.read():
            return sanitized_name in self._entries

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)
