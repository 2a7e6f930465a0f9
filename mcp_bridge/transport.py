"""
Transport layer for the tool protocol.

Currently implements:
  - StdioTransport: line-delimited JSON-RPC over a child process's
    stdin/stdout pipes.

One line = one message. A background reader thread drains stdout and
classifies every line:

  - not a JSON object      → discarded (startup banners and the like)
  - method, no result/error → notification, logged only
  - result or error        → response, handed to the waiter for its id

Requests on one transport are serialized: a caller holds the session
lock from the moment its request is written until its response (or
timeout) has been consumed, so there is never more than one request
outstanding. Responses are additionally matched by id, which means a
late reply to a request that already timed out is dropped instead of
being handed to the next caller.
"""

from __future__ import annotations

import collections
import itertools
import json
import logging
import os
import queue
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mcp_bridge.errors import (
    LaunchError,
    ProtocolError,
    ProviderTimeoutError,
    TeardownError,
)

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
STDERR_TAIL_LINES = 50

_EOF = object()


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any]
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_json(self) -> str:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
        if self.id is not None:
            message["id"] = self.id
        message["method"] = self.method
        message["params"] = self.params
        return json.dumps(message)


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_message(cls, message: dict) -> "JsonRpcResponse":
        error = message.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"code": None, "message": str(error)}
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=error,
        )

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        return cls.from_message(json.loads(data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        code = self.error.get("code")
        message = self.error.get("message", "unknown error")
        return f"{message} (code {code})" if code is not None else str(message)


def parse_line(line: str) -> dict | None:
    """Decode one stdout line. Anything that isn't a JSON object is None."""
    line = line.strip()
    if not line:
        return None
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


def is_response(message: dict) -> bool:
    return "result" in message or "error" in message


def is_notification(message: dict) -> bool:
    return "method" in message and not is_response(message)


class Transport(ABC):
    """Abstract transport layer for tool protocol communication."""

    @abstractmethod
    def send(self, request: JsonRpcRequest, timeout: float) -> JsonRpcResponse:
        """Send a request and wait up to ``timeout`` seconds for its response."""
        ...

    @abstractmethod
    def notify(self, request: JsonRpcRequest) -> None:
        """Send a notification. No response is awaited."""
        ...

    @abstractmethod
    def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the transport (e.g., terminate subprocess)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...

    @abstractmethod
    def next_id(self) -> int:
        """Generate the next request ID."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    The provider runs as a child process. We write requests to its
    stdin and a daemon thread reads responses from its stdout. stderr is
    drained by a second daemon thread into the debug log; it is never
    part of the protocol.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        name: str | None = None,
    ):
        """
        Args:
            command: Command to launch the provider process.
                     e.g., ["python", "-m", "mcp_bridge.servers.echo"]
            env: Environment overrides, applied on top of the parent's.
            name: Provider name, used in log messages.
        """
        self.command = list(command)
        self.env = dict(env or {})
        self.name = name or (self.command[0] if self.command else "provider")
        self._log = logger.getChild(self.name)

        self._process: subprocess.Popen | None = None
        self._reader: threading.Thread | None = None
        self._stderr_reader: threading.Thread | None = None
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

        # Held for a whole write+await cycle.
        self._session_lock = threading.Lock()
        self._pending: dict[str, queue.Queue] = {}
        self._pending_lock = threading.Lock()
        self._eof = threading.Event()
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._stopped = False

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Launch the provider subprocess and its reader threads."""
        if self._process and self._process.poll() is None:
            self._log.warning("Transport already running, stopping first")
            self.stop()

        env = dict(os.environ)
        env["PYTHONUNBUFFERED"] = "1"
        env.update(self.env)

        self._log.info(f"Starting stdio transport: {' '.join(self.command)}")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                bufsize=1,  # Line-buffered
            )
        except (OSError, ValueError) as e:
            raise LaunchError(f"failed to start {self.name} ({' '.join(self.command)}): {e}") from e

        self._eof.clear()
        self._stopped = False
        self._reader = threading.Thread(
            target=self._read_stdout,
            name=f"mcp-reader-{self.name}",
            daemon=True,
        )
        self._stderr_reader = threading.Thread(
            target=self._read_stderr,
            name=f"mcp-stderr-{self.name}",
            daemon=True,
        )
        self._reader.start()
        self._stderr_reader.start()
        self._log.debug(f"Provider process started with PID {self._process.pid}")

    def stop(self) -> None:
        """
        Tear the session down: close stdin, kill the process, wait for it,
        then close stdout and stderr.

        The process is killed before stdout is closed so the reader thread
        sees EOF instead of racing the close. Every step runs even if an
        earlier one failed; failures are raised together as TeardownError.
        """
        process = self._process
        if process is None or self._stopped:
            return
        self._stopped = True

        errors: list[BaseException] = []

        try:
            if process.stdin and not process.stdin.closed:
                process.stdin.close()
        except OSError as e:
            errors.append(e)

        try:
            if process.poll() is None:
                process.kill()
        except OSError as e:
            errors.append(e)

        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired as e:
            errors.append(e)

        for thread in (self._reader, self._stderr_reader):
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=2)

        for stream in (process.stdout, process.stderr):
            try:
                if stream and not stream.closed:
                    stream.close()
            except (OSError, ValueError) as e:
                errors.append(e)

        self._release_waiters()
        self._log.info("Stdio transport stopped")

        if errors:
            raise TeardownError(errors)

    def is_alive(self) -> bool:
        """Check if the subprocess is running and its stdout is still open."""
        return (
            self._process is not None
            and self._process.poll() is None
            and not self._eof.is_set()
        )

    def next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    # -- requests --------------------------------------------------------

    def send(self, request: JsonRpcRequest, timeout: float) -> JsonRpcResponse:
        """Write ``request`` and block until its response arrives."""
        if request.is_notification:
            raise ValueError("send() needs a request id; use notify() for notifications")

        with self._session_lock:
            if not self.is_alive():
                raise ProtocolError(f"{self.name} is not running{self._stderr_hint()}")

            key = str(request.id)
            slot: queue.Queue = queue.Queue(maxsize=1)
            with self._pending_lock:
                if self._eof.is_set():
                    raise ProtocolError(f"{self.name} closed its output{self._stderr_hint()}")
                self._pending[key] = slot

            try:
                self._write(request)
                try:
                    message = slot.get(timeout=timeout)
                except queue.Empty:
                    raise ProviderTimeoutError(
                        f"timeout waiting for {request.method} response from {self.name} "
                        f"after {timeout:g}s"
                    ) from None
            finally:
                with self._pending_lock:
                    self._pending.pop(key, None)

        if message is _EOF:
            raise ProtocolError(f"{self.name} closed its output{self._stderr_hint()}")
        return JsonRpcResponse.from_message(message)

    def notify(self, request: JsonRpcRequest) -> None:
        with self._session_lock:
            if not self.is_alive():
                raise ProtocolError(f"{self.name} is not running{self._stderr_hint()}")
            self._write(request)

    def _write(self, request: JsonRpcRequest) -> None:
        line = request.to_json()
        self._log.debug(f"→ {line}")
        try:
            self._process.stdin.write(line + "\n")
            self._process.stdin.flush()
        except (OSError, ValueError) as e:
            raise ProtocolError(f"failed to write to {self.name}: {e}") from e

    # -- reader threads --------------------------------------------------

    def _read_stdout(self) -> None:
        stdout = self._process.stdout
        try:
            for line in stdout:
                self._handle_line(line)
        except (OSError, ValueError) as e:
            if not self._stopped:
                self._log.error(f"Error reading from provider: {e}")
        finally:
            with self._pending_lock:
                self._eof.set()
            self._release_waiters()

    def _handle_line(self, line: str) -> None:
        message = parse_line(line)
        if message is None:
            if line.strip():
                self._log.debug(f"Ignoring non-protocol output: {line.strip()[:200]}")
            return

        if is_notification(message):
            self._log.info(f"Notification received: {message.get('method')} {message.get('params')}")
            return

        if not is_response(message):
            self._log.debug(f"Ignoring message without result or error: {message}")
            return

        self._log.debug(f"← {line.strip()}")
        self._deliver(message)

    def _deliver(self, message: dict) -> None:
        msg_id = message.get("id")
        with self._pending_lock:
            if msg_id is None and len(self._pending) == 1:
                # Error replies to unparseable requests carry a null id.
                slot = next(iter(self._pending.values()))
            else:
                slot = self._pending.get(str(msg_id))

        if slot is None:
            self._log.warning(f"Dropping response with no waiter (id={msg_id})")
            return
        try:
            slot.put_nowait(message)
        except queue.Full:
            self._log.warning(f"Dropping duplicate response (id={msg_id})")

    def _read_stderr(self) -> None:
        stderr = self._process.stderr
        try:
            for line in stderr:
                line = line.rstrip()
                if line:
                    self._stderr_tail.append(line)
                    self._log.debug(f"stderr: {line}")
        except (OSError, ValueError) as e:
            self._log.debug(f"stderr reader stopped: {e}")

    def _release_waiters(self) -> None:
        with self._pending_lock:
            slots = list(self._pending.values())
        for slot in slots:
            try:
                slot.put_nowait(_EOF)
            except queue.Full:
                pass

    def _stderr_hint(self) -> str:
        tail = self.stderr_tail
        return f". stderr: {tail[-500:]}" if tail else ""
