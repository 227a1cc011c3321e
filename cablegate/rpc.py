"""An application controller that forwards session commands over RPC, with retries."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from .messages import (
    CommandResponse,
    CommandResult,
    ConnectionResponse,
    ConnectResult,
    DisconnectResponse,
    SessionEnv,
)
from .protocol import (
    new_command_message,
    new_connect_message,
    new_disconnect_message,
    parse_command_response,
    parse_connect_response,
    parse_disconnect_response,
)

# Comma-separated list of compatible RPC protocol versions, sent as request metadata.
PROTO_VERSIONS = "v1"
INVOKE_TIMEOUT_MS = 3000
RETRY_EXHAUSTED_INTERVAL_MS = 10
RETRY_UNAVAILABLE_INTERVAL_MS = 100

METRICS_RPC_CALLS = "rpc_call_total"
METRICS_RPC_RETRIES = "rpc_retries_total"
METRICS_RPC_FAILURES = "rpc_error_total"
METRICS_RPC_PENDING = "rpc_pending_num"

_log = logging.getLogger("cablegate.rpc")

Metadata = tuple[tuple[str, str], ...]


class StatusCode(enum.Enum):
    """RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


_RETRIABLE = (StatusCode.RESOURCE_EXHAUSTED, StatusCode.UNAVAILABLE)


class RPCStatusError(Exception):
    """An RPC call failed with a status code."""

    def __init__(self, code: StatusCode, message: str = "") -> None:
        super().__init__(f"rpc error: code = {code.name} desc = {message}")
        self.code = code
        self.message = message


class RPCClient(Protocol):
    """The three RPC calls the controller makes."""

    def connect(self, request: Any, metadata: Metadata) -> Any: ...

    def command(self, request: Any, metadata: Metadata) -> Any: ...

    def disconnect(self, request: Any, metadata: Metadata) -> Any: ...


class ClientHelper(Protocol):
    """Connection state of an RPC client."""

    def ready(self) -> None:
        """Raise when the connection cannot take calls."""

    def close(self) -> None: ...


class Instrumenter(Protocol):
    def register_counter(self, name: str, description: str) -> None: ...

    def register_gauge(self, name: str, description: str) -> None: ...

    def counter_increment(self, name: str) -> None: ...

    def gauge_increment(self, name: str) -> None: ...

    def gauge_decrement(self, name: str) -> None: ...


Dialer = Callable[["RPCConfig"], "tuple[RPCClient, ClientHelper]"]


@dataclass
class RPCConfig:
    """RPC controller configuration.

    concurrency is the max number of simultaneous requests; keep it slightly
    below the RPC server's concurrency. Message sizes of zero mean the default.
    """

    host: str = ""
    concurrency: int = 28
    enable_tls: bool = False
    max_recv_size: int = 0
    max_send_size: int = 0
    dial_fun: Dialer | None = None


class _InMemoryMetrics:
    """Keeps counters and gauges in dictionaries."""

    def __init__(self) -> None:
        self.descriptions: dict[str, str] = {}
        self.counters: dict[str, int] = {}
        self.gauges: dict[str, int] = {}
        self._lock = threading.Lock()

    def register_counter(self, name: str, description: str) -> None:
        with self._lock:
            self.descriptions[name] = description
            self.counters.setdefault(name, 0)

    def register_gauge(self, name: str, description: str) -> None:
        with self._lock:
            self.descriptions[name] = description
            self.gauges.setdefault(name, 0)

    def counter_increment(self, name: str) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + 1

    def gauge_increment(self, name: str) -> None:
        with self._lock:
            self.gauges[name] = self.gauges.get(name, 0) + 1

    def gauge_decrement(self, name: str) -> None:
        with self._lock:
            self.gauges[name] = self.gauges.get(name, 0) - 1


def new_metadata(session_id: str) -> Metadata:
    """Request metadata carrying the session id and the protocol versions."""
    return (("sid", session_id), ("protov", PROTO_VERSIONS))


class Controller:
    """Forwards connection and channel commands to the application over RPC."""

    def __init__(
        self,
        metrics: Instrumenter | None = None,
        config: RPCConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.metrics: Instrumenter = metrics if metrics is not None else _InMemoryMetrics()
        self.config = config if config is not None else RPCConfig()
        self._sleep = sleep

        self.metrics.register_counter(METRICS_RPC_CALLS, "The total number of RPC calls")
        self.metrics.register_counter(METRICS_RPC_RETRIES, "The total number of RPC call retries")
        self.metrics.register_counter(METRICS_RPC_FAILURES, "The total number of failed RPC calls")
        self.metrics.register_gauge(METRICS_RPC_PENDING, "The number of pending RPC calls")

        self._client: RPCClient | None = None
        self._client_state: ClientHelper | None = None
        self._sem: threading.Semaphore | None = None
        self._in_flight = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        """Dial the RPC server and set up the concurrency limit."""
        dialer = self.config.dial_fun
        if dialer is None:
            raise ValueError("no RPC dialer configured")

        capacity = self.config.concurrency
        if capacity <= 0:
            raise ValueError("RPC concurrency must be positive")
        self._sem = threading.Semaphore(capacity)

        self._client, self._client_state = dialer(self.config)
        _log.info(
            "RPC controller initialized: %s (concurrency: %d, enable_tls: %s, proto_versions: %s)",
            self.config.host,
            capacity,
            "true" if self.config.enable_tls else "false",
            PROTO_VERSIONS,
        )

    def shutdown(self) -> None:
        """Close the connection; raise if RPC calls are still in flight."""
        state = self._client_state
        if state is None:
            return

        try:
            busy = self.busy()
            if busy > 0:
                _log.info("Waiting for active RPC calls to finish: %d", busy)

            def check() -> bool:
                left = self.busy()
                if left > 0:
                    raise RuntimeError(f"There are {left} active RPC connections left")
                _log.info("All active RPC calls finished")
                return True

            self._retry("", check)
        finally:
            state.close()

    def busy(self) -> int:
        """The number of RPC calls in flight."""
        with self._lock:
            return self._in_flight

    @contextmanager
    def _slot(self) -> Iterator[None]:
        sem = self._sem
        if sem is None or self._client is None:
            raise RuntimeError("RPC controller is not started")
        self.metrics.gauge_increment(METRICS_RPC_PENDING)
        sem.acquire()
        with self._lock:
            self._in_flight += 1
        self.metrics.gauge_decrement(METRICS_RPC_PENDING)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            sem.release()

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult:
        """Perform the Connect call."""
        with self._slot():
            request = new_connect_message(env)
            self.metrics.counter_increment(METRICS_RPC_CALLS)
            try:
                response = self._retry(sid, lambda: self._client.connect(request, new_metadata(sid)))
            except Exception:
                self.metrics.counter_increment(METRICS_RPC_FAILURES)
                raise

        if isinstance(response, ConnectionResponse):
            _log.debug("Authenticate response: %s", response, extra={"fields": {"sid": sid}})
            return parse_connect_response(response)

        self.metrics.counter_increment(METRICS_RPC_FAILURES)
        raise TypeError("failed to deserialize connection response")

    def subscribe(self, sid: str, env: SessionEnv, id: str, channel: str) -> CommandResult:
        """Perform the Command call with the "subscribe" command."""
        return self._command(sid, env, "subscribe", channel, id, "")

    def unsubscribe(self, sid: str, env: SessionEnv, id: str, channel: str) -> CommandResult:
        """Perform the Command call with the "unsubscribe" command."""
        return self._command(sid, env, "unsubscribe", channel, id, "")

    def perform(self, sid: str, env: SessionEnv, id: str, channel: str, data: str) -> CommandResult:
        """Perform the Command call with the "message" command."""
        return self._command(sid, env, "message", channel, id, data)

    def disconnect(self, sid: str, env: SessionEnv, id: str, subscriptions: list[str]) -> None:
        """Perform the Disconnect call."""
        with self._slot():
            request = new_disconnect_message(env, id, subscriptions)
            self.metrics.counter_increment(METRICS_RPC_CALLS)
            try:
                response = self._retry(sid, lambda: self._client.disconnect(request, new_metadata(sid)))
            except Exception:
                self.metrics.counter_increment(METRICS_RPC_FAILURES)
                raise

        if not isinstance(response, DisconnectResponse):
            raise TypeError("failed to deserialize disconnect response")

        _log.debug("Disconnect response: %s", response, extra={"fields": {"sid": sid}})
        try:
            parse_disconnect_response(response)
        except Exception:
            self.metrics.counter_increment(METRICS_RPC_FAILURES)
            raise

    def _command(
        self, sid: str, env: SessionEnv, command: str, channel: str, identifiers: str, data: str
    ) -> CommandResult:
        with self._slot():
            request = new_command_message(env, command, channel, identifiers, data)
            try:
                response = self._retry(sid, lambda: self._client.command(request, new_metadata(sid)))
            except Exception:
                self.metrics.counter_increment(METRICS_RPC_CALLS)
                self.metrics.counter_increment(METRICS_RPC_FAILURES)
                raise

        self.metrics.counter_increment(METRICS_RPC_CALLS)
        if isinstance(response, CommandResponse):
            _log.debug("Command response: %s", response, extra={"fields": {"sid": sid}})
            return parse_command_response(response)

        self.metrics.counter_increment(METRICS_RPC_FAILURES)
        raise TypeError("failed to deserialize command response")

    def _retry(self, sid: str, callback: Callable[[], Any]) -> Any:
        retry_age = 0
        attempt = 0
        was_exhausted = False

        while True:
            if self._client_state is not None:
                self._client_state.ready()

            try:
                return callback()
            except RPCStatusError as err:
                if retry_age > INVOKE_TIMEOUT_MS or err.code not in _RETRIABLE:
                    raise
                code = err.code
                message = err.message

            _log.debug(
                "RPC failure: %s", message, extra={"fields": {"sid": sid, "code": code.name}}
            )

            interval = RETRY_UNAVAILABLE_INTERVAL_MS
            if code is StatusCode.RESOURCE_EXHAUSTED:
                interval = RETRY_EXHAUSTED_INTERVAL_MS
                if not was_exhausted:
                    attempt = 0
                    was_exhausted = True
            elif was_exhausted:
                was_exhausted = False
                attempt = 0

            delay_ms = (2**attempt) * interval
            retry_age += delay_ms
            self.metrics.counter_increment(METRICS_RPC_RETRIES)
            self._sleep(delay_ms / 1000)
            attempt += 1