"""Broadcast subscribers that receive pub/sub messages over HTTP or Redis."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol
from urllib.parse import SplitResult, urlsplit, urlunsplit

import redis

from .server import HTTPServer, Request, Response, for_port

MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_KEEPALIVE_INTERVAL = 30
SENTINEL_TIMEOUT = 0.5
_POLL_INTERVAL = 1.0

_log = logging.getLogger("cablegate.pubsub")


class Handler(Protocol):
    """Receives raw broadcast payloads."""

    def handle_pubsub(self, payload: bytes) -> None: ...


class ErrorSink(Protocol):
    """Receives the error that stops a subscriber (a queue.Queue fits)."""

    def put(self, item: Exception) -> None: ...


class UnknownAdapterError(ValueError):
    """The requested pub/sub adapter does not exist."""


@dataclass
class HTTPConfig:
    """HTTP pub/sub adapter configuration."""

    port: int = 0
    path: str = ""
    secret: str = ""


@dataclass
class RedisConfig:
    """Redis pub/sub adapter configuration.

    With sentinels set, the host part of url is the master name.
    Intervals are in seconds.
    """

    url: str = ""
    channel: str = ""
    sentinels: str = ""
    sentinel_discovery_interval: int = 0
    keepalive_ping_interval: int = DEFAULT_KEEPALIVE_INTERVAL


class HTTPSubscriber:
    """Accepts broadcasts as POST requests on an HTTP endpoint."""

    def __init__(self, node: Handler, config: HTTPConfig) -> None:
        self._node = node
        self.port = config.port
        self.path = config.path
        self._auth_header = f"Bearer {config.secret}" if config.secret else ""
        self._server: HTTPServer | None = None

    def start(self, done: ErrorSink) -> None:
        """Mount the handler on the server for the port and start serving."""
        server = for_port(self.port)
        server.handle(self.path, self.handle)
        self._server = server

        _log.info("Accept broadcast requests at %s%s", server.address(), self.path)

        def run() -> None:
            try:
                server.start_and_announce("Pub/Sub HTTP server")
            except Exception as err:
                if not server.stopped():
                    done.put(RuntimeError(f"Pub/Sub HTTP server at {server.address()} stopped: {err}"))

        threading.Thread(target=run, name="pubsub-http", daemon=True).start()

    def shutdown(self) -> None:
        """Stop the HTTP server, if started."""
        if self._server is not None:
            self._server.shutdown()

    def handle(self, request: Request) -> Response:
        """Accept an authorized POST and pass its body on as a broadcast."""
        if request.method != "POST":
            _log.debug("Invalid request method: %s", request.method)
            return Response(status=422)

        if self._auth_header and request.header("Authorization") != self._auth_header:
            return Response(status=401)

        self._node.handle_pubsub(request.body)
        return Response(status=201)


def _parse_url(url: str) -> SplitResult:
    uri = urlsplit(url)
    uri.port  # raises ValueError for a malformed port
    return uri


def _join_addr(host: str, port: int | str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _replace_host(uri: SplitResult, address: str) -> SplitResult:
    userinfo, at, _ = uri.netloc.rpartition("@")
    return uri._replace(netloc=f"{userinfo}@{address}" if at else address)


def _has_role(client: Any, role: str) -> bool:
    try:
        reply = client.execute_command("ROLE")
    except redis.RedisError:
        return False
    if not reply:
        return False
    first = reply[0]
    if isinstance(first, bytes):
        first = first.decode()
    return first == role


class RedisSubscriber:
    """Subscribes to a Redis channel and reconnects when the connection drops."""

    def __init__(self, node: Handler, config: RedisConfig) -> None:
        self._node = node
        self._url = config.url
        self._sentinels = config.sentinels
        self._discovery_interval = config.sentinel_discovery_interval
        self._channel = config.channel
        self._ping_interval = config.keepalive_ping_interval
        self._reconnect_attempt = 0
        self._uri: SplitResult | None = None
        self._master_name = ""
        self._sentinel_addrs: list[str] = []
        self._sentinel_lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def url(self) -> str:
        """The Redis URL in use (resolved from sentinels when they are set)."""
        return self._url

    def start(self, done: ErrorSink) -> None:
        """Check the configuration and start listening in the background."""
        uri = _parse_url(self._url)
        if self._ping_interval <= 0:
            raise ValueError("keepalive ping interval must be positive")
        self._uri = uri

        if self._sentinels:
            self._master_name = uri.hostname or ""
            _log.debug("Redis sentinel enabled")
            _log.debug(
                "Redis sentinel parameters:  sentinels: %s,  masterName: %s",
                self._sentinels,
                self._master_name,
            )
            self._sentinel_addrs = self._sentinels.split(",")
            threading.Thread(target=self._discover_sentinels, name="redis-sentinels", daemon=True).start()

        threading.Thread(target=self._keepalive, args=(done,), name="redis-pubsub", daemon=True).start()

    def shutdown(self) -> None:
        """Stop listening and reconnecting."""
        self._stop.set()

    def _connect_sentinel(self, addr: str) -> redis.Redis:
        parsed = urlsplit(f"redis://{addr}")
        try:
            port = parsed.port
        except ValueError as err:
            raise redis.ConnectionError(f"invalid sentinel address: {addr}") from err
        if not parsed.hostname or port is None:
            raise redis.ConnectionError(f"invalid sentinel address: {addr}")
        return redis.Redis(
            host=parsed.hostname,
            port=port,
            password=parsed.password,
            socket_timeout=SENTINEL_TIMEOUT,
            socket_connect_timeout=SENTINEL_TIMEOUT,
            decode_responses=True,
        )

    def _master_addr(self) -> str:
        with self._sentinel_lock:
            addrs = list(self._sentinel_addrs)

        last_error: Exception = redis.ConnectionError("no sentinels available")
        for addr in addrs:
            try:
                client = self._connect_sentinel(addr)
            except redis.RedisError as err:
                last_error = err
                continue
            try:
                result = client.sentinel_get_master_addr(self._master_name)
            except redis.RedisError as err:
                _log.debug("Failed to connect to sentinel %s", addr)
                last_error = err
                continue
            finally:
                client.close()

            _log.debug("Successfully connected to sentinel %s", addr)
            if not result:
                last_error = redis.ResponseError(f"no master found for {self._master_name}")
                continue
            with self._sentinel_lock:
                if addr in self._sentinel_addrs:
                    self._sentinel_addrs.remove(addr)
                    self._sentinel_addrs.insert(0, addr)
            host, port = result
            return _join_addr(str(host), port)

        raise last_error

    def _discover(self) -> None:
        with self._sentinel_lock:
            addrs = list(self._sentinel_addrs)

        for addr in addrs:
            try:
                client = self._connect_sentinel(addr)
                try:
                    peers = client.sentinel_sentinels(self._master_name)
                finally:
                    client.close()
            except redis.RedisError:
                continue

            found = [_join_addr(str(peer["ip"]), peer["port"]) for peer in peers]
            with self._sentinel_lock:
                self._sentinel_addrs.extend(a for a in found if a not in self._sentinel_addrs)
            return

        _log.warning("Failed to discover sentinels")

    def _discover_sentinels(self) -> None:
        self._discover()
        if self._discovery_interval <= 0:
            return
        while not self._stop.wait(self._discovery_interval):
            self._discover()

    def _keepalive(self, done: ErrorSink) -> None:
        while not self._stop.is_set():
            if self._sentinels:
                try:
                    master = self._master_addr()
                except Exception as err:
                    _log.warning("Failed to get master address from sentinel.")
                    done.put(err)
                    return
                _log.debug("Got master address from sentinel: %s", master)
                assert self._uri is not None
                self._uri = _replace_host(self._uri, master)
                self._url = urlunsplit(self._uri)

            try:
                self._listen()
            except Exception as err:
                _log.warning("Redis connection failed: %s", err)

            if self._stop.is_set():
                return

            self._reconnect_attempt += 1
            if self._reconnect_attempt >= MAX_RECONNECT_ATTEMPTS:
                done.put(RuntimeError("Redis reconnect attempts exceeded"))
                return

            delay = next_retry(self._reconnect_attempt)
            _log.info("Next Redis reconnect attempt in %s", delay)
            if self._stop.wait(delay.total_seconds()):
                return
            _log.info("Reconnecting to Redis...")

    def _listen(self) -> None:
        options: dict[str, Any] = {}
        if self._uri is not None and self._uri.scheme == "rediss":
            options["ssl_cert_reqs"] = "none"

        client = redis.Redis.from_url(self._url, **options)
        try:
            if self._sentinels and not _has_role(client, "master"):
                raise redis.ConnectionError("Failed master role check")

            pubsub = client.pubsub()
            try:
                try:
                    pubsub.subscribe(self._channel)
                except redis.RedisError as err:
                    _log.error("Failed to subscribe to Redis channel: %s", err)
                    raise

                self._reconnect_attempt = 0
                next_ping = time.monotonic() + self._ping_interval

                while not self._stop.is_set():
                    wait = max(0.0, min(_POLL_INTERVAL, next_ping - time.monotonic()))
                    message = pubsub.get_message(timeout=wait)
                    if message:
                        self._dispatch(message)
                    if time.monotonic() >= next_ping:
                        pubsub.ping()
                        next_ping = time.monotonic() + self._ping_interval
            finally:
                pubsub.close()
        finally:
            client.close()

    def _dispatch(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if isinstance(kind, bytes):
            kind = kind.decode()

        if kind == "message":
            data = message.get("data", b"")
            if isinstance(data, str):
                data = data.encode()
            _log.debug("Incoming pubsub message from Redis: %s", data)
            self._node.handle_pubsub(data)
        elif kind == "subscribe":
            channel = message.get("channel", "")
            if isinstance(channel, bytes):
                channel = channel.decode()
            _log.info("Subscribed to Redis channel: %s", channel)


def next_retry(step: int) -> timedelta:
    """Randomised, growing delay before reconnect attempt number step (step >= 1)."""
    secs = step * step + random.randrange(step * 4) * (step + 1)
    return timedelta(seconds=secs)


def new_subscriber(
    node: Handler,
    adapter: str,
    redis: RedisConfig | None = None,
    http: HTTPConfig | None = None,
) -> HTTPSubscriber | RedisSubscriber:
    """Create a subscriber for the named adapter ("redis" or "http")."""
    if adapter == "redis":
        return RedisSubscriber(node, redis if redis is not None else RedisConfig())
    if adapter == "http":
        return HTTPSubscriber(node, http if http is not None else HTTPConfig())
    raise UnknownAdapterError(f"Unknown adapter type: {adapter}")