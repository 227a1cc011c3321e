"""WebSocket connection wrapper, close codes and upgrade request helpers."""

from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol
from urllib.parse import urlsplit

CLOSE_NORMAL_CLOSURE = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_NO_STATUS_RECEIVED = 1005
CLOSE_ABNORMAL_CLOSURE = 1006
CLOSE_INTERNAL_SERVER_ERR = 1011

# Close codes that mean the client simply went away.
EXPECTED_CLOSE_STATUSES = (
    CLOSE_NORMAL_CLOSURE,
    CLOSE_GOING_AWAY,
    CLOSE_NO_STATUS_RECEIVED,
)

REMOTE_ADDR_HEADER = "REMOTE_ADDR"
CLOSE_TIMEOUT = timedelta(seconds=1)

_NANOID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_NANOID_SIZE = 21


@dataclass
class WSConfig:
    """WebSocket connection configuration; empty allowed_origins allows any origin."""

    read_buffer_size: int = 0
    write_buffer_size: int = 0
    max_message_size: int = 0
    enable_compression: bool = False
    allowed_origins: str = ""


class FrameType(enum.IntEnum):
    TEXT = 0
    CLOSE = 1
    BINARY = 2


@dataclass
class SentFrame:
    """A frame handed to the underlying socket."""

    frame_type: FrameType
    payload: bytes = b""
    close_code: int = 0
    close_reason: str = ""


class CloseError(Exception):
    """The peer closed the connection with a close code."""

    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"websocket: close {code} {reason}".rstrip())
        self.code = code
        self.reason = reason


def is_close_error(err: BaseException) -> bool:
    """True if err is a close with one of the expected (benign) codes."""
    return isinstance(err, CloseError) and err.code in EXPECTED_CLOSE_STATUSES


class Socket(Protocol):
    """The low-level WebSocket a Connection writes frames to."""

    def send(self, frame: SentFrame, deadline: datetime) -> None: ...

    def receive(self) -> bytes: ...

    def close(self) -> None: ...


class WSRequest(Protocol):
    """The parts of an HTTP upgrade request these helpers look at.

    target is the request URI as received, host the Host header value,
    remote_addr the peer's "host:port".
    """

    target: str
    host: str
    secure: bool
    remote_addr: str

    def header(self, name: str) -> str: ...


def close_with_reason(conn: Socket, code: int, reason: str) -> None:
    """Send a close frame (ignoring failures) and close the socket."""
    deadline = datetime.now(timezone.utc) + CLOSE_TIMEOUT
    try:
        conn.send(SentFrame(FrameType.CLOSE, b"", code, reason), deadline)
    except Exception:
        pass
    conn.close()


class Connection:
    """A WebSocket session connection."""

    def __init__(self, conn: Socket) -> None:
        self._conn = conn

    def write(self, msg: bytes, deadline: datetime) -> None:
        """Write a text message."""
        self._conn.send(SentFrame(FrameType.TEXT, bytes(msg)), deadline)

    def write_binary(self, msg: bytes, deadline: datetime) -> None:
        """Write a binary message."""
        self._conn.send(SentFrame(FrameType.BINARY, bytes(msg)), deadline)

    def read(self) -> bytes:
        """Read the next message."""
        return self._conn.receive()

    def close(self, code: int, reason: str) -> None:
        """Send a close frame with the given code and reason, then close."""
        close_with_reason(self._conn, code, reason)


@dataclass
class RequestInfo:
    """Data taken from the upgrade request for a new session."""

    uid: str
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def _split_host(addr: str) -> str:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or not addr[end + 1 :].startswith(":"):
            return ""
        return addr[1:end]
    host, sep, _ = addr.rpartition(":")
    if not sep or ":" in host:
        return ""
    return host


def fetch_headers(request: WSRequest, headers: list[str]) -> dict[str, str]:
    """Pick the listed headers plus the remote address from the request."""
    res = {name: request.header(name) for name in headers}
    res[REMOTE_ADDR_HEADER] = _split_host(request.remote_addr)
    return res


def _nanoid() -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(_NANOID_SIZE))


def fetch_uid(request: WSRequest) -> str:
    """The X-Request-ID header, or a freshly generated id."""
    request_id = request.header("X-Request-ID")
    return request_id if request_id else _nanoid()


def new_request_info(request: WSRequest, headers_to_fetch: list[str]) -> RequestInfo:
    """Collect session data from the request."""
    headers = fetch_headers(request, headers_to_fetch)
    try:
        uid = fetch_uid(request)
    except OSError as err:
        raise RuntimeError("Failed to retrieve connection uid") from err
    return RequestInfo(uid=uid, url=request_url(request), headers=headers)


def request_url(request: WSRequest) -> str:
    """The absolute URL of the request."""
    target = request.target
    if urlsplit(target).scheme:
        return target
    scheme = "https://" if request.secure else "http://"
    return f"{scheme}{request.host}{target}"


def check_origin(origins: str) -> Callable[[WSRequest], bool]:
    """Build a predicate accepting requests whose Origin host is allowed.

    origins is comma separated; an entry starting with "*" matches by suffix.
    """
    if not origins:
        return lambda request: True

    hosts = [host for host in origins.lower().split(",") if host]

    def check(request: WSRequest) -> bool:
        origin = request.header("Origin").lower()
        try:
            netloc = urlsplit(origin).netloc
        except ValueError:
            return False
        origin_host = netloc.rpartition("@")[2]

        for host in hosts:
            if host.startswith("*") and origin_host.endswith(host[1:]):
                return True
            if origin_host == host:
                return True
        return False

    return check