"""Session state, RPC request/response payloads and result types."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field


class Status(enum.Enum):
    """Outcome of an RPC call or a controller command."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"


class ApplicationError(Exception):
    """The application answered an RPC call with an error status."""

    def __init__(self, error_msg: str, result: object = None) -> None:
        super().__init__(f"Application error: {error_msg}")
        self.error_msg = error_msg
        self.result = result


@dataclass
class SessionEnv:
    """Request data and state kept for a client session."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    connection_state: dict[str, str] | None = None
    channel_states: dict[str, dict[str, str]] | None = None


@dataclass
class ConnectResult:
    """Result of authenticating a connection."""

    status: Status = Status.SUCCESS
    identifier: str = ""
    transmissions: list[str] = field(default_factory=list)
    cstate: dict[str, str] | None = None


@dataclass
class CommandResult:
    """Result of a subscribe, unsubscribe or perform command."""

    status: Status = Status.SUCCESS
    disconnect: bool = False
    stop_all_streams: bool = False
    streams: list[str] = field(default_factory=list)
    stopped_streams: list[str] = field(default_factory=list)
    transmissions: list[str] = field(default_factory=list)
    cstate: dict[str, str] | None = None
    istate: dict[str, str] | None = None


@dataclass
class Env:
    """Environment sent along with every RPC request."""

    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cstate: dict[str, str] = field(default_factory=dict)
    istate: dict[str, str] = field(default_factory=dict)


@dataclass
class EnvResponse:
    """State changes returned by the application."""

    cstate: dict[str, str] = field(default_factory=dict)
    istate: dict[str, str] = field(default_factory=dict)


@dataclass
class ConnectionRequest:
    env: Env


@dataclass
class CommandMessage:
    command: str
    identifier: str
    connection_identifiers: str
    env: Env
    data: str = ""


@dataclass
class DisconnectRequest:
    identifiers: str
    subscriptions: list[str]
    env: Env


@dataclass
class ConnectionResponse:
    status: Status
    identifiers: str = ""
    transmissions: list[str] = field(default_factory=list)
    error_msg: str = ""
    env: EnvResponse | None = None


@dataclass
class CommandResponse:
    status: Status
    disconnect: bool = False
    stop_streams: bool = False
    streams: list[str] = field(default_factory=list)
    stopped_streams: list[str] = field(default_factory=list)
    transmissions: list[str] = field(default_factory=list)
    error_msg: str = ""
    env: EnvResponse | None = None


@dataclass
class DisconnectResponse:
    status: Status
    error_msg: str = ""


def _typed_message(identifier: str, kind: str) -> str:
    return json.dumps({"identifier": identifier, "type": kind}, separators=(",", ":"))


def confirmation_message(identifier: str) -> str:
    """Build the message confirming a subscription to the given channel."""
    return _typed_message(identifier, "confirm_subscription")


def rejection_message(identifier: str) -> str:
    """Build the message rejecting a subscription to the given channel."""
    return _typed_message(identifier, "reject_subscription")