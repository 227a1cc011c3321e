"""Build RPC request payloads and interpret RPC responses."""

from __future__ import annotations

import json

from .messages import (
    ApplicationError,
    CommandMessage,
    CommandResponse,
    CommandResult,
    ConnectionRequest,
    ConnectionResponse,
    ConnectResult,
    DisconnectRequest,
    DisconnectResponse,
    Env,
    SessionEnv,
    Status,
)


def _build_env(env: SessionEnv) -> Env:
    return Env(
        url=env.url,
        headers=dict(env.headers),
        cstate=dict(env.connection_state or {}),
    )


def _build_channel_env(channel: str, env: SessionEnv) -> Env:
    proto_env = _build_env(env)
    if env.channel_states is not None and channel in env.channel_states:
        proto_env.istate = dict(env.channel_states[channel])
    return proto_env


def _build_disconnect_env(env: SessionEnv) -> Env:
    proto_env = _build_env(env)
    if env.channel_states is not None:
        proto_env.istate = {
            channel: json.dumps(state, separators=(",", ":"), sort_keys=True)
            for channel, state in env.channel_states.items()
        }
    return proto_env


def new_connect_message(env: SessionEnv) -> ConnectionRequest:
    """Build a connect RPC payload from the session env."""
    return ConnectionRequest(env=_build_env(env))


def new_command_message(
    env: SessionEnv, command: str, channel: str, identifiers: str, data: str = ""
) -> CommandMessage:
    """Build a command RPC payload for the given channel."""
    return CommandMessage(
        command=command,
        identifier=channel,
        connection_identifiers=identifiers,
        env=_build_channel_env(channel, env),
        data=data or "",
    )


def new_disconnect_message(
    env: SessionEnv, identifiers: str, subscriptions: list[str]
) -> DisconnectRequest:
    """Build a disconnect RPC payload."""
    return DisconnectRequest(
        identifiers=identifiers,
        subscriptions=list(subscriptions),
        env=_build_disconnect_env(env),
    )


def parse_connect_response(response: ConnectionResponse) -> ConnectResult:
    """Convert a connect response; raise ApplicationError on an error status."""
    reply = ConnectResult(transmissions=list(response.transmissions))
    if response.env is not None:
        reply.cstate = response.env.cstate

    if response.status is Status.SUCCESS:
        reply.identifier = response.identifiers
        reply.status = Status.SUCCESS
        return reply
    if response.status is Status.FAILURE:
        reply.status = Status.FAILURE
        return reply

    reply.status = Status.ERROR
    raise ApplicationError(response.error_msg, reply)


def parse_command_response(response: CommandResponse) -> CommandResult:
    """Convert a command response; raise ApplicationError on an error status."""
    res = CommandResult(
        disconnect=response.disconnect,
        stop_all_streams=response.stop_streams,
        streams=list(response.streams),
        stopped_streams=list(response.stopped_streams),
        transmissions=list(response.transmissions),
    )
    if response.env is not None:
        res.cstate = response.env.cstate
        res.istate = response.env.istate

    if response.status is Status.SUCCESS:
        res.status = Status.SUCCESS
        return res
    if response.status is Status.FAILURE:
        res.status = Status.FAILURE
        return res

    res.status = Status.ERROR
    raise ApplicationError(response.error_msg, res)


def parse_disconnect_response(response: DisconnectResponse) -> None:
    """Raise ApplicationError if the disconnect response has an error status."""
    if response.status is Status.ERROR:
        raise ApplicationError(response.error_msg)