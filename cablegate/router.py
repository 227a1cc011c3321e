"""A controller that routes channel commands to per-channel controllers."""

from __future__ import annotations

import json
from typing import Any

from .messages import CommandResult, ConnectResult, SessionEnv


class RouteExistsError(ValueError):
    """A route for the channel has already been defined."""


def _extract_channel(identifier: str) -> str:
    try:
        params = json.loads(identifier)
    except (json.JSONDecodeError, TypeError):
        return ""
    if not isinstance(params, dict):
        return ""
    channel = params.get("channel", "")
    return channel if isinstance(channel, str) else ""


class RouterController:
    """Dispatches commands by channel name, falling back to a default controller.

    A routed controller passes a command on to the default one by returning None.
    """

    def __init__(self, controller: Any = None) -> None:
        self._controller = controller
        self._routes: dict[str, Any] = {}

    def set_default(self, controller: Any) -> None:
        """Replace the fallback controller."""
        self._controller = controller

    def route(self, channel: str, handler: Any) -> None:
        """Send commands for the channel to handler."""
        if channel in self._routes:
            raise RouteExistsError(f"Route has been already defined: {channel}")
        self._routes[channel] = handler

    def empty(self) -> bool:
        """True when no routes are defined."""
        return not self._routes

    def routes(self) -> list[str]:
        """Names of the routed channels."""
        return list(self._routes)

    def _handler_for(self, channel: str) -> Any:
        name = _extract_channel(channel)
        if not name:
            return None
        return self._routes.get(name)

    def start(self) -> None:
        self._controller.start()

    def shutdown(self) -> None:
        self._controller.shutdown()

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult | None:
        return self._controller.authenticate(sid, env)

    def subscribe(self, sid: str, env: SessionEnv, id: str, channel: str) -> CommandResult | None:
        handler = self._handler_for(channel)
        if handler is not None:
            res = handler.subscribe(sid, env, id, channel)
            if res is not None:
                return res
        return self._controller.subscribe(sid, env, id, channel)

    def unsubscribe(self, sid: str, env: SessionEnv, id: str, channel: str) -> CommandResult | None:
        handler = self._handler_for(channel)
        if handler is not None:
            res = handler.unsubscribe(sid, env, id, channel)
            if res is not None:
                return res
        return self._controller.unsubscribe(sid, env, id, channel)

    def perform(self, sid: str, env: SessionEnv, id: str, channel: str, data: str) -> CommandResult | None:
        handler = self._handler_for(channel)
        if handler is not None:
            res = handler.perform(sid, env, id, channel, data)
            if res is not None:
                return res
        return self._controller.perform(sid, env, id, channel, data)

    def disconnect(self, sid: str, env: SessionEnv, id: str, subscriptions: list[str]) -> None:
        self._controller.disconnect(sid, env, id, subscriptions)