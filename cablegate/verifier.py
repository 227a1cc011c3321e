"""Verification of HMAC-signed messages in the Rails message verifier format."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json


class InvalidMessageError(ValueError):
    """The signed message is malformed or its signature does not match."""


class MessageVerifier:
    """Checks "<base64 json>--<hex sha256 hmac>" messages signed with a key."""

    def __init__(self, key: str) -> None:
        self._key = key.encode()

    def verified(self, msg: str) -> str:
        """Return the string carried by a correctly signed message."""
        if not self._is_valid(msg):
            raise InvalidMessageError("Invalid message")

        data = msg.split("--")[0]
        try:
            raw = base64.b64decode(data, validate=True)
            result = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as err:
            raise InvalidMessageError(str(err)) from err

        if not isinstance(result, str):
            raise InvalidMessageError("Signed payload is not a string")
        return result

    def _is_valid(self, msg: str) -> bool:
        if not msg:
            return False
        parts = msg.split("--")
        if len(parts) != 2:
            return False
        data, digest = parts
        actual = hmac.new(self._key, data.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(actual.encode(), digest.encode())