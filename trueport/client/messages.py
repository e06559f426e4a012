"""
Cross-window auth messages.

A popup that finishes sign-in posts one of these to its opener:

    {"type": "GOOGLE_AUTH_SUCCESS", "token"?, "user"?, "cookieAuth"?}
    {"type": "GOOGLE_AUTH_ERROR", "error"}

The opener only ever reads them through a MessageChannel, which drops
anything from an origin other than the configured frontend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from trueport.client.exchange import AuthSuccess, CookieAuth, TokenAuth
from trueport.core.errors import ErrorCode
from trueport.core.models import Identity

logger = logging.getLogger(__name__)

GOOGLE_AUTH_SUCCESS = "GOOGLE_AUTH_SUCCESS"
GOOGLE_AUTH_ERROR = "GOOGLE_AUTH_ERROR"


@dataclass(frozen=True)
class AuthMessage:
    type: str
    token: str | None = None
    identity: Identity | None = None
    cookie_auth: bool = False
    error: str | None = None

    @classmethod
    def success(cls, result: AuthSuccess) -> AuthMessage:
        if isinstance(result, TokenAuth):
            return cls(type=GOOGLE_AUTH_SUCCESS, token=result.token, identity=result.identity)
        return cls(type=GOOGLE_AUTH_SUCCESS, identity=result.identity, cookie_auth=True)

    @classmethod
    def failure(cls, error: str) -> AuthMessage:
        return cls(type=GOOGLE_AUTH_ERROR, error=error)

    @classmethod
    def parse(cls, data: Any) -> AuthMessage | None:
        """None for anything that isn't a well-formed auth message."""
        if not isinstance(data, dict):
            return None

        kind = data.get("type")
        if kind == GOOGLE_AUTH_ERROR:
            return cls.failure(str(data.get("error") or ErrorCode.AUTH_FAILED.value))
        if kind != GOOGLE_AUTH_SUCCESS:
            return None

        token = data.get("token")
        message = cls(
            type=GOOGLE_AUTH_SUCCESS,
            token=token if isinstance(token, str) and token else None,
            identity=Identity.from_payload(data.get("user")),
            cookie_auth=bool(data.get("cookieAuth")),
        )
        return message if message.as_result() is not None else None

    def as_result(self) -> AuthSuccess | None:
        if self.type != GOOGLE_AUTH_SUCCESS:
            return None
        if self.token:
            return TokenAuth(token=self.token, identity=self.identity)
        if self.identity is not None:
            return CookieAuth(identity=self.identity)
        return None

    def to_dict(self) -> dict[str, Any]:
        if self.type == GOOGLE_AUTH_ERROR:
            return {"type": self.type, "error": self.error}

        data: dict[str, Any] = {"type": self.type}
        if self.token:
            data["token"] = self.token
        if self.identity is not None:
            data["user"] = self.identity.model_dump(mode="json")
        if self.cookie_auth:
            data["cookieAuth"] = True
        return data


class MessageChannel:
    """
    Inbound message gate with a one-origin allowlist.

    Has a single consumer (the reconciler); nothing else listens.
    """

    def __init__(self, allowed_origin: str):
        self.allowed_origin = allowed_origin.rstrip("/")
        self.dropped = 0

    def accept(self, data: Any, origin: str) -> AuthMessage | None:
        if (origin or "").rstrip("/") != self.allowed_origin:
            self.dropped += 1
            logger.warning(f"{ErrorCode.UNTRUSTED_ORIGIN.value}: dropped message from {origin!r}")
            return None

        message = AuthMessage.parse(data)
        if message is None:
            self.dropped += 1
            logger.debug("Dropped malformed auth message")
        return message
