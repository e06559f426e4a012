"""
Client session state.

There is one canonical Session per browser context. Exactly one component
(the reconciler) holds the `SessionWriter`; everyone else reads immutable
snapshots through `SessionStore.snapshot()` and must not assume a snapshot
stays valid.

Persistence mirrors the web client: the bearer token in the `auth-token`
cookie (7 days) and the identity projection as JSON under `user` in local
storage. Both are caches of what the backend says.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from pydantic import BaseModel, Field

from trueport.client.exchange import AuthSuccess, CookieAuth, TokenAuth
from trueport.client.ports import BrowserStore
from trueport.config import Settings, get_settings
from trueport.core.models import Identity
from trueport.core.utils import utc_now

logger = logging.getLogger(__name__)

USER_STORAGE_KEY = "user"


class Session(BaseModel):
    """A bearer token and/or cookie handle, plus the cached identity."""

    model_config = {"frozen": True}

    token: str | None = None
    cookie_auth: bool = False
    identity: Identity | None = None
    established_at: datetime = Field(default_factory=utc_now)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token or self.cookie_auth)

    @classmethod
    def from_result(cls, result: AuthSuccess) -> Session:
        if isinstance(result, TokenAuth):
            return cls(token=result.token, identity=result.identity)
        if isinstance(result, CookieAuth):
            return cls(cookie_auth=True, identity=result.identity)
        raise TypeError(f"Not a successful auth result: {result!r}")


class SessionStore:
    """Holds the current Session; rehydrates from browser storage on first read."""

    def __init__(self, browser: BrowserStore, settings: Settings | None = None):
        self.browser = browser
        self.settings = settings or get_settings()
        self._session: Session | None = None
        self._writer_claimed = False

    def snapshot(self) -> Session | None:
        """The session as of now. Callers keep it for one decision only."""
        if self._session is None:
            self._session = self._rehydrate()
        return self._session

    def _rehydrate(self) -> Session | None:
        token = self.browser.get_cookie(self.settings.auth_token_cookie_name)
        if not token:
            return None

        identity = None
        raw = self.browser.get_item(USER_STORAGE_KEY)
        if raw:
            try:
                identity = Identity.from_payload(json.loads(raw))
            except ValueError:
                logger.debug("Cached identity is not valid JSON; ignoring it")
        return Session(token=token, identity=identity)

    def claim_writer(self) -> SessionWriter:
        """Hand out the only writer. A second claim is a programming error."""
        if self._writer_claimed:
            raise RuntimeError("SessionStore already has a writer")
        self._writer_claimed = True
        return SessionWriter(self)


class SessionWriter:
    """Write access to a SessionStore."""

    def __init__(self, store: SessionStore):
        self._store = store

    def write(self, session: Session) -> Session:
        store = self._store
        cookie = store.settings.auth_token_cookie_name

        if session.token:
            store.browser.set_cookie(cookie, session.token, expires_days=store.settings.session_expire_days)
        else:
            store.browser.delete_cookie(cookie)

        if session.identity is not None:
            store.browser.set_item(USER_STORAGE_KEY, session.identity.model_dump_json())

        store._session = session
        return session

    def clear(self) -> None:
        store = self._store
        store.browser.delete_cookie(store.settings.auth_token_cookie_name)
        store.browser.remove_item(USER_STORAGE_KEY)
        store._session = None
