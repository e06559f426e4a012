"""
Session Reconciler.

A sign-in can come back through four channels: a popup message, a URL
fragment (`#auth=<json>`), an authorization code (`?code=&state=`), or a
cookie the backend already set (`?success=true`, or nothing at all). The
reconciler turns whatever arrived into exactly one Session, or a terminal
failure.

Order for a callback page, first match wins:

    1. fragment with a token or user   -> accept (no network)
    2. ?error=...                      -> fail
    3. ?success=true                   -> validate cookie; accept or fail
    4. ?code=...                       -> exchange; accept, else fall through
    5. validate cookie                 -> accept or fail

Runs are serialized by a lock. Each consumed fragment or code is
remembered, so replaying it returns the session it already produced.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, unquote, urlsplit

from trueport.client.exchange import (
    AuthFailure,
    AuthResult,
    AuthSuccess,
    CredentialExchangeClient,
    TokenAuth,
    parse_auth_payload,
)
from trueport.client.messages import (
    GOOGLE_AUTH_ERROR,
    AuthMessage,
    MessageChannel,
)
from trueport.client.ports import Window
from trueport.client.router import login_path, route
from trueport.client.session import Session, SessionStore
from trueport.config import Settings, get_settings
from trueport.core.errors import ErrorCode

logger = logging.getLogger(__name__)


class ReconcileStatus(str, Enum):
    LOADING = "LOADING"
    ACCEPTED = "ACCEPTED"
    FAILED = "FAILED"


# =============================================================================
# Signals
# =============================================================================


def _first(query: dict[str, list[str]], key: str) -> str | None:
    values = query.get(key)
    return values[0] if values and values[0] else None


def _parse_fragment(fragment: str) -> tuple[str | None, AuthSuccess | None]:
    """Return (raw auth value, parsed result) from a `auth=<json>` fragment."""
    raw = _first(parse_qs(fragment.lstrip("#"), keep_blank_values=True), "auth")
    if not raw:
        return None, None

    for candidate in (raw, unquote(raw)):
        try:
            return raw, parse_auth_payload(json.loads(candidate))
        except ValueError:
            continue
    logger.warning("Auth fragment is not valid JSON")
    return raw, None


@dataclass(frozen=True)
class CallbackSignals:
    """Everything the callback URL carried."""

    path: str = "/"
    fragment_raw: str | None = None
    fragment_result: AuthSuccess | None = None
    error: str | None = None
    success: bool = False
    code: str | None = None
    state: str | None = None

    @classmethod
    def from_url(cls, url: str) -> CallbackSignals:
        parts = urlsplit(url)
        query = parse_qs(parts.query, keep_blank_values=True)
        fragment_raw, fragment_result = _parse_fragment(parts.fragment)

        return cls(
            path=parts.path or "/",
            fragment_raw=fragment_raw,
            fragment_result=fragment_result,
            error=_first(query, "error"),
            success=_first(query, "success") == "true",
            code=_first(query, "code"),
            state=_first(query, "state"),
        )

    @property
    def carries_state(self) -> bool:
        """Whether there is anything in the URL worth stripping."""
        return bool(self.fragment_raw or self.error or self.success or self.code or self.state)

    @property
    def fingerprint(self) -> str | None:
        """Identity of the consumable input (fragment or code), if any."""
        if self.fragment_result is not None and self.fragment_raw:
            return _fingerprint("fragment", self.fragment_raw)
        if self.code:
            return _fingerprint("code", self.code)
        return None


def _fingerprint(kind: str, value: str) -> str:
    return hashlib.sha256(f"{kind}:{value}".encode()).hexdigest()


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    session: Session | None = None
    channel: str | None = None
    error: ErrorCode | None = None
    detail: str = ""
    destination: str | None = None
    replayed: bool = False


# =============================================================================
# Reconciler
# =============================================================================


class SessionReconciler:
    """The only writer of the SessionStore."""

    def __init__(
        self,
        exchange: CredentialExchangeClient,
        store: SessionStore,
        window: Window,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.exchange = exchange
        self.store = store
        self.window = window
        self.settings = settings or get_settings()
        self.channel = MessageChannel(self.settings.frontend_origin)
        self.status = ReconcileStatus.LOADING

        self._writer = store.claim_writer()
        self._lock = asyncio.Lock()
        self._sleep = sleep
        self._consumed: dict[str, Session] = {}

    # -------------------------------------------------------------------------
    # Callback page
    # -------------------------------------------------------------------------

    async def reconcile(self, signals: CallbackSignals | None = None) -> ReconcileOutcome:
        """Run the five-step check against `signals` (default: the current URL)."""
        if signals is None:
            signals = CallbackSignals.from_url(self.window.location)
        async with self._lock:
            return await self._run(signals)

    async def _run(self, signals: CallbackSignals) -> ReconcileOutcome:
        fingerprint = signals.fingerprint
        if fingerprint and fingerprint in self._consumed:
            session = self._consumed[fingerprint]
            if signals.carries_state:
                self.window.replace_history(signals.path)
            logger.info("Callback input already consumed; keeping the existing session")
            return ReconcileOutcome(
                ReconcileStatus.ACCEPTED,
                session=session,
                channel="replay",
                destination=route(session.identity),
                replayed=True,
            )

        # 1. Fragment payload
        if signals.fragment_result is not None:
            return self._accept(signals.fragment_result, "fragment", signals, fingerprint)

        # 2. Explicit error from the provider or backend
        if signals.error:
            return await self._fail(ErrorCode.AUTH_FAILED, f"Provider returned error={signals.error}", signals)

        # 3. Backend says the cookie is set; a stale code is ignored here
        if signals.success:
            result = await self.exchange.validate_existing_session()
            if isinstance(result, AuthFailure):
                return await self._fail(ErrorCode.AUTH_FAILED, result.detail, signals)
            return self._accept(result, "cookie", signals, fingerprint)

        # 4. Authorization code
        if signals.code:
            result = await self.exchange.exchange_code(signals.code, signals.state)
            if not isinstance(result, AuthFailure):
                return self._accept(result, "code", signals, fingerprint)

            if result.transient:
                logger.info(f"Code exchange unavailable ({result.detail}); checking for a cookie session")
            else:
                logger.warning(f"Code exchange rejected ({result.detail})")
                if self.settings.strict_code_rejection:
                    return await self._fail(ErrorCode.EXCHANGE_ERROR, result.detail, signals)

        # 5. Ambient cookie
        result = await self.exchange.validate_existing_session()
        if isinstance(result, AuthFailure):
            return await self._fail(ErrorCode.AUTH_FAILED, result.detail, signals)
        return self._accept(result, "cookie", signals, fingerprint)

    def _accept(
        self,
        result: AuthSuccess,
        channel: str,
        signals: CallbackSignals | None,
        fingerprint: str | None,
    ) -> ReconcileOutcome:
        session = self._writer.write(Session.from_result(result))
        if fingerprint:
            self._consumed[fingerprint] = session
        self.status = ReconcileStatus.ACCEPTED

        # Neutralize the URL before anything navigates
        if signals is not None and signals.carries_state:
            self.window.replace_history(signals.path)

        logger.info(f"Session accepted via {channel}")

        opener = self.window.opener
        if opener is not None:
            opener.post_message(AuthMessage.success(result).to_dict(), self.settings.frontend_origin)
            self.window.close()
            return ReconcileOutcome(ReconcileStatus.ACCEPTED, session=session, channel=channel)

        destination = route(session.identity)
        self.window.navigate(destination)
        return ReconcileOutcome(
            ReconcileStatus.ACCEPTED, session=session, channel=channel, destination=destination
        )

    async def _fail(
        self,
        error: ErrorCode,
        detail: str,
        signals: CallbackSignals | None,
    ) -> ReconcileOutcome:
        self.status = ReconcileStatus.FAILED
        self._writer.clear()
        if signals is not None and signals.carries_state:
            self.window.replace_history(signals.path)

        logger.warning(f"Sign-in failed ({error.value}): {detail}")

        opener = self.window.opener
        if opener is not None:
            opener.post_message(AuthMessage.failure(error.value).to_dict(), self.settings.frontend_origin)

        # Let the failure message render before leaving
        await self._sleep(self.settings.auth_failure_redirect_delay)

        destination = login_path(current_path=signals.path if signals else self.window.path)
        if opener is not None:
            self.window.close()
            destination = None
        else:
            self.window.navigate(destination)
        return ReconcileOutcome(
            ReconcileStatus.FAILED, error=error, detail=detail, destination=destination
        )

    # -------------------------------------------------------------------------
    # Popup channel
    # -------------------------------------------------------------------------

    async def receive_message(self, data: Any, origin: str) -> ReconcileOutcome | None:
        """
        Handle a message posted by a sign-in popup.

        Returns None when the message was dropped (wrong origin, malformed).
        """
        message = self.channel.accept(data, origin)
        if message is None:
            return None

        async with self._lock:
            if message.type == GOOGLE_AUTH_ERROR:
                return await self._popup_failed(message.error)

            result = message.as_result()
            fingerprint = _fingerprint(
                "message",
                result.token if isinstance(result, TokenAuth) else result.identity.id,
            )
            if fingerprint in self._consumed:
                session = self._consumed[fingerprint]
                return ReconcileOutcome(
                    ReconcileStatus.ACCEPTED, session=session, channel="replay", replayed=True
                )
            return self._accept(result, "message", None, fingerprint)

    async def _popup_failed(self, error: str | None) -> ReconcileOutcome:
        """
        A popup attempt failed. The popup wrote nothing into this window, so
        a session the page already holds stays, and the page stays put.
        """
        detail = f"Popup reported {error}"
        current = self.store.snapshot()
        if current is None or not current.is_authenticated:
            return await self._fail(ErrorCode.AUTH_FAILED, detail, None)

        logger.warning(f"Sign-in popup failed ({detail}); keeping the existing session")
        return ReconcileOutcome(
            ReconcileStatus.FAILED, session=current, error=ErrorCode.AUTH_FAILED, detail=detail
        )

    # -------------------------------------------------------------------------
    # Outside the callback page
    # -------------------------------------------------------------------------

    async def revalidate(self) -> Session | None:
        """
        Re-check the session with the backend without navigating.

        Refreshes the cached identity on success, clears the session on a
        definitive "no", and leaves it alone if the backend is unreachable.
        """
        async with self._lock:
            current = self.store.snapshot()
            token = current.token if current else None
            result: AuthResult = await self.exchange.validate_existing_session(token=token)

            if isinstance(result, AuthFailure):
                if result.transient:
                    logger.info(f"Session check unavailable: {result.detail}")
                    return current
                if current is not None:
                    logger.info("Session no longer valid; clearing it")
                self._writer.clear()
                return None

            return self._writer.write(Session.from_result(result))

    async def logout(self) -> str:
        """Revoke, forget locally, and go to the matching login page."""
        async with self._lock:
            current = self.store.snapshot()
            await self.exchange.logout(token=current.token if current else None)
            self._writer.clear()
            self._consumed.clear()
            self.status = ReconcileStatus.LOADING

        destination = login_path(current_path=self.window.path)
        self.window.navigate(destination)
        return destination
