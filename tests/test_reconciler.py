"""
Tests for the session reconciler.

The backend is an httpx MockTransport; the browser is the in-memory
window and store. Every run must end ACCEPTED or FAILED, and no consumed
fragment or code may be acted on twice.
"""

import asyncio
import json
from urllib.parse import quote

import httpx
import pytest

from trueport.client import (
    CallbackSignals,
    CookieAuth,
    CredentialExchangeClient,
    InMemoryBrowserStore,
    InMemoryWindow,
    RecordingOpener,
    ReconcileStatus,
    SessionReconciler,
    SessionStore,
    TokenAuth,
)
from trueport.client.messages import GOOGLE_AUTH_ERROR, GOOGLE_AUTH_SUCCESS
from trueport.client.session import USER_STORAGE_KEY
from trueport.config import Settings
from trueport.core.errors import ErrorCode

FRONTEND = "http://localhost:3000"

STUDENT = {"id": "abc123", "name": "Ana", "email": "ana@inst.edu", "role": "STUDENT"}
VERIFIER = {"id": "v1", "name": "Vic", "email": "verifier@inst.edu", "role": "VERIFIER"}


# =============================================================================
# Fixtures
# =============================================================================


class FakeBackend:
    """Answers the auth endpoints and counts calls by path."""

    def __init__(self):
        self.calls: list[str] = []
        self.responses: dict[str, tuple[int, object]] = {
            "/auth/validate": (200, {"valid": False}),
            "/api/auth/google/callback": (400, {"detail": "bad code"}),
            "/auth/logout": (200, {"message": "Logged out successfully"}),
        }
        self.unreachable: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        if path in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        status, body = self.responses.get(path, (404, {"detail": "Not Found"}))
        return httpx.Response(status, json=body)

    def count(self, path: str) -> int:
        return self.calls.count(path)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings():
    return Settings(frontend_url=FRONTEND, api_base_url="http://api.test")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def browser():
    return InMemoryBrowserStore()


def build(backend, settings, sleeps, browser, location, opener=None):
    """Wire a reconciler to a window at `location`."""

    async def fake_sleep(delay):
        sleeps.append(delay)

    window = InMemoryWindow(location, opener=opener)
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    exchange = CredentialExchangeClient(settings=settings, window=window, http=http)
    store = SessionStore(browser, settings)
    reconciler = SessionReconciler(exchange, store, window, settings=settings, sleep=fake_sleep)
    return reconciler, window, store


def fragment_url(payload):
    return f"{FRONTEND}/oauth-callback#auth={quote(json.dumps(payload), safe='')}"


# =============================================================================
# Fragment channel
# =============================================================================


class TestFragment:
    @pytest.mark.asyncio
    async def test_token_fragment_is_accepted_without_network(self, backend, settings, sleeps, browser):
        url = fragment_url({"token": "jwt-1", "user": STUDENT})
        reconciler, window, store = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.channel == "fragment"
        assert outcome.session.token == "jwt-1"
        assert outcome.session.identity.id == "abc123"
        assert backend.calls == []

        # Persisted, URL stripped, then routed by role
        assert browser.get_cookie("auth-token") == "jwt-1"
        assert json.loads(browser.get_item(USER_STORAGE_KEY))["id"] == "abc123"
        assert window.history == [f"{FRONTEND}/oauth-callback"]
        assert window.navigations == ["/dashboard"]
        assert store.snapshot() is outcome.session

    @pytest.mark.asyncio
    async def test_user_only_fragment_means_cookie_session(self, backend, settings, sleeps, browser):
        url = fragment_url({"user": VERIFIER})
        reconciler, window, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.session.cookie_auth is True
        assert outcome.session.token is None
        assert window.navigations == ["/verifier/dashboard"]

    @pytest.mark.asyncio
    async def test_fragment_wins_over_error_and_code(self, backend, settings, sleeps, browser):
        payload = quote(json.dumps({"token": "jwt-1", "user": STUDENT}), safe="")
        url = f"{FRONTEND}/oauth-callback?error=access_denied&code=c1#auth={payload}"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_replayed_fragment_is_a_no_op(self, backend, settings, sleeps, browser):
        url = fragment_url({"token": "jwt-1", "user": STUDENT})
        reconciler, window, _ = build(backend, settings, sleeps, browser, url)

        first = await reconciler.reconcile(CallbackSignals.from_url(url))
        second = await reconciler.reconcile(CallbackSignals.from_url(url))

        assert second.status == ReconcileStatus.ACCEPTED
        assert second.replayed is True
        assert second.session is first.session
        assert window.navigations == ["/dashboard"]
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_malformed_fragment_falls_through_to_cookie(self, backend, settings, sleeps, browser):
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback#auth=%7Bnot-json"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.channel == "cookie"


# =============================================================================
# Error and success flags
# =============================================================================


class TestFlags:
    @pytest.mark.asyncio
    async def test_error_fails_and_goes_to_login_after_delay(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "stale")
        url = f"{FRONTEND}/oauth-callback?error=access_denied"
        reconciler, window, store = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.FAILED
        assert outcome.error == ErrorCode.AUTH_FAILED
        assert backend.calls == []
        assert sleeps == [settings.auth_failure_redirect_delay]
        assert window.navigations == ["/auth/login"]
        assert store.snapshot() is None
        assert browser.get_cookie("auth-token") is None

    @pytest.mark.asyncio
    async def test_success_flag_never_exchanges_a_stale_code(self, backend, settings, sleeps, browser):
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?success=true&code=stale"
        reconciler, window, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.channel == "cookie"
        assert backend.count("/api/auth/google/callback") == 0
        assert backend.count("/auth/validate") == 1
        assert window.history == [f"{FRONTEND}/oauth-callback"]

    @pytest.mark.asyncio
    async def test_success_flag_without_cookie_fails(self, backend, settings, sleeps, browser):
        url = f"{FRONTEND}/oauth-callback?success=true"
        reconciler, window, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.FAILED
        assert backend.calls == ["/auth/validate"]
        assert window.navigations == ["/auth/login"]


# =============================================================================
# Code channel
# =============================================================================


class TestCode:
    @pytest.mark.asyncio
    async def test_code_exchange_accepts(self, backend, settings, sleeps, browser):
        backend.responses["/api/auth/google/callback"] = (200, {"token": "jwt-2", "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?code=c1&state=s1"
        reconciler, window, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.channel == "code"
        assert outcome.session.token == "jwt-2"
        assert backend.calls == ["/api/auth/google/callback"]

    @pytest.mark.asyncio
    async def test_code_is_exchanged_at_most_once(self, backend, settings, sleeps, browser):
        backend.responses["/api/auth/google/callback"] = (200, {"token": "jwt-2", "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?code=c1"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)
        signals = CallbackSignals.from_url(url)

        outcomes = await asyncio.gather(
            reconciler.reconcile(signals),
            reconciler.reconcile(signals),
        )

        assert [o.status for o in outcomes] == [ReconcileStatus.ACCEPTED, ReconcileStatus.ACCEPTED]
        assert outcomes[0].session is outcomes[1].session
        assert backend.count("/api/auth/google/callback") == 1

    @pytest.mark.asyncio
    async def test_rejected_code_falls_through_to_cookie(self, backend, settings, sleeps, browser):
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?code=used"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert outcome.channel == "cookie"
        assert backend.calls == ["/api/auth/google/callback", "/auth/validate"]

    @pytest.mark.asyncio
    async def test_unreachable_exchange_falls_through_to_cookie(self, backend, settings, sleeps, browser):
        backend.unreachable.add("/api/auth/google/callback")
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?code=c1"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_strict_mode_fails_on_rejected_code(self, backend, sleeps, browser):
        settings = Settings(frontend_url=FRONTEND, api_base_url="http://api.test", strict_code_rejection=True)
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": STUDENT})
        url = f"{FRONTEND}/oauth-callback?code=used"
        reconciler, _, _ = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.FAILED
        assert outcome.error == ErrorCode.EXCHANGE_ERROR
        assert backend.count("/auth/validate") == 0

    @pytest.mark.asyncio
    async def test_nothing_usable_fails(self, backend, settings, sleeps, browser):
        url = f"{FRONTEND}/oauth-callback?code=used"
        reconciler, window, store = build(backend, settings, sleeps, browser, url)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.FAILED
        assert outcome.error == ErrorCode.AUTH_FAILED
        assert store.snapshot() is None
        assert window.navigations == ["/auth/login"]


# =============================================================================
# Termination
# =============================================================================


class TestTermination:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query",
        [
            "",
            "?error=x",
            "?success=true",
            "?code=c",
            "?code=c&state=s",
            "?success=false",
            "#auth=",
            "#auth=%5B1%2C2%5D",
        ],
    )
    @pytest.mark.parametrize("validate", [(200, {"valid": False}), (500, {}), (200, {"valid": True, "user": STUDENT})])
    async def test_always_reaches_a_terminal_state(self, backend, settings, sleeps, browser, query, validate):
        backend.responses["/auth/validate"] = validate
        reconciler, _, _ = build(backend, settings, sleeps, browser, f"{FRONTEND}/oauth-callback{query}")

        outcome = await reconciler.reconcile()

        assert outcome.status in (ReconcileStatus.ACCEPTED, ReconcileStatus.FAILED)
        assert reconciler.status == outcome.status


# =============================================================================
# Popups and messages
# =============================================================================


class TestPopup:
    @pytest.mark.asyncio
    async def test_popup_posts_to_opener_and_closes(self, backend, settings, sleeps, browser):
        opener = RecordingOpener()
        url = fragment_url({"token": "jwt-1", "user": STUDENT})
        reconciler, window, _ = build(backend, settings, sleeps, browser, url, opener=opener)

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert window.closed is True
        assert window.navigations == []
        [(message, origin)] = opener.messages
        assert origin == FRONTEND
        assert message["type"] == GOOGLE_AUTH_SUCCESS
        assert message["token"] == "jwt-1"
        assert message["user"]["id"] == "abc123"

    @pytest.mark.asyncio
    async def test_popup_failure_posts_error(self, backend, settings, sleeps, browser):
        opener = RecordingOpener()
        reconciler, window, _ = build(
            backend, settings, sleeps, browser, f"{FRONTEND}/oauth-callback?error=denied", opener=opener
        )

        outcome = await reconciler.reconcile()

        assert outcome.status == ReconcileStatus.FAILED
        assert window.closed is True
        assert window.navigations == []
        [(message, _)] = opener.messages
        assert message == {"type": GOOGLE_AUTH_ERROR, "error": "AUTH_FAILED"}

    @pytest.mark.asyncio
    async def test_opener_accepts_trusted_message(self, backend, settings, sleeps, browser):
        reconciler, window, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/auth/login")

        outcome = await reconciler.receive_message(
            {"type": GOOGLE_AUTH_SUCCESS, "token": "jwt-1", "user": VERIFIER}, FRONTEND
        )

        assert outcome.status == ReconcileStatus.ACCEPTED
        assert store.snapshot().token == "jwt-1"
        assert window.navigations == ["/verifier/dashboard"]

    @pytest.mark.asyncio
    async def test_message_from_other_origin_is_dropped(self, backend, settings, sleeps, browser):
        reconciler, window, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/auth/login")

        outcome = await reconciler.receive_message(
            {"type": GOOGLE_AUTH_SUCCESS, "token": "evil", "user": STUDENT}, "https://evil.example"
        )

        assert outcome is None
        assert store.snapshot() is None
        assert reconciler.channel.dropped == 1
        assert window.navigations == []

    @pytest.mark.asyncio
    async def test_repeated_message_is_a_no_op(self, backend, settings, sleeps, browser):
        reconciler, window, _ = build(backend, settings, sleeps, browser, f"{FRONTEND}/auth/login")
        message = {"type": GOOGLE_AUTH_SUCCESS, "token": "jwt-1", "user": STUDENT}

        await reconciler.receive_message(message, FRONTEND)
        again = await reconciler.receive_message(message, FRONTEND)

        assert again.replayed is True
        assert window.navigations == ["/dashboard"]

    @pytest.mark.asyncio
    async def test_error_message_fails(self, backend, settings, sleeps, browser):
        reconciler, window, _ = build(backend, settings, sleeps, browser, f"{FRONTEND}/auth/login")

        outcome = await reconciler.receive_message({"type": GOOGLE_AUTH_ERROR, "error": "x"}, FRONTEND)

        assert outcome.status == ReconcileStatus.FAILED
        assert window.navigations == ["/auth/login"]

    @pytest.mark.asyncio
    async def test_error_message_keeps_existing_session(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "jwt-0")
        browser.set_item(USER_STORAGE_KEY, json.dumps(STUDENT))
        reconciler, window, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/dashboard")

        outcome = await reconciler.receive_message({"type": GOOGLE_AUTH_ERROR, "error": "x"}, FRONTEND)

        assert outcome.status == ReconcileStatus.FAILED
        assert outcome.session.token == "jwt-0"
        assert store.snapshot().identity.id == "abc123"
        assert browser.get_cookie("auth-token") == "jwt-0"
        assert window.navigations == []
        assert sleeps == []


# =============================================================================
# Revalidate and logout
# =============================================================================


class TestRevalidate:
    @pytest.mark.asyncio
    async def test_refreshes_identity(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "jwt-1")
        backend.responses["/auth/validate"] = (200, {"valid": True, "user": {**STUDENT, "institute": "Inst"}})
        reconciler, window, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/dashboard")

        session = await reconciler.revalidate()

        assert session.token == "jwt-1"
        assert session.identity.institute == "Inst"
        assert store.snapshot() is session
        assert window.navigations == []

    @pytest.mark.asyncio
    async def test_definitive_no_clears_session(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "jwt-1")
        reconciler, _, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/dashboard")

        assert await reconciler.revalidate() is None
        assert store.snapshot() is None
        assert browser.get_cookie("auth-token") is None

    @pytest.mark.asyncio
    async def test_outage_keeps_session(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "jwt-1")
        backend.responses["/auth/validate"] = (503, {})
        reconciler, _, store = build(backend, settings, sleeps, browser, f"{FRONTEND}/dashboard")

        session = await reconciler.revalidate()

        assert session.token == "jwt-1"
        assert store.snapshot() is session


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_clears_and_routes_to_matching_login(self, backend, settings, sleeps, browser):
        browser.set_cookie("auth-token", "jwt-1")
        reconciler, window, store = build(
            backend, settings, sleeps, browser, f"{FRONTEND}/admin/super-admin/dashboard"
        )

        destination = await reconciler.logout()

        assert destination == "/admin/super-admin/login"
        assert backend.calls == ["/auth/logout"]
        assert store.snapshot() is None
        assert window.navigations == ["/admin/super-admin/login"]


class TestResults:
    def test_token_and_cookie_results(self):
        signals = CallbackSignals.from_url(fragment_url({"token": "t", "user": STUDENT}))
        assert isinstance(signals.fragment_result, TokenAuth)

        signals = CallbackSignals.from_url(fragment_url({"user": STUDENT}))
        assert isinstance(signals.fragment_result, CookieAuth)

        signals = CallbackSignals.from_url(fragment_url({"nothing": True}))
        assert signals.fragment_result is None
