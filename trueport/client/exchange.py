"""
Credential Exchange Client.

Talks to the backend's auth endpoints and reports every outcome as one of
three tagged results, so callers match on the type instead of probing
response fields:

    TokenAuth(token, identity?)   - a bearer token came back
    CookieAuth(identity)          - the HTTP-only cookie carries the session
    AuthFailure(reason, ...)      - nothing usable; `transient` says whether
                                    trying again later could help
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from trueport.client.ports import Window
from trueport.config import Settings, get_settings
from trueport.core.errors import ErrorCode
from trueport.core.models import Identity

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TokenAuth:
    token: str
    identity: Identity | None = None


@dataclass(frozen=True)
class CookieAuth:
    identity: Identity


@dataclass(frozen=True)
class AuthFailure:
    reason: ErrorCode
    transient: bool = False
    detail: str = ""


AuthSuccess = TokenAuth | CookieAuth
AuthResult = TokenAuth | CookieAuth | AuthFailure


def parse_auth_payload(data: Any) -> AuthSuccess | None:
    """
    Read a backend `{token?, user?}` object.

    Returns None when neither a token nor a usable user is present.
    """
    if not isinstance(data, dict):
        return None

    token = data.get("token")
    identity = Identity.from_payload(data.get("user"))

    if isinstance(token, str) and token:
        return TokenAuth(token=token, identity=identity)
    if identity is not None:
        return CookieAuth(identity=identity)
    return None


# =============================================================================
# Client
# =============================================================================


class CredentialExchangeClient:
    """
    One httpx client, one cookie jar: the HTTP-only session cookie set by
    the exchange is sent back on validation, as a browser would with
    `credentials: include`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        window: Window | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.window = window
        self.http = http or httpx.AsyncClient(timeout=self.settings.http_timeout)
        self.base_url = self.settings.api_base_url.rstrip("/")

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _post_json(
        self,
        path: str,
        body: dict[str, Any],
        failure: ErrorCode,
        token: str | None = None,
    ) -> dict[str, Any] | AuthFailure:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self.http.post(f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"{path} unreachable: {e.__class__.__name__}")
            return AuthFailure(failure, transient=True, detail=str(e))

        if response.status_code >= 500:
            logger.error(f"{path} answered {response.status_code}")
            return AuthFailure(failure, transient=True, detail=f"HTTP {response.status_code}")
        if response.status_code >= 400:
            return AuthFailure(failure, transient=False, detail=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            return AuthFailure(failure, transient=False, detail="Malformed JSON response")
        if not isinstance(data, dict):
            return AuthFailure(failure, transient=False, detail="Unexpected response shape")
        return data

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def initiate(self, popup: bool = False) -> AuthFailure | None:
        """Fetch the provider URL and send the user (or a popup) there."""
        try:
            response = await self.http.get(f"{self.base_url}/auth/google/authorize")
            response.raise_for_status()
            url = response.json()["authorize_url"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Could not start Google sign-in: {e}")
            return AuthFailure(ErrorCode.AUTH_FAILED, transient=True, detail=str(e))

        if self.window is None:
            raise RuntimeError("initiate() needs a window to navigate")
        if popup:
            self.window.open_popup(url)
        else:
            self.window.navigate(url)
        return None

    async def exchange_code(self, code: str, state: str | None = None) -> AuthResult:
        """Trade an authorization code for a session."""
        data = await self._post_json(
            "/api/auth/google/callback",
            {"code": code, "state": state or ""},
            ErrorCode.EXCHANGE_ERROR,
        )
        if isinstance(data, AuthFailure):
            return data

        result = parse_auth_payload(data)
        if result is None:
            return AuthFailure(ErrorCode.EXCHANGE_ERROR, detail="Exchange returned no token or user")
        return result

    async def validate_existing_session(self, token: str | None = None) -> AuthResult:
        """Ask the backend whether the cookie (or `token`) is a live session."""
        data = await self._post_json("/auth/validate", {}, ErrorCode.NO_SESSION, token=token)
        if isinstance(data, AuthFailure):
            return data

        identity = Identity.from_payload(data.get("user"))
        if not data.get("valid") or identity is None:
            return AuthFailure(ErrorCode.NO_SESSION, detail="No valid session")
        if token:
            return TokenAuth(token=token, identity=identity)
        return CookieAuth(identity=identity)

    async def logout(self, token: str | None = None) -> bool:
        """Revoke the backend session. Failure here never blocks a local logout."""
        data = await self._post_json("/auth/logout", {}, ErrorCode.NO_SESSION, token=token)
        return not isinstance(data, AuthFailure)
