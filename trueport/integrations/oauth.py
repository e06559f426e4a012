"""
Google sign-in.

GoogleOAuth talks to the provider. OAuthManager sits in front of it and
owns the two single-use values of the flow: the CSRF `state` handed out
with the authorize URL, and the authorization `code` the provider returns.
Both live in CacheStorage so every API instance agrees on what was used.

Register both callback URLs with the Google client:
    <API_BASE_URL>/api/auth/google/callback   fragment and cookie modes
    <FRONTEND_URL>/oauth-callback             code mode
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from trueport.config import get_settings
from trueport.core.utils import generate_id
from trueport.storage import CacheStorage

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = 600
SUPPORTED_PROVIDERS = ("google",)


class OAuthUserInfo(BaseModel):
    provider: str
    provider_user_id: str
    email: str
    name: str
    picture_url: str | None = None
    email_verified: bool = True


class OAuthError(Exception):
    """
    Sign-in could not be completed.

    `rejected` separates a definitive refusal (unknown, expired or replayed
    code, forged state) from a provider that was unreachable or answered
    5xx. Callers only treat the former as the user's fault.
    """

    def __init__(self, message: str, rejected: bool = True):
        super().__init__(message)
        self.rejected = rejected


# =============================================================================
# Provider client
# =============================================================================


class GoogleOAuth:
    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(self, http: httpx.AsyncClient | None = None):
        self.settings = get_settings()
        self._http = http

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.google_oauth_client_id and self.settings.google_oauth_client_secret)

    @property
    def redirect_uri(self) -> str:
        if self.settings.oauth_redirect_mode == "code":
            return f"{self.settings.frontend_origin}/oauth-callback"
        return f"{self.settings.api_base_url.rstrip('/')}/api/auth/google/callback"

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise OAuthError("Google OAuth not configured", rejected=False)

    def get_authorize_url(self, state: str | None = None) -> str:
        self._require_configured()
        query = {
            "client_id": self.settings.google_oauth_client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "access_type": "offline",
            "prompt": "select_account",
        }
        if state:
            query["state"] = state
        return f"{self.AUTHORIZE_URL}?{urlencode(query)}"

    async def _call(self, step: str, method: str, url: str, **kwargs) -> dict[str, Any]:
        """
        One round trip to Google. Network failures and 5xx answers raise a
        transient OAuthError, any other non-200 a definitive one.
        """
        client = self._http or httpx.AsyncClient(timeout=self.settings.http_timeout)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Google {step} unreachable: {e}")
            raise OAuthError(f"{step} failed: provider unreachable", rejected=False)
        finally:
            if self._http is None:
                await client.aclose()

        if response.status_code != 200:
            logger.error(f"Google {step} failed: {response.status_code} {response.text}")
            raise OAuthError(f"{step} failed: {response.status_code}", rejected=response.status_code < 500)
        return response.json()

    async def exchange_code(self, code: str) -> dict[str, Any]:
        self._require_configured()
        return await self._call(
            "token exchange",
            "POST",
            self.TOKEN_URL,
            data={
                "client_id": self.settings.google_oauth_client_id,
                "client_secret": self.settings.google_oauth_client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        data = await self._call(
            "userinfo", "GET", self.USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        return OAuthUserInfo(
            provider="google",
            provider_user_id=data["id"],
            email=data["email"],
            name=data.get("name") or data["email"].split("@")[0],
            picture_url=data.get("picture"),
            email_verified=data.get("verified_email", True),
        )

    async def authenticate(self, code: str) -> OAuthUserInfo:
        tokens = await self.exchange_code(code)
        return await self.get_user_info(tokens["access_token"])


# =============================================================================
# Single-use state and codes
# =============================================================================


class OAuthManager:
    def __init__(self, cache: CacheStorage, google: GoogleOAuth | None = None):
        self.cache = cache
        self.google = google or GoogleOAuth()

    def get_available_providers(self) -> list[str]:
        return ["google"] if self.google.is_configured else []

    def _check_provider(self, provider: str) -> None:
        if provider not in SUPPORTED_PROVIDERS:
            raise OAuthError(f"Unknown provider: {provider}")

    async def create_state(self, provider: str) -> str:
        state = generate_id("oauth")
        await self.cache.set(f"oauth_state:{state}", provider, ttl=OAUTH_STATE_TTL)
        return state

    async def validate_state(self, state: str) -> str | None:
        """Consume `state`. Returns the provider it was issued for, or None."""
        key = f"oauth_state:{state}"
        provider = await self.cache.get(key)
        if provider is not None:
            await self.cache.delete(key)
        return provider

    async def get_authorize_url(self, provider: str) -> str:
        self._check_provider(provider)
        return self.google.get_authorize_url(await self.create_state(provider))

    async def authenticate(self, provider: str, code: str) -> OAuthUserInfo:
        """Redeem `code` with the provider. A code is redeemed at most once."""
        self._check_provider(provider)

        if not await self.cache.add(f"oauth_code:{code}", True, ttl=OAUTH_STATE_TTL):
            logger.warning("Authorization code replayed")
            raise OAuthError("Authorization code already used")

        return await self.google.authenticate(code)
