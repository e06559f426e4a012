"""
TruePort settings.

Every field can be overridden by an upper-cased environment variable or
a .env file in the working directory.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings for the API, sign-in flows and email delivery."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # Where the API is reachable from the client side
    api_base_url: str = "http://localhost:8000"

    # The only origin trusted for cross-window auth messages
    frontend_url: str = "http://localhost:3000"

    # ==========================================================================
    # Authentication
    # ==========================================================================

    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    session_expire_days: int = 7

    # HTTP-only cookie set by the backend
    session_cookie_name: str = "session"

    # Client-visible cookie holding the bearer token
    auth_token_cookie_name: str = "auth-token"

    # Seconds the failure message stays visible before redirecting to login
    auth_failure_redirect_delay: float = 0.8

    # Hard-fail reconciliation when the backend definitively rejects a code
    strict_code_rejection: bool = False

    # Seconds before an outbound HTTP call is abandoned
    http_timeout: float = 10.0

    # OAuth (Google)
    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""

    # Where the provider sends the user back:
    #   "fragment" -> backend callback, then frontend #auth=<json>
    #   "cookie"   -> backend callback, then frontend ?success=true
    #   "code"     -> frontend ?code=&state=, which POSTs the exchange
    oauth_redirect_mode: str = "fragment"

    # ==========================================================================
    # AWS (email delivery)
    # ==========================================================================

    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_ses_from_email: str = ""

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def frontend_origin(self) -> str:
        return self.frontend_url.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_aws(self) -> bool:
        """Whether AWS services should be used."""
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    @property
    def session_max_age(self) -> int:
        """Session lifetime in seconds."""
        return self.session_expire_days * 24 * 60 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
