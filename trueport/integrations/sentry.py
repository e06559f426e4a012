"""
Error reporting through Sentry.

Reporting stays off until SENTRY_DSN is set. Events pass through
`_filter_events` first, which drops expected refusals and strips session
credentials and verification tokens from the request data.
"""

import logging

import sentry_sdk
from fastapi import HTTPException
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from trueport.config import get_settings

logger = logging.getLogger(__name__)

FILTERED = "[Filtered]"
SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-api-key"}
QUIET_TRANSACTIONS = {"/health", "/healthz", "/ready"}
TOKEN_PATH = "/verify/"


# =============================================================================
# Setup
# =============================================================================


def init_sentry() -> bool:
    """Start the SDK. Returns False when no DSN is configured."""
    settings = get_settings()

    if not settings.sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        before_send=_filter_events,
        before_send_transaction=_filter_transactions,
    )

    logger.info(f"Sentry initialized for {settings.environment}")
    return True


# =============================================================================
# Filters
# =============================================================================


def _is_expected(hint: dict) -> bool:
    # 4xx covers auth failures and workflow refusals like NOT_OWNER
    exc_info = hint.get("exc_info")
    if not exc_info:
        return False
    error = exc_info[1]
    return isinstance(error, HTTPException) and error.status_code < 500


def _scrub_request(request: dict) -> None:
    headers = request.get("headers") or {}
    for name in list(headers):
        if name.lower() in SENSITIVE_HEADERS:
            headers[name] = FILTERED

    if "cookies" in request:
        request["cookies"] = FILTERED

    url = request.get("url") or ""
    if TOKEN_PATH in url:
        request["url"] = url.split(TOKEN_PATH)[0] + TOKEN_PATH + FILTERED


def _filter_events(event: dict, hint: dict) -> dict | None:
    if _is_expected(hint):
        return None

    if event.get("request"):
        _scrub_request(event["request"])
    return event


def _filter_transactions(event: dict, hint: dict) -> dict | None:
    if event.get("transaction", "") in QUIET_TRANSACTIONS:
        return None
    return event


# =============================================================================
# Reporting helpers
# =============================================================================


def capture_exception(error: Exception, **context) -> str | None:
    """
    Report `error` with `context` attached as extras.

    Falls back to an error log line when the SDK is inactive. Returns the
    Sentry event id when one was sent.
    """
    if not sentry_sdk.get_client().is_active():
        logger.error("Error (Sentry disabled)", exc_info=error)
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(error)


def set_user(user_id: str, **extra) -> None:
    """Tag later reports with the signed-in user. Emails are left out."""
    if sentry_sdk.get_client().is_active():
        sentry_sdk.set_user({"id": user_id, **extra})
