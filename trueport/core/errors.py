"""
Error taxonomy shared by the client, the auth layer and the workflows.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Every failure the platform reports, by name."""

    # Reconciliation
    AUTH_FAILED = "AUTH_FAILED"            # no channel produced a session (terminal)
    EXCHANGE_ERROR = "EXCHANGE_ERROR"      # code exchange rejected (falls through)
    NO_SESSION = "NO_SESSION"              # cookie/token validation found nothing
    UNTRUSTED_ORIGIN = "UNTRUSTED_ORIGIN"  # cross-window message dropped

    # Workflows
    NOT_OWNER = "NOT_OWNER"
    NO_ELIGIBLE_APPROVER = "NO_ELIGIBLE_APPROVER"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"  # benign, not shown as an error
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"


# HTTP status each workflow code maps to
HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NOT_OWNER: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NO_ELIGIBLE_APPROVER: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.DUPLICATE_REQUEST: 409,
    ErrorCode.ALREADY_RESOLVED: 200,
    ErrorCode.AUTH_FAILED: 401,
    ErrorCode.NO_SESSION: 401,
    ErrorCode.EXCHANGE_ERROR: 400,
    ErrorCode.UNTRUSTED_ORIGIN: 403,
}
