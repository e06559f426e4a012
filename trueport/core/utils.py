"""
Identifiers, tokens and clocks.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone


def generate_id(prefix: str = "") -> str:
    """
    Short random id, namespaced by record type.

    >>> generate_id("vreq")  # doctest: +SKIP
    'vreq_3f9c0b1e-27a'
    """
    uid = str(uuid.uuid4())[:12]
    return f"{prefix}_{uid}" if prefix else uid


def generate_capability_token() -> str:
    """Unguessable token that grants action on exactly one request."""
    return secrets.token_urlsafe(32)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()
