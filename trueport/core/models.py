"""
Core data models for the TruePort platform.

These models represent the fundamental entities: identities, the claims
users make about themselves, and the two kinds of approval requests.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from trueport.core.utils import generate_capability_token, generate_id, utc_now


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Platform-wide role of an identity."""

    STUDENT = "STUDENT"
    VERIFIER = "VERIFIER"
    INSTITUTE_ADMIN = "INSTITUTE_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class ClaimKind(str, Enum):
    """What a claim (and a verification request's subject) can be."""

    EXPERIENCE = "EXPERIENCE"
    EDUCATION = "EDUCATION"
    PROJECT = "PROJECT"

    @classmethod
    def parse(cls, value: str) -> ClaimKind:
        """Accept path-style spellings like "experience" or "projects"."""
        normalized = value.strip().upper()
        if normalized.endswith("S") and normalized[:-1] in cls.__members__:
            normalized = normalized[:-1]
        return cls(normalized)


class RequestStatus(str, Enum):
    """Shared state machine for both approval workflows."""

    NONE = "NONE"          # no request exists
    PENDING = "PENDING"
    APPROVED = "APPROVED"  # terminal
    REJECTED = "REJECTED"  # terminal

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.APPROVED, RequestStatus.REJECTED)


# =============================================================================
# Identity
# =============================================================================


class Identity(BaseModel):
    """
    Read-only projection of a user as the backend reports it.

    The id never changes; profile fields (name, role, institute) may change
    on the backend, and the client only learns about it on refetch.
    """

    model_config = {"frozen": True}

    id: str
    name: str = ""
    email: str = ""
    role: Role | None = None
    institute: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _lenient_role(cls, value: Any) -> Any:
        # Unknown or blank roles mean "profile incomplete", not an error
        if value in (None, ""):
            return None
        if isinstance(value, Role):
            return value
        try:
            return Role(str(value).upper())
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, data: Any) -> Identity | None:
        """Parse a backend `user` object, returning None if it is unusable."""
        if isinstance(data, Identity):
            return data
        if not isinstance(data, dict):
            return None
        raw_id = data.get("id") or data.get("_id")
        if not raw_id:
            return None
        try:
            return cls.model_validate({**data, "id": str(raw_id)})
        except ValueError:
            return None


# =============================================================================
# Claims
# =============================================================================


class Claim(BaseModel):
    """
    A professional claim (experience, education entry, project).

    Claims are created and edited by plain CRUD surfaces; the verification
    workflow is the only place `verified` is ever set.
    """

    id: str = Field(default_factory=lambda: generate_id("claim"))
    kind: ClaimKind
    owner_id: str
    title: str = ""
    description: str = ""

    verified: bool = False
    verified_at: datetime | None = None
    verifier_email: str | None = None

    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Requests
# =============================================================================


class VerificationRequest(BaseModel):
    """A capability-token-gated request for a named verifier to judge a claim."""

    id: str = Field(default_factory=lambda: generate_id("vreq"))
    subject_type: ClaimKind
    subject_id: str
    requester_id: str
    verifier_email: str

    status: RequestStatus = RequestStatus.PENDING
    token: str = Field(default_factory=generate_capability_token)

    reason: str | None = None  # rejection reason, shown to the requester

    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: datetime | None = None

    def public_view(self) -> dict[str, Any]:
        """Serialize without the capability token."""
        return self.model_dump(mode="json", exclude={"token"})


class AssociationRequest(BaseModel):
    """A request to link a user to an institution."""

    id: str = Field(default_factory=lambda: generate_id("areq"))
    student_id: str
    institute: str
    requested_role: Role

    status: RequestStatus = RequestStatus.PENDING
    rejection_reason: str | None = None
    responded_by: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: datetime | None = None
