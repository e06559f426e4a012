"""
Shared building blocks: identity and request models, the error codes
returned to callers, transition events and id helpers.
"""

from trueport.core.models import (
    AssociationRequest,
    Claim,
    ClaimKind,
    Identity,
    RequestStatus,
    Role,
    VerificationRequest,
)

from trueport.core.errors import ErrorCode

from trueport.core.events import (
    Event,
    EventBus,
)

from trueport.core.utils import (
    generate_capability_token,
    generate_id,
    utc_now,
)

__all__ = [
    # Models
    "AssociationRequest",
    "Claim",
    "ClaimKind",
    "Identity",
    "RequestStatus",
    "Role",
    "VerificationRequest",
    # Errors
    "ErrorCode",
    # Events
    "Event",
    "EventBus",
    # Utils
    "generate_capability_token",
    "generate_id",
    "utc_now",
]
