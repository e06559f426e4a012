"""
What each platform role may do. Enforcement lives in policies.py.
"""

from enum import Enum

from trueport.core.models import Role


class Capability(str, Enum):
    """
    Fine-grained capabilities.

    These are the actual permissions checked by policies.
    A user's capabilities are derived from their platform role.
    """

    # Own profile and claims
    PROFILE_READ = "profile.read"
    CLAIM_REQUEST_VERIFICATION = "claim.request_verification"

    # Institution association
    ASSOCIATION_REQUEST = "association.request"
    ASSOCIATION_RESPOND = "association.respond"

    # Acting as a verifier while signed in
    VERIFICATION_RESPOND = "verification.respond"
    VERIFIER_DIRECTORY = "verifier.directory"

    # Admin
    ADMIN_INSTITUTE = "admin.institute"
    ADMIN_PLATFORM = "admin.platform"


# =============================================================================
# Capability Mappings
# =============================================================================


ROLE_CAPABILITIES: dict[Role, set[Capability]] = {
    Role.STUDENT: {
        Capability.PROFILE_READ,
        Capability.CLAIM_REQUEST_VERIFICATION,
        Capability.ASSOCIATION_REQUEST,
        Capability.VERIFIER_DIRECTORY,
    },
    Role.VERIFIER: {
        Capability.PROFILE_READ,
        Capability.CLAIM_REQUEST_VERIFICATION,
        Capability.ASSOCIATION_REQUEST,
        Capability.ASSOCIATION_RESPOND,
        Capability.VERIFICATION_RESPOND,
        Capability.VERIFIER_DIRECTORY,
    },
    Role.INSTITUTE_ADMIN: {
        Capability.PROFILE_READ,
        Capability.ADMIN_INSTITUTE,
    },
    Role.SUPER_ADMIN: {
        Capability.PROFILE_READ,
        Capability.ADMIN_INSTITUTE,
        Capability.ADMIN_PLATFORM,
    },
}

# Signed in but profile setup not finished yet
NO_ROLE_CAPABILITIES: set[Capability] = {Capability.PROFILE_READ}


def get_capabilities(role: Role | None = None) -> set[Capability]:
    """Get all capabilities for a role (or for an identity without one)."""
    if role is None:
        return set(NO_ROLE_CAPABILITIES)
    return set(ROLE_CAPABILITIES.get(role, set()))
