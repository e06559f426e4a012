"""
Per-request view of the caller.

An AuthContext is resolved once from the session token and the user
directory, then handed to route handlers. It is never refreshed during the
request, so a role or institute change shows up on the next call.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from trueport.auth.capabilities import Capability, get_capabilities
from trueport.core.models import Identity, Role


@dataclass
class AuthContext:
    """
    The signed-in identity, the token it came from, and what its role
    allows.

        async def pending(ctx: AuthContext = Depends(require_role(Role.VERIFIER))):
            return await association.list_pending(ctx.identity)
    """

    identity: Identity | None = None
    token: str | None = None
    _capabilities: set[Capability] = field(default_factory=set, repr=False)

    def __post_init__(self):
        if self.identity is not None:
            self._capabilities = get_capabilities(self.identity.role)

    @property
    def is_anonymous(self) -> bool:
        return self.identity is None

    @property
    def user_id(self) -> str | None:
        return self.identity.id if self.identity else None

    @property
    def role(self) -> Role | None:
        return self.identity.role if self.identity else None

    @property
    def institute(self) -> str | None:
        return self.identity.institute if self.identity else None

    def has_role(self, *roles: Role) -> bool:
        return self.role is not None and self.role in roles

    def can(self, capability: Capability | str) -> bool:
        """Unknown capability names are simply not held."""
        if isinstance(capability, str):
            try:
                capability = Capability(capability)
            except ValueError:
                return False
        return capability in self._capabilities

    @classmethod
    def anonymous(cls) -> AuthContext:
        return cls()
