"""
Server-side access guard for API routes.

    ctx: AuthContext = Depends(require_role(Role.VERIFIER))

The session token is looked for in the bearer header, then the HTTP-only
session cookie, then the client-visible `auth-token` cookie. No valid
session means 401; a session whose role does not fit means 403.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from trueport.auth.capabilities import Capability
from trueport.auth.context import AuthContext
from trueport.auth.jwt import TokenError, validate_session_token
from trueport.auth.users import UserDirectory
from trueport.config import get_settings
from trueport.core.models import Role
from trueport.integrations.sentry import set_user

logger = logging.getLogger(__name__)


# =============================================================================
# Resolving the caller
# =============================================================================


# auto_error=False: a missing header falls through to the cookies
optional_bearer = HTTPBearer(auto_error=False)


def extract_session_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = None,
) -> str | None:
    """Find the session token in whichever transport carried it."""
    if credentials and credentials.credentials:
        return credentials.credentials

    settings = get_settings()
    return (
        request.cookies.get(settings.session_cookie_name)
        or request.cookies.get(settings.auth_token_cookie_name)
        or None
    )


async def resolve_context(request: Request, token: str | None) -> AuthContext:
    """Turn a raw token into an AuthContext (anonymous if anything is off)."""
    if not token:
        return AuthContext.anonymous()

    storage = request.app.state.storage

    try:
        payload = await validate_session_token(token, storage.cache)
    except TokenError as e:
        logger.debug(f"Rejected session token: {e}")
        return AuthContext.anonymous()

    identity = await UserDirectory(storage.metadata).get_identity(payload.sub)
    if identity is None:
        logger.warning(f"Session token for unknown user {payload.sub}")
        return AuthContext.anonymous()

    set_user(identity.id, role=identity.role.value if identity.role else None)
    return AuthContext(identity=identity, token=token)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> AuthContext:
    """Resolve the caller without requiring authentication."""
    return await resolve_context(request, extract_session_token(request, credentials))


# =============================================================================
# Policies
# =============================================================================


class Policy:
    """
    What a route demands of its caller. Built by one of:
        require_role(Role.VERIFIER)                         # role membership
        require(Capability.VERIFIER_DIRECTORY)              # capability
        require_auth()                                      # any signed-in user
    """

    def __init__(
        self,
        capabilities: list[Capability | str] | None = None,
        roles: set[Role] | None = None,
        require_auth: bool = True,
    ):
        self.capabilities = capabilities or []
        self.roles = roles or set()
        self.require_auth = require_auth

    def check(self, ctx: AuthContext) -> tuple[int | None, str | None]:
        """(http_status, message), or (None, None) when the caller passes."""
        if self.require_auth and ctx.is_anonymous:
            return 401, "Authentication required"

        if self.roles and not ctx.has_role(*self.roles):
            allowed = ", ".join(sorted(r.value for r in self.roles))
            return 403, f"Requires role: {allowed}"

        missing = [c for c in self.capabilities if not ctx.can(c)]
        if missing:
            return 403, f"Missing permissions: {missing}"

        return None, None


# =============================================================================
# Route dependencies
# =============================================================================


def require(*capabilities: Capability | str, require_auth: bool = True) -> Callable:
    """
    Demand every listed capability.

        @verify_router.post("/request/{kind}/{claim_id}")
        async def request_verification(
            ctx: AuthContext = Depends(require(Capability.CLAIM_REQUEST_VERIFICATION)),
        ):
            ...
    """
    return _create_dependency(Policy(capabilities=list(capabilities), require_auth=require_auth))


def require_auth() -> Callable:
    """Any signed-in user, including one who has not picked a role yet."""
    return _create_dependency(Policy(require_auth=True))


def require_role(*roles: Role) -> Callable:
    """Require one of the listed platform roles."""
    return _create_dependency(Policy(roles=set(roles), require_auth=True))


# =============================================================================
# Internal
# =============================================================================


def _create_dependency(policy: Policy) -> Callable:
    """401 or 403 as `policy.check` decides, else the context."""

    async def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        status, error = policy.check(ctx)
        if status is not None:
            raise HTTPException(status_code=status, detail=error)
        return ctx

    return dependency
