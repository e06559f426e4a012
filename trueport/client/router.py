"""
Role Router - where an identity lands after sign-in.

Pure functions. Anything unrecognised falls through to profile setup;
nothing here raises.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from trueport.core.models import Identity, Role

DEFAULT_PATH = "/dashboard"
PROFILE_SETUP_PATH = "/profile?setup=true"

# Checked in this order
HOME_BY_ROLE: list[tuple[Role, str]] = [
    (Role.SUPER_ADMIN, "/admin/super-admin/dashboard"),
    (Role.INSTITUTE_ADMIN, "/admin/institute-admin/dashboard"),
    (Role.VERIFIER, "/verifier/dashboard"),
    (Role.STUDENT, "/dashboard"),
]

LOGIN_PATH = "/auth/login"
SUPER_ADMIN_LOGIN_PATH = "/admin/super-admin/login"
INSTITUTE_ADMIN_LOGIN_PATH = "/admin/institute-admin/login"


def _role_of(identity: Identity | Mapping[str, Any]) -> Role | None:
    if isinstance(identity, Identity):
        return identity.role
    raw = identity.get("role")
    if isinstance(raw, Role):
        return raw
    try:
        return Role(str(raw).upper())
    except ValueError:
        return None


def route(identity: Identity | Mapping[str, Any] | None) -> str:
    """
    Destination for a freshly accepted session.

    None means the session arrived as a bare token with no user attached.
    """
    if identity is None:
        return DEFAULT_PATH
    if not isinstance(identity, (Identity, Mapping)):
        return PROFILE_SETUP_PATH

    role = _role_of(identity)
    for candidate, path in HOME_BY_ROLE:
        if role is candidate:
            return path
    return PROFILE_SETUP_PATH


def login_path(required_roles: Iterable[Role] | None = None, current_path: str | None = None) -> str:
    """
    Login surface for a denied or signed-out user.

    Admin-only areas have their own login pages; otherwise the current
    path decides, falling back to the general login.
    """
    roles = set(required_roles or ())
    if roles and roles <= {Role.SUPER_ADMIN}:
        return SUPER_ADMIN_LOGIN_PATH
    if roles and roles <= {Role.INSTITUTE_ADMIN, Role.SUPER_ADMIN}:
        return INSTITUTE_ADMIN_LOGIN_PATH

    path = current_path or ""
    if path.startswith("/admin/super-admin"):
        return SUPER_ADMIN_LOGIN_PATH
    if path.startswith("/admin/institute-admin"):
        return INSTITUTE_ADMIN_LOGIN_PATH
    return LOGIN_PATH
