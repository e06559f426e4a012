"""
Authentication and authorization.

Design principles:
1. One session token, three transports (bearer, HTTP-only cookie, client cookie)
2. Role-based guards with capability checks underneath
3. Route handlers receive an immutable AuthContext snapshot

The routers live in `trueport.auth.routes` and are mounted by the app.
"""

from trueport.auth.context import AuthContext
from trueport.auth.policies import (
    Policy,
    get_auth_context,
    require,
    require_auth,
    require_role,
)
from trueport.auth.capabilities import Capability
from trueport.auth.jwt import (
    TokenError,
    create_session_token,
    decode_token,
    hash_password,
    verify_password,
)
from trueport.auth.users import UserCreate, UserDirectory, UserInDB

__all__ = [
    # Main interface
    "require",
    "require_auth",
    "require_role",
    "AuthContext",
    "get_auth_context",
    # Types
    "Policy",
    "Capability",
    # Sessions
    "TokenError",
    "create_session_token",
    "decode_token",
    "hash_password",
    "verify_password",
    # Users
    "UserCreate",
    "UserDirectory",
    "UserInDB",
]
