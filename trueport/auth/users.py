"""
User directory - the backend-authoritative source of identities.

Identities are created here on first successful authentication (password
registration or OAuth find-or-create). Other modules only ever see the
`Identity` projection, or the profile view the user edits on their own.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from trueport.auth.jwt import hash_password, verify_password
from trueport.core.models import Identity, Role
from trueport.core.utils import generate_id, normalize_email, utc_now
from trueport.storage import Collections, MetadataStorage, Transaction

logger = logging.getLogger(__name__)

# Roles a person may pick for themselves, at registration or profile setup
SELF_SERVICE_ROLES = {Role.STUDENT, Role.VERIFIER}


# =============================================================================
# Models
# =============================================================================


class UserCreate(BaseModel):
    """Body of POST /auth/register."""
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=100)
    role: Role = Role.STUDENT
    institute: str | None = None


class UserInDB(BaseModel):
    """Stored user record. Only `to_identity()` and `to_profile()` leave this module."""
    id: str
    email: str
    name: str
    password_hash: str = ""
    role: Role | None = None
    institute: str | None = None
    email_verified: bool = False
    created_at: datetime
    updated_at: datetime

    # Profile page fields
    bio: str | None = None
    github_username: str | None = None

    # OAuth links
    google_id: str | None = None

    def to_identity(self) -> Identity:
        return Identity(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            institute=self.institute,
        )

    def to_profile(self) -> dict:
        return {
            **self.to_identity().model_dump(mode="json"),
            "bio": self.bio,
            "github_username": self.github_username,
        }


class ProfileUpdate(BaseModel):
    """
    Body of PUT /users/me.

    `role` may be set once, by a user who has none yet. `institute` is
    accepted only when it repeats the current value; joining an institute
    goes through an association request.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    bio: str | None = Field(default=None, max_length=2000)
    github_username: str | None = Field(default=None, alias="githubUsername", max_length=100)
    role: Role | None = None
    institute: str | None = None


class UserExistsError(ValueError):
    """The email is taken by another account."""
    pass


class ProfileUpdateError(ValueError):
    """The update touches something a user may not change about themselves."""
    pass


# =============================================================================
# Directory
# =============================================================================


class UserDirectory:
    """Storage-backed user lookups and the few writes identities get."""

    def __init__(self, metadata: MetadataStorage):
        self.metadata = metadata

    async def _save(self, user: UserInDB) -> None:
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))

    async def create_user(self, data: UserCreate) -> UserInDB:
        """Register an email/password account with the chosen role."""
        email = normalize_email(data.email)
        if await self.get_by_email(email):
            raise UserExistsError("Email already registered")

        now = utc_now()
        user = UserInDB(
            id=generate_id("user"),
            email=email,
            name=data.name,
            password_hash=hash_password(data.password),
            role=data.role,
            # Institutes are joined through an association request, never here
            institute=None,
            created_at=now,
            updated_at=now,
        )
        await self._save(user)
        logger.info(f"Registered user {user.id} as {user.role.value if user.role else 'unset'}")
        return user

    async def add(self, user: UserInDB) -> UserInDB:
        """Insert a fully-formed user record (seeding, admin tooling)."""
        await self._save(user)
        return user

    async def get_by_id(self, user_id: str) -> UserInDB | None:
        data = await self.metadata.get(Collections.USERS, user_id)
        return UserInDB.model_validate(data) if data else None

    async def get_by_email(self, email: str) -> UserInDB | None:
        matches = await self.metadata.query(
            Collections.USERS, {"email": normalize_email(email)}, limit=1
        )
        return UserInDB.model_validate(matches[0]) if matches else None

    async def get_identity(self, user_id: str) -> Identity | None:
        user = await self.get_by_id(user_id)
        return user.to_identity() if user else None

    async def authenticate(self, email: str, password: str) -> UserInDB | None:
        """The user if `password` matches, else None."""
        user = await self.get_by_email(email)
        if not user or not user.password_hash:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    async def find_or_create_oauth_user(
        self,
        provider: str,
        provider_user_id: str,
        email: str,
        name: str,
        email_verified: bool = True,
    ) -> UserInDB:
        """
        Sign-in by provider. An existing account with the same email gets the
        Google id linked onto it. A new account starts with no role, which
        sends the user to profile setup.
        """
        existing = await self.get_by_email(email)

        if existing:
            if provider == "google" and not existing.google_id:
                existing.google_id = provider_user_id
                existing.updated_at = utc_now()
                await self._save(existing)
            return existing

        now = utc_now()
        user = UserInDB(
            id=generate_id("user"),
            email=normalize_email(email),
            name=name,
            email_verified=email_verified,
            google_id=provider_user_id if provider == "google" else None,
            created_at=now,
            updated_at=now,
        )
        await self._save(user)
        logger.info(f"Created user {user.id} from {provider} sign-in")
        return user

    async def list_verifiers(self, institute: str) -> list[UserInDB]:
        """Verifiers already associated with an institute."""
        docs = await self.metadata.query(
            Collections.USERS,
            {"role": Role.VERIFIER.value, "institute": institute},
            limit=1000,
        )
        return [UserInDB.model_validate(d) for d in docs]

    async def list_institutions(self) -> list[str]:
        """Institutes that have at least one verifier, so a student can be approved there."""
        docs = await self.metadata.query(
            Collections.USERS, {"role": Role.VERIFIER.value}, limit=10_000
        )
        return sorted({d["institute"] for d in docs if d.get("institute")})

    async def update_profile(self, user_id: str, data: ProfileUpdate) -> UserInDB | None:
        """
        Apply a user's edit to their own profile. None if the user is gone.

        Raises:
            ProfileUpdateError: a role is already set, the role is not
                self-service, or the institute differs from the current one
        """
        async with self.metadata.transaction() as tx:
            current = await tx.get(Collections.USERS, user_id)
            if current is None:
                return None
            user = UserInDB.model_validate(current)

            changes: dict[str, Any] = {}
            if data.role is not None and data.role is not user.role:
                if user.role is not None:
                    raise ProfileUpdateError("Role is already set")
                if data.role not in SELF_SERVICE_ROLES:
                    raise ProfileUpdateError(f"Role {data.role.value} cannot be self-assigned")
                changes["role"] = data.role.value

            if data.institute is not None and data.institute.strip() != (user.institute or ""):
                raise ProfileUpdateError("Institutes are joined through an association request")

            if data.name is not None and data.name.strip():
                changes["name"] = data.name.strip()
            if data.bio is not None:
                changes["bio"] = data.bio
            if data.github_username is not None:
                changes["github_username"] = data.github_username.strip() or None

            if changes:
                changes["updated_at"] = utc_now().isoformat()
                await tx.update(Collections.USERS, user_id, changes)

        if "role" in changes:
            logger.info(f"User {user_id} chose role {changes['role']}")
        return UserInDB.model_validate({**current, **changes})

    @staticmethod
    async def set_institute(tx: Transaction, user_id: str, institute: str) -> bool:
        """Record an approved association. Runs inside the caller's transaction."""
        return await tx.update(
            Collections.USERS,
            user_id,
            {"institute": institute, "updated_at": utc_now().isoformat()},
        )
