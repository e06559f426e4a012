"""
Tests for session tokens, the auth endpoints and the server-side guard.
"""

import pytest
from fastapi.testclient import TestClient

from trueport.api.app import create_app
from trueport.auth.jwt import (
    TokenInvalidError,
    TokenRevokedError,
    create_session_token,
    decode_token,
    hash_password,
    revoke_session_token,
    validate_session_token,
    verify_password,
)
from trueport.core.models import Identity, Role
from trueport.storage import create_local_storage


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client():
    """API client with fresh in-memory state."""
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture
def identity():
    return Identity(id="abc123", name="Ana", email="ana@inst.edu", role=Role.STUDENT)


def register(client, email, role="STUDENT", password="correct-horse"):
    response = client.post(
        "/auth/register",
        json={"email": email, "password": password, "name": email.split("@")[0], "role": role},
    )
    assert response.status_code == 200, response.text
    return response.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Tokens and passwords
# =============================================================================


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct-horse")

        assert verify_password("correct-horse", hashed) is True
        assert verify_password("wrong", hashed) is False
        assert verify_password("correct-horse", "not-a-hash") is False


class TestSessionTokens:
    def test_round_trip_claims(self, identity):
        payload = decode_token(create_session_token(identity))

        assert payload.sub == "abc123"
        assert payload.role == "STUDENT"
        assert payload.type == "session"
        assert payload.jti

    def test_tampered_token(self, identity):
        token = create_session_token(identity)

        with pytest.raises(TokenInvalidError):
            decode_token(token[:-4] + "AAAA")

    @pytest.mark.asyncio
    async def test_revoked_token_is_refused(self, identity):
        cache = create_local_storage().cache
        token = create_session_token(identity)

        assert (await validate_session_token(token, cache)).sub == "abc123"
        assert await revoke_session_token(token, cache) is True

        with pytest.raises(TokenRevokedError):
            await validate_session_token(token, cache)

    @pytest.mark.asyncio
    async def test_revoking_garbage_is_a_no_op(self):
        cache = create_local_storage().cache

        assert await revoke_session_token("garbage", cache) is False


# =============================================================================
# Endpoints
# =============================================================================


class TestRegisterAndLogin:
    def test_register_starts_a_session(self, client):
        body = register(client, "ana@inst.edu")

        assert body["token"]
        assert body["user"]["role"] == "STUDENT"
        assert body["user"]["institute"] is None
        assert "session" in client.cookies

    def test_admin_roles_cannot_be_self_assigned(self, client):
        response = client.post(
            "/auth/register",
            json={"email": "x@inst.edu", "password": "correct-horse", "name": "X", "role": "SUPER_ADMIN"},
        )

        assert response.status_code == 400

    def test_duplicate_email(self, client):
        register(client, "ana@inst.edu")
        response = client.post(
            "/auth/register",
            json={"email": "ANA@inst.edu", "password": "correct-horse", "name": "Ana"},
        )

        assert response.status_code == 400

    def test_login(self, client):
        register(client, "ana@inst.edu")

        ok = client.post("/auth/login", json={"email": "ana@inst.edu", "password": "correct-horse"})
        bad = client.post("/auth/login", json={"email": "ana@inst.edu", "password": "nope"})

        assert ok.status_code == 200
        assert ok.json()["user"]["email"] == "ana@inst.edu"
        assert bad.status_code == 401


class TestValidateAndLogout:
    def test_validate_with_cookie(self, client):
        register(client, "ana@inst.edu")

        body = client.post("/auth/validate").json()

        assert body["valid"] is True
        assert body["user"]["email"] == "ana@inst.edu"

    def test_validate_with_bearer(self, client):
        token = register(client, "ana@inst.edu")["token"]
        client.cookies.clear()

        assert client.post("/auth/validate", headers=bearer(token)).json()["valid"] is True

    def test_validate_without_session_is_not_an_error(self, client):
        response = client.post("/auth/validate")

        assert response.status_code == 200
        assert response.json() == {"valid": False, "user": None}

    def test_logout_revokes_every_form_of_the_token(self, client):
        token = register(client, "ana@inst.edu")["token"]

        assert client.post("/auth/logout", headers=bearer(token)).status_code == 200

        client.cookies.clear()
        assert client.post("/auth/validate", headers=bearer(token)).json()["valid"] is False
        cookie = {"Cookie": f"auth-token={token}"}
        assert client.post("/auth/validate", headers=cookie).json()["valid"] is False


class TestGuards:
    def test_me_requires_auth(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_me(self, client):
        token = register(client, "ana@inst.edu")["token"]

        response = client.get("/auth/me", headers=bearer(token))

        assert response.status_code == 200
        assert response.json()["email"] == "ana@inst.edu"

    def test_wrong_role_is_forbidden(self, client):
        token = register(client, "ana@inst.edu")["token"]

        assert client.get("/super-admin/me", headers=bearer(token)).status_code == 403
        assert client.get("/institute-admin/me", headers=bearer(token)).status_code == 403
        assert client.get("/verifier/requests", headers=bearer(token)).status_code == 403

    def test_anonymous_is_unauthorized(self, client):
        assert client.get("/super-admin/me").status_code == 401
        assert client.get("/associations/my-requests").status_code == 401

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
