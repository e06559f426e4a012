"""
Tests for popup auth messages and the origin allowlist.
"""

import pytest

from trueport.client import CookieAuth, TokenAuth
from trueport.client.messages import (
    GOOGLE_AUTH_ERROR,
    GOOGLE_AUTH_SUCCESS,
    AuthMessage,
    MessageChannel,
)
from trueport.core.models import Identity, Role

STUDENT = {"id": "abc123", "name": "Ana", "email": "ana@inst.edu", "role": "STUDENT"}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def channel():
    return MessageChannel("http://localhost:3000")


# =============================================================================
# Tests
# =============================================================================


class TestAuthMessage:
    def test_token_message(self):
        message = AuthMessage.parse({"type": GOOGLE_AUTH_SUCCESS, "token": "t", "user": STUDENT})

        result = message.as_result()
        assert isinstance(result, TokenAuth)
        assert result.identity.role == Role.STUDENT

    def test_cookie_message(self):
        message = AuthMessage.parse({"type": GOOGLE_AUTH_SUCCESS, "user": STUDENT, "cookieAuth": True})

        assert isinstance(message.as_result(), CookieAuth)

    def test_success_without_token_or_user_is_malformed(self):
        assert AuthMessage.parse({"type": GOOGLE_AUTH_SUCCESS}) is None
        assert AuthMessage.parse({"type": GOOGLE_AUTH_SUCCESS, "user": {"name": "no id"}}) is None

    def test_unknown_shapes(self):
        assert AuthMessage.parse("GOOGLE_AUTH_SUCCESS") is None
        assert AuthMessage.parse({"type": "SOMETHING_ELSE"}) is None

    def test_error_message(self):
        message = AuthMessage.parse({"type": GOOGLE_AUTH_ERROR})

        assert message.error == "AUTH_FAILED"
        assert message.as_result() is None

    def test_to_dict_keys(self):
        identity = Identity(id="abc123", role=Role.STUDENT)

        assert set(AuthMessage.success(TokenAuth("t", identity)).to_dict()) == {"type", "token", "user"}
        assert AuthMessage.success(CookieAuth(identity)).to_dict()["cookieAuth"] is True


class TestMessageChannel:
    def test_foreign_origin_is_dropped(self, channel):
        data = {"type": GOOGLE_AUTH_SUCCESS, "token": "evil", "user": STUDENT}

        assert channel.accept(data, "https://evil.example") is None
        assert channel.accept(data, "http://localhost:3001") is None
        assert channel.dropped == 2

    def test_trusted_origin_is_accepted(self, channel):
        data = {"type": GOOGLE_AUTH_SUCCESS, "token": "t", "user": STUDENT}

        assert channel.accept(data, "http://localhost:3000/").token == "t"
        assert channel.dropped == 0

    def test_malformed_payload_is_dropped(self, channel):
        assert channel.accept({"type": GOOGLE_AUTH_SUCCESS}, "http://localhost:3000") is None
        assert channel.dropped == 1
