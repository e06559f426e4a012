"""
End-to-end tests for the verification and association endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from trueport.api.app import create_app
from trueport.core.models import Claim, ClaimKind


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


def sign_up(client, email, role="STUDENT"):
    """Register and return bearer headers plus the user."""
    response = client.post(
        "/auth/register",
        json={"email": email, "password": "correct-horse", "name": email.split("@")[0], "role": role},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


def add_claim(client, owner_id, claim_id="E1", kind=ClaimKind.EXPERIENCE):
    claim = Claim(id=claim_id, kind=kind, owner_id=owner_id, title="Research intern")
    return client.portal.call(client.app.state.claims.add, claim)


@pytest.fixture
def people(client):
    """A student owning claim E1, and a verifier at Inst."""
    student_auth, student = sign_up(client, "student@inst.edu")
    verifier_auth, verifier = sign_up(client, "verifier@inst.edu", role="VERIFIER")
    add_claim(client, student["id"])
    return {
        "student": student_auth,
        "student_id": student["id"],
        "verifier": verifier_auth,
        "verifier_id": verifier["id"],
    }


def request_verification(client, auth, email="verifier@inst.edu", kind="experience", claim_id="E1"):
    return client.post(f"/verify/request/{kind}/{claim_id}", json={"verifierEmail": email}, headers=auth)


# =============================================================================
# Content verification
# =============================================================================


class TestVerificationEndpoints:
    def test_full_link_flow(self, client, people):
        response = request_verification(client, people["student"])
        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "PENDING"
        assert "token" not in body["request"]

        token = body["link"].rsplit("/", 1)[1]
        view = client.get(f"/verify/{token}").json()
        assert view["verification"]["subject_id"] == "E1"
        assert view["subject"]["title"] == "Research intern"

        approved = client.post(f"/verify/{token}/approve")
        assert approved.status_code == 200
        assert approved.json()["already_resolved"] is False
        assert approved.json()["verification"]["status"] == "APPROVED"

        claim = client.portal.call(client.app.state.claims.get, "E1")
        assert claim.verified is True

    def test_repeat_resolution_is_benign(self, client, people):
        token = request_verification(client, people["student"]).json()["link"].rsplit("/", 1)[1]
        client.post(f"/verify/{token}/approve")

        again = client.post(f"/verify/{token}/approve")
        reject = client.post(f"/verify/{token}/reject", json={"reason": "late"})

        for response in (again, reject):
            assert response.status_code == 200
            assert response.json()["already_resolved"] is True
            assert response.json()["code"] == "ALREADY_RESOLVED"
            assert response.json()["verification"]["status"] == "APPROVED"

    def test_not_owner(self, client, people):
        other_auth, _ = sign_up(client, "other@inst.edu")

        response = request_verification(client, other_auth)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "NOT_OWNER"

    def test_no_eligible_approver(self, client, people):
        response = request_verification(client, people["student"], email="student@inst.edu")

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NO_ELIGIBLE_APPROVER"

    def test_duplicate_request(self, client, people):
        request_verification(client, people["student"])

        response = request_verification(client, people["student"], email="manager@company.com")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "DUPLICATE_REQUEST"

    def test_unknown_kind_and_claim(self, client, people):
        assert request_verification(client, people["student"], kind="hobby").status_code == 404
        assert request_verification(client, people["student"], claim_id="nope").status_code == 404
        assert client.get("/verify/not-a-token").status_code == 404

    def test_requires_sign_in(self, client, people):
        client.cookies.clear()

        assert request_verification(client, {}).status_code == 401

    def test_signed_in_verifier_dashboard(self, client, people):
        request_verification(client, people["student"])

        pending = client.get("/verifier/requests", headers=people["verifier"]).json()
        assert [v["subject_id"] for v in pending["verifications"]] == ["E1"]
        request_id = pending["verifications"][0]["id"]

        response = client.post(
            f"/verifier/reject/{request_id}", json={"reason": "Wrong dates"}, headers=people["verifier"]
        )
        assert response.status_code == 200
        assert response.json()["verification"]["reason"] == "Wrong dates"
        assert client.get("/verifier/requests", headers=people["verifier"]).json()["verifications"] == []

    def test_other_verifier_is_forbidden(self, client, people):
        request_verification(client, people["student"])
        request_id = client.get("/verifier/requests", headers=people["verifier"]).json()["verifications"][0]["id"]
        other_auth, _ = sign_up(client, "v2@inst.edu", role="VERIFIER")

        response = client.post(f"/verifier/approve/{request_id}", headers=other_auth)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"


# =============================================================================
# Institution association
# =============================================================================


class TestAssociationEndpoints:
    def test_verifier_self_approves(self, client, people):
        response = client.post(
            "/associations/request",
            json={"institute": "Inst", "requestedRole": "VERIFIER"},
            headers=people["verifier"],
        )

        assert response.status_code == 200
        assert response.json()["status"] == "APPROVED"
        me = client.get("/users/me", headers=people["verifier"]).json()
        assert me["user"]["institute"] == "Inst"
        assert me["association"]["status"] == "APPROVED"

    def test_student_waits_for_verifier(self, client, people):
        client.post("/associations/request", json={"institute": "Inst"}, headers=people["verifier"])

        created = client.post("/associations/request", json={"institute": "Inst"}, headers=people["student"])
        assert created.json()["status"] == "PENDING"
        mine = client.get("/associations/my-requests", headers=people["student"]).json()
        assert mine["status"] == "PENDING"

        pending = client.get("/associations/pending", headers=people["verifier"]).json()["requests"]
        assert [r["student_id"] for r in pending] == [people["student_id"]]

        response = client.put(
            f"/associations/{pending[0]['id']}/respond",
            json={"action": "approve"},
            headers=people["verifier"],
        )
        assert response.status_code == 200
        assert response.json()["status"] == "APPROVED"

        me = client.get("/users/me", headers=people["student"]).json()
        assert me["user"]["institute"] == "Inst"
        assert me["association"]["status"] == "APPROVED"

        verifiers = client.get("/users/institute-verifiers", headers=people["student"]).json()
        assert [v["email"] for v in verifiers["verifiers"]] == ["verifier@inst.edu"]

        again = client.put(
            f"/associations/{pending[0]['id']}/respond",
            json={"action": "reject"},
            headers=people["verifier"],
        )
        assert again.json()["already_resolved"] is True

    def test_no_verifier_at_institute(self, client, people):
        response = client.post("/associations/request", json={"institute": "Nowhere"}, headers=people["student"])

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NO_ELIGIBLE_APPROVER"

    def test_invalid_action(self, client, people):
        response = client.put(
            "/associations/areq_x/respond", json={"action": "maybe"}, headers=people["verifier"]
        )

        assert response.status_code == 422

    def test_students_cannot_review(self, client, people):
        assert client.get("/associations/pending", headers=people["student"]).status_code == 403

    def test_no_request_yet(self, client, people):
        mine = client.get("/associations/my-requests", headers=people["student"]).json()

        assert mine == {"status": "NONE", "request": None}


class TestInstitutionDirectory:
    def test_lists_institutes_with_a_verifier(self, client, people):
        assert client.get("/users/institutions", headers=people["student"]).json() == {"institutions": []}

        client.post(
            "/associations/request",
            json={"institute": "Inst", "requestedRole": "VERIFIER"},
            headers=people["verifier"],
        )
        other_auth, _ = sign_up(client, "prof@college.edu", role="VERIFIER")
        client.post(
            "/associations/request",
            json={"institute": "College", "requestedRole": "VERIFIER"},
            headers=other_auth,
        )

        response = client.get("/users/institutions", headers=people["student"])

        assert response.status_code == 200
        assert response.json()["institutions"] == ["College", "Inst"]

    def test_student_institute_is_not_listed(self, client, people):
        client.post("/associations/request", json={"institute": "Inst"}, headers=people["verifier"])
        client.post("/associations/request", json={"institute": "Inst"}, headers=people["student"])
        pending = client.get("/associations/pending", headers=people["verifier"]).json()["requests"]
        client.put(
            f"/associations/{pending[0]['id']}/respond",
            json={"action": "approve"},
            headers=people["verifier"],
        )

        # Approved student and verifier share one institute, listed once
        assert client.get("/users/institutions", headers=people["student"]).json()["institutions"] == ["Inst"]

    def test_requires_sign_in(self, client):
        assert client.get("/users/institutions").status_code == 401
