# =============================================================================
# Workflow API Routes
# =============================================================================
#
# Content verification:
#   POST /verify/request/{type}/{id}    - Ask a verifier to verify a claim
#   GET  /verify/{token}                - What the verifier sees
#   POST /verify/{token}/approve        - Approve via emailed link
#   POST /verify/{token}/reject         - Reject via emailed link
#
# Signed-in verifiers:
#   GET  /verifier/requests             - Everything waiting on me
#   POST /verifier/approve/{id}         - Approve a verification request
#   POST /verifier/reject/{id}          - Reject a verification request
#
# Institution association:
#   POST /associations/request          - Ask to join an institute
#   GET  /associations/my-requests      - Status of my latest request
#   GET  /associations/pending          - Requests for my institute
#   PUT  /associations/{id}/respond     - Approve or reject
#
# Profile / admin:
#   GET  /users/me
#   PUT  /users/me                     - Edit own profile, pick a role once
#   GET  /users/institutions           - Institutes that have a verifier
#   GET  /users/institute-verifiers
#   GET  /super-admin/me
#   GET  /institute-admin/me
#
# =============================================================================

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from trueport.api.deps import (
    get_association_workflow,
    get_event_bus,
    get_users,
    get_verification_workflow,
)
from trueport.auth.context import AuthContext
from trueport.auth.capabilities import Capability
from trueport.auth.policies import require, require_auth, require_role
from trueport.auth.users import ProfileUpdate, ProfileUpdateError, UserDirectory
from trueport.config import get_settings
from trueport.core.errors import HTTP_STATUS, ErrorCode
from trueport.core.events import EventBus, identity_invalidated
from trueport.core.models import ClaimKind, Role, VerificationRequest
from trueport.workflows.association import AssociationWorkflow
from trueport.workflows.engine import Actor, AlreadyResolvedError, WorkflowError
from trueport.workflows.verification import VerificationWorkflow

logger = logging.getLogger(__name__)

verify_router = APIRouter(prefix="/verify", tags=["verification"])
verifier_router = APIRouter(prefix="/verifier", tags=["verification"])
association_router = APIRouter(prefix="/associations", tags=["associations"])
users_router = APIRouter(prefix="/users", tags=["users"])
admin_router = APIRouter(tags=["admin"])

routers = [verify_router, verifier_router, association_router, users_router, admin_router]


# =============================================================================
# Request Models
# =============================================================================

class VerificationRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verifier_email: str = Field(alias="verifierEmail")


class RejectBody(BaseModel):
    reason: str | None = None


class AssociationRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    institute: str
    requested_role: Role | None = Field(default=None, alias="requestedRole")


class RespondBody(BaseModel):
    action: Literal["approve", "reject"]
    response: str | None = None


# =============================================================================
# Helpers
# =============================================================================

def workflow_http_error(e: WorkflowError) -> HTTPException:
    logger.info(f"Workflow refused with {e.code.value}: {e.message}")
    return HTTPException(
        status_code=HTTP_STATUS.get(e.code, 400),
        detail={"code": e.code.value, "message": e.message},
    )


def _serialize(request: Any) -> dict[str, Any] | None:
    if request is None:
        return None
    if isinstance(request, VerificationRequest):
        return request.public_view()
    return request.model_dump(mode="json")


def _already_resolved(e: AlreadyResolvedError, key: str) -> dict[str, Any]:
    """Benign answer for a repeated approve/reject."""
    return {
        "already_resolved": True,
        "code": ErrorCode.ALREADY_RESOLVED.value,
        "message": e.message,
        key: _serialize(e.request),
    }


def _parse_kind(value: str) -> ClaimKind:
    try:
        return ClaimKind.parse(value)
    except ValueError:
        raise HTTPException(
            status_code=404,
            detail={"code": ErrorCode.NOT_FOUND.value, "message": f"Unknown entry type '{value}'"},
        )


# =============================================================================
# Content Verification
# =============================================================================

@verify_router.post("/request/{kind}/{claim_id}")
async def request_verification(
    kind: str,
    claim_id: str,
    data: VerificationRequestBody,
    ctx: AuthContext = Depends(require(Capability.CLAIM_REQUEST_VERIFICATION)),
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    """
    Send a claim to a verifier.

    The verification link is returned only outside production; in
    production it only goes out by email.
    """
    try:
        request = await workflow.create(ctx.identity, _parse_kind(kind), claim_id, data.verifier_email)
    except WorkflowError as e:
        raise workflow_http_error(e)

    body: dict[str, Any] = {"message": "Verification request sent", "request": request.public_view()}
    if not get_settings().is_production:
        body["link"] = workflow.link_for(request)
    return body


@verify_router.get("/{token}")
async def get_verification(
    token: str,
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    """Public: anyone holding the link may look at the request."""
    try:
        request, claim = await workflow.get_with_subject(token)
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {
        "verification": request.public_view(),
        "subject": claim.model_dump(mode="json") if claim else None,
    }


@verify_router.post("/{token}/approve")
async def approve_by_link(
    token: str,
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    try:
        request = await workflow.approve_by_token(token)
    except AlreadyResolvedError as e:
        return _already_resolved(e, "verification")
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"message": "Verification approved", "already_resolved": False, "verification": request.public_view()}


@verify_router.post("/{token}/reject")
async def reject_by_link(
    token: str,
    data: RejectBody | None = None,
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    reason = data.reason if data else None
    try:
        request = await workflow.reject_by_token(token, reason)
    except AlreadyResolvedError as e:
        return _already_resolved(e, "verification")
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"message": "Verification rejected", "already_resolved": False, "verification": request.public_view()}


# =============================================================================
# Signed-in Verifier
# =============================================================================

@verifier_router.get("/requests")
async def verifier_requests(
    ctx: AuthContext = Depends(require_role(Role.VERIFIER)),
    verification: VerificationWorkflow = Depends(get_verification_workflow),
    association: AssociationWorkflow = Depends(get_association_workflow),
):
    """Pending verification and association requests for this verifier, newest first."""
    actor = Actor.signed_in(ctx.identity)
    try:
        verifications = await verification.list_pending(actor)
        associations = await association.list_pending(actor)
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {
        "verifications": [r.public_view() for r in verifications],
        "associations": [r.model_dump(mode="json") for r in associations],
    }


@verifier_router.post("/approve/{request_id}")
async def verifier_approve(
    request_id: str,
    ctx: AuthContext = Depends(require_role(Role.VERIFIER)),
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    try:
        request = await workflow.approve(request_id, Actor.signed_in(ctx.identity))
    except AlreadyResolvedError as e:
        return _already_resolved(e, "verification")
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"message": "Verification approved", "already_resolved": False, "verification": request.public_view()}


@verifier_router.post("/reject/{request_id}")
async def verifier_reject(
    request_id: str,
    data: RejectBody | None = None,
    ctx: AuthContext = Depends(require_role(Role.VERIFIER)),
    workflow: VerificationWorkflow = Depends(get_verification_workflow),
):
    reason = data.reason if data else None
    try:
        request = await workflow.reject(request_id, Actor.signed_in(ctx.identity), reason)
    except AlreadyResolvedError as e:
        return _already_resolved(e, "verification")
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"message": "Verification rejected", "already_resolved": False, "verification": request.public_view()}


# =============================================================================
# Institution Association
# =============================================================================

@association_router.post("/request")
async def request_association(
    data: AssociationRequestBody,
    ctx: AuthContext = Depends(require_auth()),
    workflow: AssociationWorkflow = Depends(get_association_workflow),
):
    """Verifiers are approved immediately; students wait for a verifier."""
    try:
        request = await workflow.create(ctx.identity, data.institute, data.requested_role)
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"status": request.status.value, "request": request.model_dump(mode="json")}


@association_router.get("/my-requests")
async def my_association_requests(
    ctx: AuthContext = Depends(require_auth()),
    workflow: AssociationWorkflow = Depends(get_association_workflow),
):
    status, request = await workflow.current(ctx.user_id)
    return {"status": status.value, "request": _serialize(request)}


@association_router.get("/pending")
async def pending_associations(
    ctx: AuthContext = Depends(require_role(Role.VERIFIER)),
    workflow: AssociationWorkflow = Depends(get_association_workflow),
):
    try:
        pending = await workflow.list_pending(Actor.signed_in(ctx.identity))
    except WorkflowError as e:
        raise workflow_http_error(e)
    return {"requests": [r.model_dump(mode="json") for r in pending]}


@association_router.put("/{request_id}/respond")
async def respond_association(
    request_id: str,
    data: RespondBody,
    ctx: AuthContext = Depends(require_role(Role.VERIFIER)),
    workflow: AssociationWorkflow = Depends(get_association_workflow),
):
    try:
        request = await workflow.respond(request_id, Actor.signed_in(ctx.identity), data.action, data.response)
    except AlreadyResolvedError as e:
        return _already_resolved(e, "request")
    except WorkflowError as e:
        raise workflow_http_error(e)

    return {"status": request.status.value, "already_resolved": False, "request": request.model_dump(mode="json")}


# =============================================================================
# Users
# =============================================================================

@users_router.get("/me")
async def users_me(
    ctx: AuthContext = Depends(require_auth()),
    association: AssociationWorkflow = Depends(get_association_workflow),
):
    """The caller's identity plus where their institute association stands."""
    status, request = await association.current(ctx.user_id)
    return {
        "user": ctx.identity.model_dump(mode="json"),
        "association": {"status": status.value, "request": _serialize(request)},
    }


@users_router.put("/me")
async def update_users_me(
    data: ProfileUpdate,
    ctx: AuthContext = Depends(require_auth()),
    users: UserDirectory = Depends(get_users),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Edit the caller's own profile.

    A user who signed in with Google has no role yet and picks one here,
    once. Changing an existing role or the institute is FORBIDDEN.
    """
    try:
        user = await users.update_profile(ctx.user_id, data)
    except ProfileUpdateError as e:
        raise HTTPException(
            status_code=403,
            detail={"code": ErrorCode.FORBIDDEN.value, "message": str(e)},
        )
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": ErrorCode.NOT_FOUND.value, "message": "User not found"},
        )

    if user.role is not ctx.role:
        await bus.publish(identity_invalidated(user.id, "profile.role_set", actor_id=user.id))
    return {"user": user.to_profile()}


@users_router.get("/institutions")
async def institutions(
    ctx: AuthContext = Depends(require_auth()),
    users: UserDirectory = Depends(get_users),
):
    """Institutes a student can ask to join: those with at least one verifier."""
    return {"institutions": await users.list_institutions()}


@users_router.get("/institute-verifiers")
async def institute_verifiers(
    institute: str | None = None,
    ctx: AuthContext = Depends(require(Capability.VERIFIER_DIRECTORY)),
    users: UserDirectory = Depends(get_users),
):
    """Verifiers at an institute (the caller's own by default)."""
    institute = institute or ctx.institute
    if not institute:
        return {"institute": None, "verifiers": []}

    verifiers = await users.list_verifiers(institute)
    return {
        "institute": institute,
        "verifiers": [
            {"id": v.id, "name": v.name, "email": v.email}
            for v in verifiers
            if v.id != ctx.user_id
        ],
    }


# =============================================================================
# Admin
# =============================================================================

@admin_router.get("/super-admin/me")
async def super_admin_me(ctx: AuthContext = Depends(require_role(Role.SUPER_ADMIN))):
    return {"user": ctx.identity.model_dump(mode="json")}


@admin_router.get("/institute-admin/me")
async def institute_admin_me(ctx: AuthContext = Depends(require_role(Role.INSTITUTE_ADMIN))):
    return {"user": ctx.identity.model_dump(mode="json")}
