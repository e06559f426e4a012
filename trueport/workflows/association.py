"""
Institution Association Workflow.

A user asks to be linked to an institute. Verifiers are trusted to name
their own institute and are approved on the spot; students wait for a
verifier of that institute to approve or reject. Approval writes the
institute onto the user in the same commit.
"""

from __future__ import annotations

import logging
from typing import Any

from trueport.auth.users import UserDirectory
from trueport.core.events import EventBus
from trueport.core.models import AssociationRequest, Identity, RequestStatus, Role
from trueport.core.utils import utc_now
from trueport.storage import Collections, StorageProvider, Transaction
from trueport.workflows.engine import (
    Actor,
    ApprovalEngine,
    DuplicateRequestError,
    ForbiddenError,
    NoEligibleApproverError,
)

logger = logging.getLogger(__name__)

# Roles that join institutes through this workflow
REQUESTING_ROLES = {Role.STUDENT, Role.VERIFIER}


class AssociationWorkflow(ApprovalEngine[AssociationRequest]):
    workflow = "association"
    collection = Collections.ASSOCIATION_REQUESTS
    model = AssociationRequest

    def __init__(self, storage: StorageProvider, users: UserDirectory, event_bus: EventBus):
        super().__init__(storage, users, event_bus)

    # =========================================================================
    # Create
    # =========================================================================

    async def create(
        self,
        requester: Identity,
        institute: str,
        requested_role: Role | None = None,
    ) -> AssociationRequest:
        """
        Request association with `institute`.

        `requested_role` defaults to the requester's own role and may not
        differ from it.

        Raises:
            ForbiddenError: Role cannot request, or asks for a different role
            NoEligibleApproverError: Blank institute, or no verifier there yet
            DuplicateRequestError: Another request is still pending
        """
        role = requester.role
        if role not in REQUESTING_ROLES:
            raise ForbiddenError("Only students and verifiers can request an association")
        if requested_role is not None and requested_role is not role:
            raise ForbiddenError(f"Cannot request the {requested_role.value} role as {role.value}")

        institute = (institute or "").strip()
        if not institute:
            raise NoEligibleApproverError("Institute name is required")

        actor = Actor.signed_in(requester)
        self_approved = role is Role.VERIFIER

        if not self_approved:
            verifiers = [
                v for v in await self.users.list_verifiers(institute) if v.id != requester.id
            ]
            if not verifiers:
                raise NoEligibleApproverError(f"No verifiers are registered at {institute} yet")

        async with self.storage.metadata.transaction() as tx:
            open_requests = await self._query(
                {"student_id": requester.id, "status": RequestStatus.PENDING.value}
            )
            if open_requests:
                raise DuplicateRequestError("You already have a pending association request")

            request = AssociationRequest(
                student_id=requester.id,
                institute=institute,
                requested_role=role,
            )
            if self_approved:
                request.status = RequestStatus.APPROVED
                request.resolved_at = utc_now()
                request.responded_by = requester.id
                await self.apply_approval(tx, request, actor)

            await tx.save(self.collection, request.id, self._dump(request))

        logger.info(
            f"Association request {request.id} for {institute} created as {request.status.value}"
        )
        await self.publish_created(request, actor)
        if self_approved:
            await self.publish_transition(request, actor)
        return request

    # =========================================================================
    # Queries
    # =========================================================================

    async def current(self, user_id: str) -> tuple[RequestStatus, AssociationRequest | None]:
        """Latest request for a user; NONE when there has never been one."""
        history = await self.history(user_id)
        if not history:
            return RequestStatus.NONE, None
        return history[0].status, history[0]

    async def history(self, user_id: str) -> list[AssociationRequest]:
        return await self._query({"student_id": user_id})

    async def list_pending(self, actor: Actor) -> list[AssociationRequest]:
        """Pending requests for the caller's institute. Verifiers only."""
        identity = actor.identity
        if identity is None or identity.role is not Role.VERIFIER:
            raise ForbiddenError("Only verifiers can review association requests")
        if not identity.institute:
            return []
        pending = await self._query(
            {"institute": identity.institute, "status": RequestStatus.PENDING.value}
        )
        return [r for r in pending if r.student_id != identity.id]

    async def respond(
        self,
        request_id: str,
        actor: Actor,
        action: str,
        response: str | None = None,
    ) -> AssociationRequest:
        """Approve or reject; `action` is "approve" or "reject"."""
        action = (action or "").strip().lower()
        if action == "approve":
            return await self.approve(request_id, actor)
        if action == "reject":
            return await self.reject(request_id, actor, response)
        raise ValueError(f"Unknown action '{action}'; expected approve or reject")

    # =========================================================================
    # Engine hooks
    # =========================================================================

    def authorize(self, request: AssociationRequest, actor: Actor) -> None:
        identity = actor.identity
        if identity is None or identity.role is not Role.VERIFIER:
            raise ForbiddenError("Only verifiers can respond to association requests")
        if identity.institute != request.institute:
            raise ForbiddenError("This request is for a different institute")
        if identity.id == request.student_id:
            raise ForbiddenError("You cannot respond to your own request")

    async def apply_approval(
        self, tx: Transaction, request: AssociationRequest, actor: Actor
    ) -> None:
        await UserDirectory.set_institute(tx, request.student_id, request.institute)

    def record_resolution(
        self, request: AssociationRequest, actor: Actor, reason: str | None
    ) -> None:
        request.responded_by = actor.id
        if request.status is RequestStatus.REJECTED:
            request.rejection_reason = reason

    def event_payload(self, request: AssociationRequest) -> dict[str, Any]:
        return {
            "student_id": request.student_id,
            "institute": request.institute,
            "requested_role": request.requested_role.value,
            "reason": request.rejection_reason,
        }

    def invalidated_users(self, request: AssociationRequest) -> list[str]:
        return [request.student_id]
