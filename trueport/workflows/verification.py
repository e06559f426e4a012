"""
Content Verification Workflow.

A claim owner names a verifier by email. The verifier gets a link carrying
an unguessable token and can approve or reject without an account; a
signed-in VERIFIER whose email matches can do the same from the dashboard.
Approval marks the claim verified in the same commit.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any

from pydantic import EmailStr, TypeAdapter, ValidationError

from trueport.auth.users import UserDirectory
from trueport.config import Settings, get_settings
from trueport.core.events import EventBus
from trueport.core.models import (
    Claim,
    ClaimKind,
    Identity,
    RequestStatus,
    Role,
    VerificationRequest,
)
from trueport.core.utils import normalize_email
from trueport.storage import Collections, StorageProvider, Transaction
from trueport.workflows.claims import ClaimStore
from trueport.workflows.engine import (
    Actor,
    AlreadyResolvedError,
    ApprovalEngine,
    DuplicateRequestError,
    ForbiddenError,
    NoEligibleApproverError,
    NotOwnerError,
    RequestNotFoundError,
)

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


class VerificationWorkflow(ApprovalEngine[VerificationRequest]):
    workflow = "verification"
    collection = Collections.VERIFICATION_REQUESTS
    model = VerificationRequest

    def __init__(
        self,
        storage: StorageProvider,
        users: UserDirectory,
        event_bus: EventBus,
        claims: ClaimStore | None = None,
        settings: Settings | None = None,
    ):
        super().__init__(storage, users, event_bus)
        self.claims = claims or ClaimStore(storage.metadata)
        self.settings = settings or get_settings()

    def link_for(self, request: VerificationRequest) -> str:
        """The URL the verifier opens."""
        return f"{self.settings.frontend_origin}/verify/{request.token}"

    # =========================================================================
    # Create
    # =========================================================================

    async def _check_approver(self, requester: Identity, verifier_email: str) -> str:
        try:
            _email_adapter.validate_python(verifier_email)
        except ValidationError:
            raise NoEligibleApproverError(f"'{verifier_email}' is not a valid email address")

        email = normalize_email(verifier_email)
        if email == normalize_email(requester.email):
            raise NoEligibleApproverError("You cannot verify your own claim")

        # Unregistered addresses are fine; the link works without an account
        existing = await self.users.get_by_email(email)
        if existing is not None and existing.role is not Role.VERIFIER:
            raise NoEligibleApproverError(f"{email} is not registered as a verifier")

        return email

    async def create(
        self,
        requester: Identity,
        kind: ClaimKind,
        claim_id: str,
        verifier_email: str,
    ) -> VerificationRequest:
        """
        Ask `verifier_email` to verify one of the requester's claims.

        Raises:
            RequestNotFoundError: No claim of that kind with that id
            NotOwnerError: The claim belongs to someone else
            NoEligibleApproverError: The email cannot act as a verifier
            AlreadyResolvedError: The claim is already verified
            DuplicateRequestError: A different verifier already has it pending
        """
        claim = await self.claims.get(claim_id)
        if claim is None or claim.kind is not kind:
            raise RequestNotFoundError(f"No {kind.value.lower()} {claim_id}")
        if claim.owner_id != requester.id:
            raise NotOwnerError("You can only request verification for your own entries")

        email = await self._check_approver(requester, verifier_email)
        actor = Actor.signed_in(requester)

        async with self.storage.metadata.transaction() as tx:
            # Re-read under the lock; an approval may have just landed
            claim = await ClaimStore.load(tx, claim_id)
            if claim is None:
                raise RequestNotFoundError(f"No {kind.value.lower()} {claim_id}")
            if claim.verified:
                raise AlreadyResolvedError(f"{claim_id} is already verified")

            pending = await self._query(
                {"subject_id": claim_id, "status": RequestStatus.PENDING.value}
            )
            if pending:
                if pending[0].verifier_email == email:
                    logger.info(f"Verification for {claim_id} already pending with the same verifier")
                    return pending[0]
                raise DuplicateRequestError(f"{claim_id} already has a pending verification request")

            request = VerificationRequest(
                subject_type=kind,
                subject_id=claim_id,
                requester_id=requester.id,
                verifier_email=email,
            )
            await tx.save(self.collection, request.id, self._dump(request))

        logger.info(f"Verification request {request.id} created for {kind.value} {claim_id}")
        await self.publish_created(
            request,
            actor,
            link=self.link_for(request),
            requester_name=requester.name,
            claim_title=claim.title,
        )
        return request

    # =========================================================================
    # Token access
    # =========================================================================

    async def get_by_token(self, token: str) -> VerificationRequest:
        if not token:
            raise RequestNotFoundError("Invalid verification link")
        docs = await self.storage.metadata.query(self.collection, {"token": token}, limit=1)
        if not docs:
            raise RequestNotFoundError("Invalid verification link")
        return VerificationRequest.model_validate(docs[0])

    async def get_with_subject(self, token: str) -> tuple[VerificationRequest, Claim | None]:
        """What the verification page shows: the request and the claim it covers."""
        request = await self.get_by_token(token)
        return request, await self.claims.get(request.subject_id)

    async def approve_by_token(self, token: str) -> VerificationRequest:
        request = await self.get_by_token(token)
        return await self.approve(request.id, Actor.link_holder(token))

    async def reject_by_token(self, token: str, reason: str | None = None) -> VerificationRequest:
        request = await self.get_by_token(token)
        return await self.reject(request.id, Actor.link_holder(token), reason)

    # =========================================================================
    # Engine hooks
    # =========================================================================

    def authorize(self, request: VerificationRequest, actor: Actor) -> None:
        if actor.capability_token is not None:
            if hmac.compare_digest(actor.capability_token, request.token):
                return
            raise ForbiddenError("Verification link does not match this request")

        identity = actor.identity
        if (
            identity is not None
            and identity.role is Role.VERIFIER
            and normalize_email(identity.email) == request.verifier_email
        ):
            return
        raise ForbiddenError("This request is addressed to a different verifier")

    async def apply_approval(
        self, tx: Transaction, request: VerificationRequest, actor: Actor
    ) -> None:
        flipped = await ClaimStore.mark_verified(
            tx, request.subject_id, request.verifier_email, request.resolved_at
        )
        if not flipped:
            # Claim deleted while the request was open; nothing to approve
            raise RequestNotFoundError(f"Claim {request.subject_id} no longer exists")

    def record_resolution(
        self, request: VerificationRequest, actor: Actor, reason: str | None
    ) -> None:
        if request.status is RequestStatus.REJECTED:
            request.reason = reason

    def event_payload(self, request: VerificationRequest) -> dict[str, Any]:
        return {
            "subject_type": request.subject_type.value,
            "subject_id": request.subject_id,
            "requester_id": request.requester_id,
            "verifier_email": request.verifier_email,
            "reason": request.reason,
        }

    async def list_pending(self, actor: Actor) -> list[VerificationRequest]:
        """Pending requests addressed to the signed-in caller's email."""
        if actor.identity is None or not actor.identity.email:
            return []
        return await self._query(
            {
                "verifier_email": normalize_email(actor.identity.email),
                "status": RequestStatus.PENDING.value,
            }
        )

    async def list_for_requester(self, requester_id: str) -> list[VerificationRequest]:
        return await self._query({"requester_id": requester_id})
