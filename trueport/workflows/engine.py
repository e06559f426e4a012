"""
Request/Approval engine.

Both workflows (content verification, institution association) share one
state machine:

    NONE -> PENDING -> APPROVED
                    -> REJECTED

Terminal states absorb. A transition and its side effect on the subject
(claim verified, institute joined) are committed in one storage
transaction, so nobody ever reads an APPROVED request whose subject still
looks unapproved. Transitions are compare-and-set inside that transaction:
a second approve/reject sees the terminal status and raises
`AlreadyResolvedError` without touching anything.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from trueport.auth.users import UserDirectory
from trueport.core.errors import ErrorCode
from trueport.core.events import (
    Event,
    EventBus,
    identity_invalidated,
    request_created,
    request_transitioned,
)
from trueport.core.models import (
    AssociationRequest,
    Identity,
    RequestStatus,
    VerificationRequest,
)
from trueport.core.utils import utc_now
from trueport.storage import StorageProvider, Transaction

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", VerificationRequest, AssociationRequest)


# =============================================================================
# Errors
# =============================================================================


class WorkflowError(Exception):
    """Base class; every workflow failure carries an ErrorCode."""

    code: ErrorCode = ErrorCode.FORBIDDEN

    def __init__(self, message: str, request: Any = None):
        super().__init__(message)
        self.message = message
        self.request = request


class NotOwnerError(WorkflowError):
    code = ErrorCode.NOT_OWNER


class NoEligibleApproverError(WorkflowError):
    code = ErrorCode.NO_ELIGIBLE_APPROVER


class AlreadyResolvedError(WorkflowError):
    """The request (or claim) is already terminal. Callers treat this as a no-op."""
    code = ErrorCode.ALREADY_RESOLVED


class ForbiddenError(WorkflowError):
    code = ErrorCode.FORBIDDEN


class RequestNotFoundError(WorkflowError):
    code = ErrorCode.NOT_FOUND


class DuplicateRequestError(WorkflowError):
    code = ErrorCode.DUPLICATE_REQUEST


# =============================================================================
# Actor
# =============================================================================


@dataclass(frozen=True)
class Actor:
    """
    Whoever is trying to act on a request.

    Either a signed-in identity, or the bearer of a capability token from
    an emailed link (who may have no account at all).
    """

    identity: Identity | None = None
    capability_token: str | None = None

    @classmethod
    def signed_in(cls, identity: Identity) -> Actor:
        return cls(identity=identity)

    @classmethod
    def link_holder(cls, token: str) -> Actor:
        return cls(capability_token=token)

    @property
    def id(self) -> str:
        if self.identity is not None:
            return self.identity.id
        return "capability-link"


# =============================================================================
# Engine
# =============================================================================


class ApprovalEngine(ABC, Generic[RequestT]):
    """
    Generic approve/reject machinery. Subclasses supply `create`,
    authorization, the subject side effect, and pending-list scoping.
    """

    workflow: str
    collection: str
    model: type[RequestT]

    def __init__(self, storage: StorageProvider, users: UserDirectory, event_bus: EventBus):
        self.storage = storage
        self.users = users
        self.event_bus = event_bus

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def authorize(self, request: RequestT, actor: Actor) -> None:
        """Raise ForbiddenError unless actor may resolve this request."""

    @abstractmethod
    async def apply_approval(self, tx: Transaction, request: RequestT, actor: Actor) -> None:
        """Flip the subject. Runs inside the transaction that approves."""

    @abstractmethod
    async def list_pending(self, actor: Actor) -> list[RequestT]:
        """Pending requests this actor is allowed to resolve."""

    def record_resolution(self, request: RequestT, actor: Actor, reason: str | None) -> None:
        """Store reason/responder fields. Default: nothing extra."""

    def event_payload(self, request: RequestT) -> dict[str, Any]:
        return {}

    def invalidated_users(self, request: RequestT) -> list[str]:
        """Users whose identity projection changed with this transition."""
        return []

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _dump(self, request: RequestT) -> dict[str, Any]:
        return request.model_dump(mode="json")

    async def get(self, request_id: str) -> RequestT:
        data = await self.storage.metadata.get(self.collection, request_id)
        if data is None:
            raise RequestNotFoundError(f"No {self.workflow} request {request_id}")
        return self.model.model_validate(data)

    async def _load(self, tx: Transaction, request_id: str) -> RequestT:
        data = await tx.get(self.collection, request_id)
        if data is None:
            raise RequestNotFoundError(f"No {self.workflow} request {request_id}")
        return self.model.model_validate(data)

    async def _query(self, filters: dict[str, Any]) -> list[RequestT]:
        docs = await self.storage.metadata.query(self.collection, filters, limit=1000)
        requests = [self.model.model_validate(d) for d in docs]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def approve(self, request_id: str, actor: Actor) -> RequestT:
        """PENDING -> APPROVED, with the subject flipped in the same commit."""
        return await self._resolve(request_id, actor, RequestStatus.APPROVED, None)

    async def reject(self, request_id: str, actor: Actor, reason: str | None = None) -> RequestT:
        """PENDING -> REJECTED. The reason is kept for the requester to see."""
        return await self._resolve(request_id, actor, RequestStatus.REJECTED, reason)

    async def _resolve(
        self,
        request_id: str,
        actor: Actor,
        status: RequestStatus,
        reason: str | None,
    ) -> RequestT:
        async with self.storage.metadata.transaction() as tx:
            request = await self._load(tx, request_id)
            self.authorize(request, actor)

            if request.status is not RequestStatus.PENDING:
                raise AlreadyResolvedError(
                    f"{self.workflow} request {request.id} is already {request.status.value}",
                    request=request,
                )

            request.status = status
            request.resolved_at = utc_now()
            self.record_resolution(request, actor, reason)

            if status is RequestStatus.APPROVED:
                await self.apply_approval(tx, request, actor)

            await tx.save(self.collection, request.id, self._dump(request))

        logger.info(f"{self.workflow} request {request.id} {status.value} by {actor.id}")
        await self.publish_transition(request, actor)
        return request

    async def publish_created(self, request: RequestT, actor: Actor, **extra: Any) -> None:
        await self.event_bus.publish(
            request_created(
                self.workflow,
                request.id,
                actor_id=actor.id,
                **self.event_payload(request),
                **extra,
            )
        )

    async def publish_transition(self, request: RequestT, actor: Actor) -> None:
        """Announce the new state, then tell caches what went stale."""
        events: list[Event] = [
            request_transitioned(
                self.workflow,
                request.status.value,
                request.id,
                actor_id=actor.id,
                **self.event_payload(request),
            )
        ]
        if request.status is RequestStatus.APPROVED:
            events.extend(
                identity_invalidated(user_id, reason=f"{self.workflow}.approved", actor_id=actor.id)
                for user_id in self.invalidated_users(request)
            )
        await self.event_bus.publish_many(events)
