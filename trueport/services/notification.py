"""
Notification Service.

Reacts to workflow events: emails the verifier their link when a
verification is requested, tells requesters how their request ended, and
writes every transition to the audit trail.
"""

from __future__ import annotations

import logging
from typing import Any

from trueport.auth.users import UserDirectory
from trueport.core.events import Event
from trueport.core.utils import generate_id, utc_now
from trueport.integrations.email import EmailService
from trueport.services.base import Service
from trueport.storage import Collections, MetadataStorage

logger = logging.getLogger(__name__)

# Payload keys that grant access and must not reach the audit trail
_SECRET_KEYS = {"link", "token"}


class NotificationService(Service):
    """Email and audit sink for workflow transitions. Write-only."""

    def __init__(self, metadata: MetadataStorage, users: UserDirectory, email: EmailService):
        self.metadata = metadata
        self.users = users
        self.email = email

    @property
    def service_id(self) -> str:
        return "notification"

    @property
    def subscribes_to(self) -> list[str]:
        return ["verification.*", "association.*"]

    async def handle(self, event: Event) -> list[Event]:
        await self._audit(event)

        if event.event_type == "verification.requested":
            sent = await self._send_verification_request(event)
        elif event.event_type in ("verification.approved", "verification.rejected"):
            sent = await self._send_verification_resolved(event)
        elif event.event_type in ("association.approved", "association.rejected"):
            sent = await self._send_association_resolved(event)
        else:
            return []

        if not sent:
            return []
        return [Event(
            event_type="notification.sent",
            subject_id=event.subject_id,
            payload={"channel": "email", "trigger": event.event_type},
        )]

    # =========================================================================
    # Audit
    # =========================================================================

    async def _audit(self, event: Event) -> None:
        entry = {
            "id": generate_id("audit"),
            "event_id": event.id,
            "event_type": event.event_type,
            "subject_id": event.subject_id,
            "actor_id": event.actor_id,
            "payload": {k: v for k, v in event.payload.items() if k not in _SECRET_KEYS},
            "recorded_at": utc_now().isoformat(),
        }
        await self.metadata.save(Collections.AUDIT, entry["id"], entry)

    async def get_audit_trail(self, subject_id: str) -> list[dict[str, Any]]:
        entries = await self.metadata.query(Collections.AUDIT, {"subject_id": subject_id}, limit=1000)
        return sorted(entries, key=lambda e: e["recorded_at"])

    # =========================================================================
    # Email
    # =========================================================================

    async def _send_verification_request(self, event: Event) -> bool:
        payload = event.payload
        return await self.email.send_verification_request(
            verifier_email=payload["verifier_email"],
            link=payload["link"],
            requester_name=payload.get("requester_name", ""),
            subject_type=payload.get("subject_type", "entry"),
            claim_title=payload.get("claim_title", ""),
        )

    async def _send_verification_resolved(self, event: Event) -> bool:
        payload = event.payload
        requester = await self.users.get_by_id(payload.get("requester_id", ""))
        if requester is None:
            return False
        return await self.email.send_verification_resolved(
            to=requester.email,
            subject_type=payload.get("subject_type", "entry"),
            approved=event.event_type == "verification.approved",
            verifier_email=payload.get("verifier_email", ""),
            reason=payload.get("reason"),
        )

    async def _send_association_resolved(self, event: Event) -> bool:
        payload = event.payload
        student_id = payload.get("student_id", "")
        # Self-approved verifiers don't need to be told what they just did
        if event.actor_id == student_id:
            return False
        student = await self.users.get_by_id(student_id)
        if student is None:
            return False
        return await self.email.send_association_resolved(
            to=student.email,
            institute=payload.get("institute", ""),
            approved=event.event_type == "association.approved",
            reason=payload.get("reason"),
        )
