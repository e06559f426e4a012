"""
Transition events.

Every approval workflow publishes one event per state change. The
notification service, the audit trail and identity cache invalidation
subscribe by pattern, so the workflows never import them.

Event names:
    <workflow>.requested          a request was opened
    <workflow>.approved|rejected  a request reached its terminal state
    identity.invalidated          a user's role or institute changed
    notification.sent             an email went out for one of the above
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[list["Event"]]]

HISTORY_LIMIT = 10_000


@dataclass
class Event:
    event_type: str
    subject_id: str  # request, claim or user id
    payload: dict[str, Any] = field(default_factory=dict)
    actor_id: str | None = None

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str | None = None
    causation_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def caused_by(self, parent: Event) -> Event:
        """Copy of this event linked to `parent` for tracing."""
        return Event(
            event_type=self.event_type,
            subject_id=self.subject_id,
            payload=self.payload,
            actor_id=self.actor_id,
            correlation_id=parent.correlation_id or parent.id,
            causation_id=parent.id,
        )


@dataclass
class Subscription:
    pattern: str
    handler: EventHandler

    def matches(self, event: Event) -> bool:
        return fnmatch.fnmatch(event.event_type, self.pattern)


# =============================================================================
# Bus
# =============================================================================


class EventBus:
    """
    In-process pub/sub.

    Handlers run in the order they subscribed. A handler that raises is
    logged and skipped; the other handlers still run and the transition
    that published the event stands. Events a handler returns are
    published in turn, carrying the parent's correlation id.
    """

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._history: list[Event] = []

    def subscribe(self, pattern: str, handler: EventHandler) -> Subscription:
        """`pattern` is an fnmatch glob such as "association.*"."""
        subscription = Subscription(pattern=pattern, handler=handler)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _record(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > HISTORY_LIMIT:
            del self._history[:-HISTORY_LIMIT]

    async def _dispatch(self, event: Event) -> list[Event]:
        produced: list[Event] = []
        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            try:
                produced.extend(await subscription.handler(event) or [])
            except Exception:
                logger.exception(f"Error in event handler for {event.event_type}")
        return produced

    async def publish(self, event: Event) -> list[Event]:
        """Deliver `event` and return everything its handlers produced, transitively."""
        self._record(event)
        produced = await self._dispatch(event)

        cascaded: list[Event] = []
        for child in produced:
            cascaded.extend(await self.publish(child.caused_by(event)))
        return produced + cascaded

    async def publish_many(self, events: list[Event]) -> list[Event]:
        results: list[Event] = []
        for event in events:
            results.extend(await self.publish(event))
        return results

    def get_history(
        self,
        event_type: str | None = None,
        subject_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        results = self._history
        if event_type:
            results = [e for e in results if fnmatch.fnmatch(e.event_type, event_type)]
        if subject_id:
            results = [e for e in results if e.subject_id == subject_id]
        return results[-limit:]


# =============================================================================
# Constructors
# =============================================================================


def request_created(
    workflow: str,
    request_id: str,
    actor_id: str | None = None,
    **extra_payload,
) -> Event:
    return Event(
        event_type=f"{workflow}.requested",
        subject_id=request_id,
        actor_id=actor_id,
        payload={"request_id": request_id, "status": "PENDING", **extra_payload},
    )


def request_transitioned(
    workflow: str,
    status: str,
    request_id: str,
    actor_id: str | None = None,
    **extra_payload,
) -> Event:
    """E.g. ("verification", "APPROVED") becomes "verification.approved"."""
    return Event(
        event_type=f"{workflow}.{status.lower()}",
        subject_id=request_id,
        actor_id=actor_id,
        payload={"request_id": request_id, "status": status, **extra_payload},
    )


def identity_invalidated(user_id: str, reason: str, actor_id: str | None = None) -> Event:
    return Event(
        event_type="identity.invalidated",
        subject_id=user_id,
        actor_id=actor_id,
        payload={"user_id": user_id, "reason": reason},
    )
