"""
Base class for event-driven services.

Services subscribe to event patterns on the bus and may emit follow-up
events. Workflows never call them directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from trueport.core.events import Event, EventBus, Subscription


class Service(ABC):
    """
    Base class for all services.

    Example:
        class AuditService(Service):
            service_id = "audit"
            subscribes_to = ["verification.*"]

            async def handle(self, event: Event) -> list[Event]:
                await self.store(event)
                return []
    """

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this service."""
        pass

    @property
    @abstractmethod
    def subscribes_to(self) -> list[str]:
        """
        List of event patterns this service handles.

        Supports wildcards like "verification.*".
        """
        pass

    @abstractmethod
    async def handle(self, event: Event) -> list[Event]:
        """
        Handle an event and return any resulting events
        (can be empty if no follow-up events needed).
        """
        pass

    def register(self, bus: EventBus) -> list[Subscription]:
        """Subscribe `handle` to every pattern in `subscribes_to`."""
        return [bus.subscribe(pattern, self.handle) for pattern in self.subscribes_to]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.service_id})>"
