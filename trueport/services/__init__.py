"""
Event-driven services.

- base: the Service contract (subscribe to patterns, handle events)
- notification: verifier emails, outcome emails, audit trail
"""

from trueport.services.base import Service
from trueport.services.notification import NotificationService

__all__ = ["Service", "NotificationService"]
