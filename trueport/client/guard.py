"""
Access Guard (client side).

Decides whether protected content may render. Starts in LOADING and
renders nothing until it has decided; on DENIED it sends the user to the
login page that fits the area they tried to enter.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, TypeVar

from trueport.client.ports import Window
from trueport.client.reconciler import SessionReconciler
from trueport.client.router import login_path
from trueport.client.session import Session, SessionStore
from trueport.core.models import Role

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuardStatus(str, Enum):
    LOADING = "LOADING"
    OK = "OK"
    DENIED = "DENIED"


class AccessGuard:
    def __init__(
        self,
        reconciler: SessionReconciler,
        store: SessionStore,
        window: Window,
        required_roles: Iterable[Role] | None = None,
    ):
        self.reconciler = reconciler
        self.store = store
        self.window = window
        self.required_roles = frozenset(required_roles) if required_roles else None
        self.status = GuardStatus.LOADING
        self._mounted = True

    def _allows(self, session: Session | None) -> bool:
        if session is None or not session.is_authenticated:
            return False
        if self.required_roles is None:
            return True
        return session.identity is not None and session.identity.role in self.required_roles

    async def check(self) -> GuardStatus:
        """
        Decide OK or DENIED.

        Uses the cached session when it already answers the question;
        otherwise asks the backend once before denying.
        """
        session = self.store.snapshot()
        needs_identity = (
            self.required_roles is not None and session is not None and session.identity is None
        )
        if session is None or not session.is_authenticated or needs_identity:
            session = await self.reconciler.revalidate()

        if not self._mounted:
            # Navigated away while the check was in flight
            return self.status

        if self._allows(session):
            self.status = GuardStatus.OK
            return self.status

        self.status = GuardStatus.DENIED
        destination = login_path(self.required_roles, current_path=self.window.path)
        logger.info(f"Access denied to {self.window.path}; redirecting to {destination}")
        self.window.navigate(destination)
        return self.status

    def unmount(self) -> None:
        self._mounted = False

    def render(self, content: T) -> T | None:
        """Protected content, only once the guard said OK."""
        return content if self.status is GuardStatus.OK else None
