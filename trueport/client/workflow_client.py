"""
Workflow client.

Calls the verification and association endpoints with the current
session, and after any transition that succeeds asks the reconciler to
refetch the identity (invalidate-and-refetch) instead of polling.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from trueport.client.reconciler import SessionReconciler
from trueport.client.session import SessionStore
from trueport.config import Settings, get_settings
from trueport.core.errors import ErrorCode
from trueport.core.models import ClaimKind, Role

logger = logging.getLogger(__name__)


class WorkflowClientError(Exception):
    """The backend refused a workflow call."""

    def __init__(self, code: ErrorCode | None, message: str, status_code: int):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class WorkflowClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        store: SessionStore,
        reconciler: SessionReconciler,
        settings: Settings | None = None,
    ):
        self.http = http
        self.store = store
        self.reconciler = reconciler
        self.settings = settings or get_settings()
        self.base_url = self.settings.api_base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        session = self.store.snapshot()
        if session and session.token:
            return {"Authorization": f"Bearer {session.token}"}
        return {}

    async def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self.http.request(
            method, f"{self.base_url}{path}", json=body, headers=self._headers()
        )
        if response.status_code >= 400:
            raise self._error(response)
        return response.json()

    @staticmethod
    def _error(response: httpx.Response) -> WorkflowClientError:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None

        if isinstance(detail, dict):
            try:
                code = ErrorCode(detail.get("code"))
            except ValueError:
                code = None
            return WorkflowClientError(code, detail.get("message", ""), response.status_code)
        return WorkflowClientError(None, str(detail or response.text), response.status_code)

    async def _transition(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = await self._call(method, path, body)
        if data.get("already_resolved"):
            # Nothing changed; nothing to refetch
            logger.info(f"{path}: request was already resolved")
            return data
        await self.reconciler.revalidate()
        return data

    # -------------------------------------------------------------------------
    # Content verification
    # -------------------------------------------------------------------------

    async def request_verification(self, kind: ClaimKind, claim_id: str, verifier_email: str) -> dict[str, Any]:
        return await self._call(
            "POST",
            f"/verify/request/{kind.value.lower()}/{claim_id}",
            {"verifierEmail": verifier_email},
        )

    async def get_verification(self, token: str) -> dict[str, Any]:
        return await self._call("GET", f"/verify/{token}")

    async def approve_verification(self, token: str) -> dict[str, Any]:
        return await self._transition("POST", f"/verify/{token}/approve")

    async def reject_verification(self, token: str, reason: str | None = None) -> dict[str, Any]:
        return await self._transition("POST", f"/verify/{token}/reject", {"reason": reason})

    # -------------------------------------------------------------------------
    # Institution association
    # -------------------------------------------------------------------------

    async def request_association(self, institute: str, requested_role: Role | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"institute": institute}
        if requested_role is not None:
            body["requestedRole"] = requested_role.value
        return await self._transition("POST", "/associations/request", body)

    async def my_association(self) -> dict[str, Any]:
        return await self._call("GET", "/associations/my-requests")

    async def pending_associations(self) -> list[dict[str, Any]]:
        data = await self._call("GET", "/associations/pending")
        return data["requests"]

    async def respond_association(self, request_id: str, action: str, response: str | None = None) -> dict[str, Any]:
        return await self._transition(
            "PUT",
            f"/associations/{request_id}/respond",
            {"action": action, "response": response},
        )
