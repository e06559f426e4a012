"""
Claim storage.

Claims are plain records the user edits elsewhere; the only write this
module cares about is the verification flip, which happens inside the
transaction that approves the request.
"""

from __future__ import annotations

from datetime import datetime

from trueport.core.models import Claim, ClaimKind
from trueport.storage import Collections, MetadataStorage, Transaction


class ClaimStore:
    def __init__(self, metadata: MetadataStorage):
        self.metadata = metadata

    async def add(self, claim: Claim) -> Claim:
        await self.metadata.save(Collections.CLAIMS, claim.id, claim.model_dump(mode="json"))
        return claim

    async def get(self, claim_id: str) -> Claim | None:
        data = await self.metadata.get(Collections.CLAIMS, claim_id)
        return Claim.model_validate(data) if data else None

    async def list_for_owner(self, owner_id: str, kind: ClaimKind | None = None) -> list[Claim]:
        filters = {"owner_id": owner_id}
        if kind is not None:
            filters["kind"] = kind.value
        docs = await self.metadata.query(Collections.CLAIMS, filters, limit=1000)
        return [Claim.model_validate(d) for d in docs]

    @staticmethod
    async def load(tx: Transaction, claim_id: str) -> Claim | None:
        data = await tx.get(Collections.CLAIMS, claim_id)
        return Claim.model_validate(data) if data else None

    @staticmethod
    async def mark_verified(
        tx: Transaction,
        claim_id: str,
        verifier_email: str,
        verified_at: datetime,
    ) -> bool:
        return await tx.update(
            Collections.CLAIMS,
            claim_id,
            {
                "verified": True,
                "verified_at": verified_at.isoformat(),
                "verifier_email": verifier_email,
            },
        )
