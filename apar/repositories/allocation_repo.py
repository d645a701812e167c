"""
AllocationRepository - append-only audit trail of applications.

There is deliberately no update or delete: applied amounts on invoices and
sources can always be rebuilt by summing this log.
"""

from typing import List, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase

from apar.models.allocation import Allocation


class AllocationRepository:
    """Allocation log store."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["allocations"]

    async def insert_allocations(self, allocations: Sequence[Allocation], session=None) -> List[Allocation]:
        if not allocations:
            return []
        await self.collection.insert_many([a.to_document() for a in allocations], session=session)
        return list(allocations)

    async def list_allocations_for(self, entity_id: str, session=None) -> List[Allocation]:
        """Allocations where the entity is the source or the target invoice."""
        cursor = self.collection.find(
            {"$or": [{"source_id": entity_id}, {"target_invoice_id": entity_id}]},
            session=session,
        ).sort("applied_at", 1)
        docs = await cursor.to_list(None)
        return [Allocation(**doc) for doc in docs]

    async def list_by_counterparty(self, counterparty_id: str, session=None) -> List[Allocation]:
        cursor = self.collection.find({"counterparty_id": counterparty_id}, session=session).sort("applied_at", 1)
        docs = await cursor.to_list(None)
        return [Allocation(**doc) for doc in docs]

    async def find_by_idempotency_key(self, key: str, session=None) -> List[Allocation]:
        cursor = self.collection.find({"idempotency_key": key}, session=session).sort("applied_at", 1)
        docs = await cursor.to_list(None)
        return [Allocation(**doc) for doc in docs]
