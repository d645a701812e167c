"""
Shared persistence for records that carry amount_applied_cents.

Writes to amount_applied_cents are conditional on the record's version:
the update only matches if nobody committed since the caller read it, so two
callers can never both spend the same available balance.
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from apar.services.exceptions import ConcurrentModification, NotFound


class AppliedAmountRepository:
    collection_name: str = ""
    entity_label: str = ""
    model = None

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db[self.collection_name]

    def _to_model(self, doc: dict):
        return self.model(**doc)

    async def _insert(self, entity, session=None):
        await self.collection.insert_one(entity.to_document(), session=session)
        return entity

    async def _get(self, entity_id: str, session=None):
        doc = await self.collection.find_one({"_id": entity_id}, session=session)
        if not doc:
            raise NotFound(self.entity_label, entity_id)
        return self._to_model(doc)

    async def _find(self, query: dict, session=None, sort_field: str = "created_at") -> List:
        cursor = self.collection.find(query, session=session).sort(sort_field, 1)
        docs = await cursor.to_list(None)
        return [self._to_model(doc) for doc in docs]

    async def update_applied_amount(
        self,
        entity_id: str,
        new_applied_cents: int,
        new_status: str,
        expected_version: int,
        session=None,
    ) -> None:
        """
        Set amount_applied_cents/status if the stored version is still
        `expected_version`; bump the version.

        Raises ConcurrentModification when the record moved underneath us,
        NotFound when it is gone.
        """
        result = await self.collection.update_one(
            {"_id": entity_id, "version": expected_version},
            {
                "$set": {
                    "amount_applied_cents": new_applied_cents,
                    "status": new_status,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$inc": {"version": 1},
            },
            session=session,
        )
        if result.matched_count == 0:
            if await self.collection.find_one({"_id": entity_id}, session=session) is None:
                raise NotFound(self.entity_label, entity_id)
            raise ConcurrentModification(
                f"{self.entity_label} '{entity_id}' changed since version {expected_version}",
                entity_id=entity_id,
                expected_version=expected_version,
            )

    async def save_applied(self, entity, session=None):
        """Persist an engine-updated copy; returns it with the bumped version."""
        await self.update_applied_amount(
            entity.id,
            entity.amount_applied_cents,
            entity.status.value,
            entity.version,
            session=session,
        )
        return entity.model_copy(update={"version": entity.version + 1})


def until_filter(field: str, until: Optional[date]) -> dict:
    """Dates are stored as ISO strings, which sort like the dates themselves."""
    if until is None:
        return {}
    return {field: {"$lte": until.isoformat()}}
