from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from bson import ObjectId
from pydantic import BaseModel, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


class LedgerSide(str, Enum):
    PAYABLE = "payable"        # vendor account (AP)
    RECEIVABLE = "receivable"  # customer account (AR)


class MongoModel(BaseModel):
    id: str = Field(default_factory=new_id, alias="_id")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    def to_document(self) -> dict[str, Any]:
        """
        Serialize for MongoDB.

        BSON has no calendar-date type, so plain dates become ISO strings
        (range filters on them still compare correctly).
        """
        doc = self.model_dump(by_alias=True)
        for key, value in doc.items():
            if isinstance(value, date) and not isinstance(value, datetime):
                doc[key] = value.isoformat()
            elif isinstance(value, Enum):
                doc[key] = value.value
        return doc


class VersionedModel(MongoModel):
    """Mutable record guarded by an optimistic version counter."""
    version: int = 0
