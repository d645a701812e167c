"""
Allocation model - one application of a funding source to an invoice.

Design principles:
- Append-only audit trail; never updated or deleted
- Sum over target_invoice_id equals the invoice's amount_applied_cents
- Sum over source_id equals the source's amount_applied_cents
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from apar.models.base import new_id


class Allocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_id, alias="_id")
    batch_id: str

    # References
    source_id: str      # payment / receipt / credit instrument
    source_type: str    # payment | receipt | credit_note | debit_note | advance
    target_invoice_id: str
    counterparty_id: str

    amount_cents: int = Field(gt=0)
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    idempotency_key: Optional[str] = None

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
