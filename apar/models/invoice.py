"""
Invoice model - an amount owed by (AP) or to (AR) a counterparty.

Design principles:
- All amounts in integer cents
- amount_applied_cents only moves through the allocation engine
- Status is derived from amounts, never stored as the source of truth
- Never deleted, only cancelled
"""

from datetime import date
from enum import Enum

from pydantic import Field, computed_field, model_validator

from apar.models.base import VersionedModel, LedgerSide


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PARTIALLY_APPLIED = "partially_applied"
    PAID = "paid"
    CANCELLED = "cancelled"


def invoice_status(gross_amount_cents: int, amount_applied_cents: int, is_cancelled: bool = False) -> InvoiceStatus:
    if is_cancelled:
        return InvoiceStatus.CANCELLED
    # A zero-value invoice has nothing left to collect.
    if amount_applied_cents >= gross_amount_cents:
        return InvoiceStatus.PAID
    if amount_applied_cents == 0:
        return InvoiceStatus.OPEN
    return InvoiceStatus.PARTIALLY_APPLIED


class Invoice(VersionedModel):
    """
    Invariants:
    - 0 <= amount_applied_cents <= gross_amount_cents
    - status is a pure function of (gross, applied, is_cancelled)
    """
    counterparty_id: str
    side: LedgerSide = LedgerSide.RECEIVABLE
    reference: str = ""

    issue_date: date
    due_date: date

    gross_amount_cents: int = Field(ge=0)
    amount_applied_cents: int = Field(default=0, ge=0)

    is_cancelled: bool = False

    @model_validator(mode="after")
    def _check_applied(self):
        if self.amount_applied_cents > self.gross_amount_cents:
            raise ValueError(
                f"amount_applied_cents ({self.amount_applied_cents}) exceeds "
                f"gross_amount_cents ({self.gross_amount_cents})"
            )
        return self

    @computed_field
    @property
    def status(self) -> InvoiceStatus:
        return invoice_status(self.gross_amount_cents, self.amount_applied_cents, self.is_cancelled)

    def balance_due_cents(self) -> int:
        """How much remains to be applied."""
        return self.gross_amount_cents - self.amount_applied_cents

    def is_open(self) -> bool:
        """Open or partially applied; the only states allocation and aging consider."""
        return self.status in (InvoiceStatus.OPEN, InvoiceStatus.PARTIALLY_APPLIED)
