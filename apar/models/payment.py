"""
Payment (AP) / Receipt (AR) - cash movement against a counterparty account.

Linked to invoices only through Allocation records.
"""

from datetime import date
from enum import Enum

from pydantic import Field, computed_field, model_validator

from apar.models.base import VersionedModel, LedgerSide


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_ALLOCATED = "partially_allocated"
    ALLOCATED = "allocated"
    CANCELLED = "cancelled"


def payment_status(amount_cents: int, amount_applied_cents: int, is_cancelled: bool = False) -> PaymentStatus:
    if is_cancelled:
        return PaymentStatus.CANCELLED
    if amount_applied_cents >= amount_cents:
        return PaymentStatus.ALLOCATED
    if amount_applied_cents == 0:
        return PaymentStatus.PENDING
    return PaymentStatus.PARTIALLY_ALLOCATED


class Payment(VersionedModel):
    counterparty_id: str
    side: LedgerSide = LedgerSide.RECEIVABLE
    reference: str = ""

    payment_date: date

    amount_cents: int = Field(ge=0)
    amount_applied_cents: int = Field(default=0, ge=0)

    is_cancelled: bool = False

    @model_validator(mode="after")
    def _check_applied(self):
        if self.amount_applied_cents > self.amount_cents:
            raise ValueError(
                f"amount_applied_cents ({self.amount_applied_cents}) exceeds "
                f"amount_cents ({self.amount_cents})"
            )
        return self

    @computed_field
    @property
    def status(self) -> PaymentStatus:
        return payment_status(self.amount_cents, self.amount_applied_cents, self.is_cancelled)

    @property
    def source_type(self) -> str:
        # Vendor side pays out, customer side receives.
        return "payment" if self.side == LedgerSide.PAYABLE else "receipt"

    @property
    def total_cents(self) -> int:
        return self.amount_cents

    def available_amount_cents(self) -> int:
        return self.amount_cents - self.amount_applied_cents
