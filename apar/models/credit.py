"""
Credit instruments - credit notes, debit notes and advances.

Structurally identical funding sources that reduce a counterparty balance.
"""

from datetime import date
from enum import Enum

from pydantic import Field, computed_field, model_validator

from apar.models.base import VersionedModel, LedgerSide


class CreditKind(str, Enum):
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    ADVANCE = "advance"


NOTE_KINDS = (CreditKind.CREDIT_NOTE, CreditKind.DEBIT_NOTE)


class CreditStatus(str, Enum):
    ACTIVE = "active"
    PARTIALLY_APPLIED = "partially_applied"
    FULLY_APPLIED = "fully_applied"
    CANCELLED = "cancelled"


def credit_status(original_amount_cents: int, amount_applied_cents: int, is_cancelled: bool = False) -> CreditStatus:
    if is_cancelled:
        return CreditStatus.CANCELLED
    if amount_applied_cents >= original_amount_cents:
        return CreditStatus.FULLY_APPLIED
    if amount_applied_cents == 0:
        return CreditStatus.ACTIVE
    return CreditStatus.PARTIALLY_APPLIED


class CreditInstrument(VersionedModel):
    counterparty_id: str
    side: LedgerSide = LedgerSide.RECEIVABLE
    kind: CreditKind
    reference: str = ""

    issue_date: date

    original_amount_cents: int = Field(ge=0)
    amount_applied_cents: int = Field(default=0, ge=0)

    is_cancelled: bool = False

    @model_validator(mode="after")
    def _check_applied(self):
        if self.amount_applied_cents > self.original_amount_cents:
            raise ValueError(
                f"amount_applied_cents ({self.amount_applied_cents}) exceeds "
                f"original_amount_cents ({self.original_amount_cents})"
            )
        return self

    @computed_field
    @property
    def status(self) -> CreditStatus:
        return credit_status(self.original_amount_cents, self.amount_applied_cents, self.is_cancelled)

    @property
    def source_type(self) -> str:
        return self.kind.value

    @property
    def total_cents(self) -> int:
        return self.original_amount_cents

    def available_amount_cents(self) -> int:
        return self.original_amount_cents - self.amount_applied_cents

    def is_usable(self) -> bool:
        return (
            self.available_amount_cents() > 0
            and self.status not in (CreditStatus.CANCELLED, CreditStatus.FULLY_APPLIED)
        )
