"""
Statement models - computed views, never persisted.

A Statement is the running-balance ledger of one counterparty over a period.
Debits increase the balance (invoices), credits reduce it (payments,
receipts, credit notes, debit notes, advances), on both AP and AR sides.
"""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from apar.services.exceptions import ReconciliationDiscrepancy


class EntryType(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    ADVANCE = "advance"


ENTRY_DESCRIPTIONS = {
    EntryType.INVOICE: "Invoice",
    EntryType.PAYMENT: "Payment Made",
    EntryType.RECEIPT: "Payment Received",
    EntryType.CREDIT_NOTE: "Credit Note",
    EntryType.DEBIT_NOTE: "Debit Note",
    EntryType.ADVANCE: "Advance Payment",
}


class LedgerEntry(BaseModel):
    entry_date: date
    entry_type: EntryType
    document_id: str
    reference: str = ""
    description: str = ""
    debit_cents: int = 0
    credit_cents: int = 0
    running_balance_cents: int = 0


class Discrepancy(BaseModel):
    message: str
    amount_cents: int
    document_id: Optional[str] = None


class Statement(BaseModel):
    counterparty_id: str
    period_start: date
    period_end: date

    opening_balance_cents: int
    entries: List[LedgerEntry] = []
    total_debits_cents: int = 0
    total_credits_cents: int = 0

    closing_balance_cents: int               # last running balance
    expected_closing_balance_cents: int      # opening + debits - credits, summed independently
    discrepancy_cents: int = 0               # closing - expected
    discrepancies: List[Discrepancy] = []

    def is_balanced(self) -> bool:
        return self.discrepancy_cents == 0 and not self.discrepancies

    def raise_for_discrepancy(self) -> None:
        """Raise ReconciliationDiscrepancy if the statement does not balance."""
        if self.is_balanced():
            return
        raise ReconciliationDiscrepancy(
            f"Statement for {self.counterparty_id} "
            f"({self.period_start.isoformat()}..{self.period_end.isoformat()}) "
            f"has {len(self.discrepancies)} discrepancy(ies)",
            counterparty_id=self.counterparty_id,
            discrepancy_cents=self.discrepancy_cents,
            discrepancies=list(self.discrepancies),
        )
