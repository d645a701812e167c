# apar/services/reconciliation.py

"""
RECONCILIATION BUILDER

Reconstructs the statement of one counterparty for [period_start, period_end]:

1. Opening balance: debits - credits dated strictly before period_start
2. Stream: every document dated inside the period (both ends inclusive),
   chronological, same-day documents in creation order
3. Running balance: b[i] = b[i-1] + debit[i] - credit[i], seeded by opening
4. Closing balance: last running balance (opening when the period is empty)
5. Cross-check: opening + sum(debits) - sum(credits), summed straight from
   the documents; discrepancy = stream closing - cross-check

Invoices are debits on both AP and AR; payments, receipts, credit notes,
debit notes and advances are credits. Cancelled documents are ignored.

Discrepancies are reported on the Statement and never corrected here.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional, Tuple

from apar.models.allocation import Allocation
from apar.models.credit import CreditInstrument
from apar.models.invoice import Invoice
from apar.models.ledger import (
    ENTRY_DESCRIPTIONS,
    Discrepancy,
    EntryType,
    LedgerEntry,
    Statement,
)
from apar.models.payment import Payment
from apar.services.allocation_engine import check_conservation
from apar.services.exceptions import InvalidPeriod

logger = logging.getLogger(__name__)


# (date, created_at, entry_type, document, debit, credit)
_Row = Tuple[date, object, EntryType, object, int, int]


def _rows(
    counterparty_id: str,
    invoices: Iterable[Invoice],
    payments: Iterable[Payment],
    credits: Iterable[CreditInstrument],
) -> List[_Row]:
    rows: List[_Row] = []
    for inv in invoices:
        if inv.counterparty_id == counterparty_id and not inv.is_cancelled:
            rows.append((inv.issue_date, inv.created_at, EntryType.INVOICE, inv, inv.gross_amount_cents, 0))
    for pay in payments:
        if pay.counterparty_id == counterparty_id and not pay.is_cancelled:
            rows.append((pay.payment_date, pay.created_at, EntryType(pay.source_type), pay, 0, pay.amount_cents))
    for cred in credits:
        if cred.counterparty_id == counterparty_id and not cred.is_cancelled:
            rows.append((cred.issue_date, cred.created_at, EntryType(cred.kind.value), cred, 0, cred.original_amount_cents))
    return rows


def _independent_totals(
    counterparty_id: str,
    invoices: Iterable[Invoice],
    payments: Iterable[Payment],
    credits: Iterable[CreditInstrument],
    period_start: date,
    period_end: date,
) -> Tuple[int, int]:
    def in_period(d: date) -> bool:
        return period_start <= d <= period_end

    debits = sum(
        inv.gross_amount_cents for inv in invoices
        if inv.counterparty_id == counterparty_id and not inv.is_cancelled and in_period(inv.issue_date)
    )
    credits_total = sum(
        pay.amount_cents for pay in payments
        if pay.counterparty_id == counterparty_id and not pay.is_cancelled and in_period(pay.payment_date)
    ) + sum(
        cred.original_amount_cents for cred in credits
        if cred.counterparty_id == counterparty_id and not cred.is_cancelled and in_period(cred.issue_date)
    )
    return debits, credits_total


def reconcile(
    counterparty_id: str,
    period_start: date,
    period_end: date,
    invoices: Iterable[Invoice],
    payments: Iterable[Payment],
    credits: Iterable[CreditInstrument],
    allocations: Optional[Iterable[Allocation]] = None,
) -> Statement:
    """
    Build the statement for `counterparty_id`.

    `allocations`, when given, are checked against the applied amounts stored
    on every document; each mismatch is reported as a discrepancy.
    """
    if period_start > period_end:
        raise InvalidPeriod(period_start, period_end)

    invoices = list(invoices)
    payments = list(payments)
    credits = list(credits)
    rows = _rows(counterparty_id, invoices, payments, credits)

    opening = sum(debit - credit for (d, _, _, _, debit, credit) in rows if d < period_start)

    period_rows = [row for row in rows if period_start <= row[0] <= period_end]
    period_rows.sort(key=lambda row: (row[0], row[1], row[3].id))

    entries: List[LedgerEntry] = []
    balance = opening
    for entry_date, _, entry_type, doc, debit, credit in period_rows:
        balance = balance + debit - credit
        entries.append(LedgerEntry(
            entry_date=entry_date,
            entry_type=entry_type,
            document_id=doc.id,
            reference=doc.reference,
            description=ENTRY_DESCRIPTIONS[entry_type],
            debit_cents=debit,
            credit_cents=credit,
            running_balance_cents=balance,
        ))

    closing = entries[-1].running_balance_cents if entries else opening

    period_debits, period_credits = _independent_totals(
        counterparty_id, invoices, payments, credits, period_start, period_end
    )
    expected_closing = opening + period_debits - period_credits
    discrepancy = closing - expected_closing

    discrepancies: List[Discrepancy] = []
    if discrepancy != 0:
        discrepancies.append(Discrepancy(
            message="Calculated closing balance does not match running total",
            amount_cents=discrepancy,
        ))

    if allocations is not None:
        documents = [doc for (_, _, _, doc, _, _) in rows]
        for breach in check_conservation(documents, allocations):
            discrepancies.append(Discrepancy(
                message=(
                    f"{breach.entity_type} '{breach.entity_id}' records {breach.stored_cents} applied "
                    f"but its allocations sum to {breach.logged_cents}"
                ),
                amount_cents=breach.difference_cents,
                document_id=breach.entity_id,
            ))

    statement = Statement(
        counterparty_id=counterparty_id,
        period_start=period_start,
        period_end=period_end,
        opening_balance_cents=opening,
        entries=entries,
        total_debits_cents=sum(e.debit_cents for e in entries),
        total_credits_cents=sum(e.credit_cents for e in entries),
        closing_balance_cents=closing,
        expected_closing_balance_cents=expected_closing,
        discrepancy_cents=discrepancy,
        discrepancies=discrepancies,
    )

    if not statement.is_balanced():
        logger.warning(
            "Statement for %s (%s..%s) has %d discrepancy(ies), stream-vs-sum difference %d",
            counterparty_id, period_start, period_end, len(discrepancies), discrepancy,
        )

    return statement
