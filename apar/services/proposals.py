"""Payment proposals: which open invoices fall due soon enough to pay now."""

from collections import OrderedDict
from datetime import date
from typing import Dict, Iterable, List

from pydantic import BaseModel

from apar.models.invoice import Invoice


class PaymentProposal(BaseModel):
    invoice_id: str
    counterparty_id: str
    reference: str
    due_date: date
    gross_amount_cents: int
    balance_due_cents: int
    days_until_due: int
    is_overdue: bool
    priority: str  # high | medium | low


def _priority(days_until_due: int, medium_priority_days: int) -> str:
    if days_until_due < 0:
        return "high"
    if days_until_due <= medium_priority_days:
        return "medium"
    return "low"


def propose_payments(
    invoices: Iterable[Invoice],
    as_of: date,
    days_threshold: int = 7,
    include_overdue: bool = True,
    medium_priority_days: int = 3,
) -> List[PaymentProposal]:
    """Open invoices due within `days_threshold` of `as_of`, most urgent first."""
    proposals = []
    for invoice in invoices:
        if not invoice.is_open() or invoice.balance_due_cents() <= 0:
            continue

        days_until_due = (invoice.due_date - as_of).days
        is_overdue = days_until_due < 0
        if is_overdue and not include_overdue:
            continue
        if days_until_due > days_threshold:
            continue

        proposals.append(PaymentProposal(
            invoice_id=invoice.id,
            counterparty_id=invoice.counterparty_id,
            reference=invoice.reference,
            due_date=invoice.due_date,
            gross_amount_cents=invoice.gross_amount_cents,
            balance_due_cents=invoice.balance_due_cents(),
            days_until_due=days_until_due,
            is_overdue=is_overdue,
            priority=_priority(days_until_due, medium_priority_days),
        ))

    # sorted() is stable: equal urgency keeps input order
    return sorted(proposals, key=lambda p: p.days_until_due)


def group_by_counterparty(proposals: Iterable[PaymentProposal]) -> Dict[str, List[PaymentProposal]]:
    groups: Dict[str, List[PaymentProposal]] = OrderedDict()
    for proposal in proposals:
        groups.setdefault(proposal.counterparty_id, []).append(proposal)
    return groups
