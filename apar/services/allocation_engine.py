# apar/services/allocation_engine.py

"""
ALLOCATION ENGINE

Decides how much of a funding source (payment, receipt, credit note, debit
note, advance) is applied to each invoice of a batch.

Pure computation: inputs are never mutated. The result carries updated
copies of the source and invoices plus the new Allocation records, and the
caller persists all of it in one transaction (see AllocationService).

Modes:
- Explicit: every target has a requested amount.
    strict (default): a line <= 0 or above min(invoice balance, source
    remaining) raises InvalidAllocationAmount; a batch total above the
    source's available amount raises InsufficientFunds.
    clamp: each line is cut to that bound, lines cut to zero are dropped.
- Auto: no target has a requested amount. The source is spread oldest
  due date first until it runs out.

A batch is all-or-nothing: either every line is accepted or nothing is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from apar.models.allocation import Allocation
from apar.models.base import new_id
from apar.models.credit import CreditInstrument
from apar.models.invoice import Invoice
from apar.models.payment import Payment
from apar.services.exceptions import (
    AllocationNotPermitted,
    InsufficientFunds,
    InvalidAllocationAmount,
)


FundingSource = Union[Payment, CreditInstrument]
AllocationTarget = Tuple[Invoice, Optional[int]]


@dataclass
class AllocationBatch:
    batch_id: str
    source: FundingSource
    invoices: List[Invoice] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)
    replayed: bool = False  # True when returned from the log for a repeated idempotency key

    @property
    def total_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)


class ConservationBreach(BaseModel):
    entity_id: str
    entity_type: str
    stored_cents: int
    logged_cents: int

    @property
    def difference_cents(self) -> int:
        return self.stored_cents - self.logged_cents


# ============================================================
# ELIGIBILITY
# ============================================================

def _check_source(source: FundingSource) -> None:
    if source.is_cancelled:
        raise AllocationNotPermitted(f"Source '{source.id}' is cancelled")


def _check_target(source: FundingSource, invoice: Invoice) -> None:
    if invoice.is_cancelled:
        raise AllocationNotPermitted(f"Invoice '{invoice.id}' is cancelled")
    if invoice.counterparty_id != source.counterparty_id:
        raise AllocationNotPermitted(
            f"Invoice '{invoice.id}' belongs to '{invoice.counterparty_id}', "
            f"source '{source.id}' to '{source.counterparty_id}'"
        )
    if invoice.side != source.side:
        raise AllocationNotPermitted(
            f"Invoice '{invoice.id}' is {invoice.side.value}, source '{source.id}' is {source.side.value}"
        )


# ============================================================
# LINE PLANNING
# ============================================================

def _explicit_lines(
    source: FundingSource,
    targets: Sequence[Tuple[Invoice, int]],
    clamp: bool,
) -> List[Tuple[Invoice, int]]:
    available = source.available_amount_cents()

    for invoice, amount in targets:
        if amount < 0 or (amount == 0 and not clamp):
            raise InvalidAllocationAmount(
                f"Allocation to invoice '{invoice.id}' must be > 0, got {amount}",
                invoice_id=invoice.id,
                requested_cents=amount,
                limit_cents=0,
            )

    if not clamp:
        requested_total = sum(amount for _, amount in targets)
        if requested_total > available:
            raise InsufficientFunds(
                f"Requested {requested_total} exceeds available {available} on source '{source.id}'",
                source_id=source.id,
                requested_cents=requested_total,
                available_cents=available,
            )

    remaining_source = available
    remaining_by_invoice: Dict[str, int] = {}
    lines: List[Tuple[Invoice, int]] = []

    for invoice, amount in targets:
        balance = remaining_by_invoice.get(invoice.id, invoice.balance_due_cents())
        limit = min(balance, remaining_source)

        if amount > limit:
            if not clamp:
                raise InvalidAllocationAmount(
                    f"Allocation of {amount} to invoice '{invoice.id}' exceeds limit {limit}",
                    invoice_id=invoice.id,
                    requested_cents=amount,
                    limit_cents=limit,
                )
            amount = limit

        if amount == 0:
            continue

        lines.append((invoice, amount))
        remaining_by_invoice[invoice.id] = balance - amount
        remaining_source -= amount

    return lines


def fifo_invoice_order(invoices: Iterable[Invoice]) -> List[Invoice]:
    """Open invoices with a balance, oldest due date first."""
    seen = set()
    unique = []
    for invoice in invoices:
        if invoice.id in seen:
            continue
        seen.add(invoice.id)
        if invoice.is_open() and invoice.balance_due_cents() > 0:
            unique.append(invoice)
    return sorted(unique, key=lambda inv: (inv.due_date, inv.issue_date, inv.created_at, inv.id))


def _auto_lines(source: FundingSource, invoices: Sequence[Invoice]) -> List[Tuple[Invoice, int]]:
    remaining = source.available_amount_cents()
    lines: List[Tuple[Invoice, int]] = []
    for invoice in fifo_invoice_order(invoices):
        if remaining <= 0:
            break
        take = min(invoice.balance_due_cents(), remaining)
        lines.append((invoice, take))
        remaining -= take
    return lines


# ============================================================
# ALLOCATE
# ============================================================

def allocate(
    source: FundingSource,
    targets: Sequence[AllocationTarget],
    *,
    clamp: bool = False,
    applied_at: Optional[datetime] = None,
    batch_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> AllocationBatch:
    """
    Apply `source` to the ordered `targets` [(invoice, requested_cents | None)].

    Raises AllocationNotPermitted, InvalidAllocationAmount or
    InsufficientFunds; on any of them nothing is allocated.
    """
    applied_at = applied_at or datetime.now(timezone.utc)
    batch_id = batch_id or new_id()

    _check_source(source)
    for invoice, _ in targets:
        _check_target(source, invoice)

    requested = [amount for _, amount in targets]
    if all(amount is None for amount in requested):
        lines = _auto_lines(source, [invoice for invoice, _ in targets])
    elif any(amount is None for amount in requested):
        raise InvalidAllocationAmount(
            "Either every line has a requested amount or none does (auto mode)"
        )
    else:
        lines = _explicit_lines(source, targets, clamp)

    allocations: List[Allocation] = []
    updated: Dict[str, Invoice] = {}
    total = 0

    for invoice, amount in lines:
        current = updated.get(invoice.id, invoice)
        updated[invoice.id] = current.model_copy(update={
            "amount_applied_cents": current.amount_applied_cents + amount,
            "updated_at": applied_at,
        })
        allocations.append(Allocation(
            batch_id=batch_id,
            source_id=source.id,
            source_type=source.source_type,
            target_invoice_id=invoice.id,
            counterparty_id=source.counterparty_id,
            amount_cents=amount,
            applied_at=applied_at,
            idempotency_key=idempotency_key,
        ))
        total += amount

    new_source = source.model_copy(update={
        "amount_applied_cents": source.amount_applied_cents + total,
        "updated_at": applied_at,
    }) if total else source

    return AllocationBatch(
        batch_id=batch_id,
        source=new_source,
        invoices=list(updated.values()),
        allocations=allocations,
    )


# ============================================================
# AUDIT TRAIL
# ============================================================

def applied_from_log(entity_id: str, allocations: Iterable[Allocation], role: str = "target") -> int:
    """Replay the allocation log: total applied to (target) or from (source) an entity."""
    if role == "target":
        return sum(a.amount_cents for a in allocations if a.target_invoice_id == entity_id)
    if role == "source":
        return sum(a.amount_cents for a in allocations if a.source_id == entity_id)
    raise ValueError(f"role must be 'target' or 'source', got {role!r}")


def _entity_role(entity) -> Tuple[str, str]:
    if isinstance(entity, Invoice):
        return "target", "invoice"
    return "source", entity.source_type


def check_conservation(entities: Iterable, allocations: Iterable[Allocation]) -> List[ConservationBreach]:
    """Entities whose stored amount_applied_cents disagrees with the log."""
    allocations = list(allocations)
    breaches = []
    for entity in entities:
        role, entity_type = _entity_role(entity)
        logged = applied_from_log(entity.id, allocations, role)
        if logged != entity.amount_applied_cents:
            breaches.append(ConservationBreach(
                entity_id=entity.id,
                entity_type=entity_type,
                stored_cents=entity.amount_applied_cents,
                logged_cents=logged,
            ))
    return breaches
