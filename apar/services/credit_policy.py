"""
CREDIT CONSUMPTION POLICY

Plans how a pool of credit notes, debit notes and advances offsets a target
amount. Planning only: nothing is mutated here, the allocation engine turns
the plan into Allocation records.

Rules:
- Only usable instruments take part (available > 0, not cancelled, not
  fully applied).
- Oldest issue_date first; same-day instruments keep creation order.
- Each instrument gives min(available, remaining target).
- Sum of the plan == min(target, total available).
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List

from pydantic import BaseModel

from apar.models.credit import CreditInstrument, CreditKind, NOTE_KINDS


class CreditOrdering(str, Enum):
    """Which credit family is exhausted first when both are available."""
    NOTES_FIRST = "notes_first"          # credit/debit notes, then advances
    ADVANCES_FIRST = "advances_first"    # advances, then credit/debit notes
    OLDEST_FIRST = "oldest_first"        # one FIFO queue across every kind


class PlannedConsumption(BaseModel):
    instrument_id: str
    kind: CreditKind
    amount_cents: int


class NetPayablePlan(BaseModel):
    invoice_balance_cents: int
    credit_applied_cents: int = 0
    advance_applied_cents: int = 0
    net_payable_cents: int
    lines: List[PlannedConsumption] = []


def fifo_order(instruments: Iterable[CreditInstrument]) -> List[CreditInstrument]:
    """Usable instruments, oldest first."""
    usable = [inst for inst in instruments if inst.is_usable()]
    return sorted(usable, key=lambda inst: (inst.issue_date, inst.created_at, inst.id))


def consume(pool: Iterable[CreditInstrument], target_cents: int) -> List[PlannedConsumption]:
    """
    Greedy oldest-first consumption of `pool` against `target_cents`.

    Returns ordered (instrument, amount) lines; untouched instruments are
    not listed.
    """
    if target_cents < 0:
        raise ValueError(f"target_cents must be >= 0, got {target_cents}")

    remaining = target_cents
    plan: List[PlannedConsumption] = []

    for inst in fifo_order(pool):
        if remaining == 0:
            break
        take = min(inst.available_amount_cents(), remaining)
        plan.append(PlannedConsumption(instrument_id=inst.id, kind=inst.kind, amount_cents=take))
        remaining -= take

    return plan


def _split_by_family(pool: List[CreditInstrument]):
    notes = [inst for inst in pool if inst.kind in NOTE_KINDS]
    advances = [inst for inst in pool if inst.kind == CreditKind.ADVANCE]
    return notes, advances


def plan_net_payable(
    invoice_balance_cents: int,
    pool: Iterable[CreditInstrument],
    ordering: CreditOrdering = CreditOrdering.NOTES_FIRST,
) -> NetPayablePlan:
    """
    Net payable = invoice balance - credit applied - advance applied.

    The order in which the two families are drawn down is `ordering`;
    within a family consumption is always oldest-first.
    """
    pool = list(pool)
    ordering = CreditOrdering(ordering)

    if ordering == CreditOrdering.OLDEST_FIRST:
        phases = [pool]
    else:
        notes, advances = _split_by_family(pool)
        phases = [notes, advances] if ordering == CreditOrdering.NOTES_FIRST else [advances, notes]

    remaining = invoice_balance_cents
    lines: List[PlannedConsumption] = []
    for phase in phases:
        phase_plan = consume(phase, remaining)
        lines.extend(phase_plan)
        remaining -= sum(line.amount_cents for line in phase_plan)

    credit_applied = sum(line.amount_cents for line in lines if line.kind in NOTE_KINDS)
    advance_applied = sum(line.amount_cents for line in lines if line.kind == CreditKind.ADVANCE)

    return NetPayablePlan(
        invoice_balance_cents=invoice_balance_cents,
        credit_applied_cents=credit_applied,
        advance_applied_cents=advance_applied,
        net_payable_cents=invoice_balance_cents - credit_applied - advance_applied,
        lines=lines,
    )
