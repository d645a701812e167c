"""
AGING CLASSIFIER

Buckets the balance due of open invoices by days past due at an as-of date.

- days_overdue = as_of - due_date (<= 0 is Current)
- every open / partially applied invoice lands in exactly one bucket
- paid and cancelled invoices are left out entirely
- sum(bucket amounts) == sum(balance due) == total
"""

from datetime import date
from typing import Dict, Iterable, List, Sequence

from apar.models.aging import (
    DEFAULT_BUCKETS,
    AgingBucket,
    AgingReport,
    BucketTotal,
    CounterpartyAging,
)
from apar.models.invoice import Invoice
from apar.services.exceptions import AgingConfigurationError


def validate_buckets(bucket_defs: Sequence[AgingBucket]) -> None:
    """
    Buckets must be sorted, contiguous and together cover every integer:
    the first has no lower bound, the last no upper bound.
    """
    if not bucket_defs:
        raise AgingConfigurationError("At least one aging bucket is required")

    labels = [b.label for b in bucket_defs]
    if len(set(labels)) != len(labels):
        raise AgingConfigurationError(f"Duplicate bucket labels: {labels}")

    if bucket_defs[0].lower_days is not None:
        raise AgingConfigurationError(f"First bucket '{bucket_defs[0].label}' must be open below")
    if bucket_defs[-1].upper_days is not None:
        raise AgingConfigurationError(f"Last bucket '{bucket_defs[-1].label}' must be open-ended")

    for prev, nxt in zip(bucket_defs, bucket_defs[1:]):
        if prev.upper_days is None or nxt.lower_days is None:
            raise AgingConfigurationError(
                f"Only the outer buckets may be unbounded ('{prev.label}', '{nxt.label}')"
            )
        if prev.upper_days != nxt.lower_days:
            raise AgingConfigurationError(
                f"Buckets '{prev.label}' and '{nxt.label}' overlap or leave a gap"
            )

    for bucket in bucket_defs:
        if (
            bucket.lower_days is not None
            and bucket.upper_days is not None
            and bucket.lower_days >= bucket.upper_days
        ):
            raise AgingConfigurationError(f"Bucket '{bucket.label}' is empty")


def days_overdue(invoice: Invoice, as_of: date) -> int:
    return (as_of - invoice.due_date).days


def bucket_for(days: int, bucket_defs: Sequence[AgingBucket]) -> AgingBucket:
    for bucket in bucket_defs:
        if bucket.contains(days):
            return bucket
    # unreachable for validated definitions
    raise AgingConfigurationError(f"No bucket covers {days} days overdue")


def classify(
    open_invoices: Iterable[Invoice],
    as_of: date,
    bucket_defs: Sequence[AgingBucket] = DEFAULT_BUCKETS,
) -> AgingReport:
    bucket_defs = list(bucket_defs)
    validate_buckets(bucket_defs)

    totals: Dict[str, BucketTotal] = {b.label: BucketTotal(label=b.label) for b in bucket_defs}
    by_counterparty: Dict[str, CounterpartyAging] = {}
    assignments: Dict[str, str] = {}

    for invoice in open_invoices:
        if not invoice.is_open():
            continue

        amount = invoice.balance_due_cents()
        bucket = bucket_for(days_overdue(invoice, as_of), bucket_defs)

        totals[bucket.label].amount_cents += amount
        totals[bucket.label].count += 1
        assignments[invoice.id] = bucket.label

        rollup = by_counterparty.get(invoice.counterparty_id)
        if rollup is None:
            rollup = CounterpartyAging(
                counterparty_id=invoice.counterparty_id,
                amounts={b.label: 0 for b in bucket_defs},
            )
            by_counterparty[invoice.counterparty_id] = rollup
        rollup.amounts[bucket.label] += amount
        rollup.total_cents += amount

    buckets: List[BucketTotal] = [totals[b.label] for b in bucket_defs]
    total = sum(b.amount_cents for b in buckets)
    for b in buckets:
        b.percentage = (b.amount_cents / total) * 100 if total > 0 else 0.0

    return AgingReport(
        as_of=as_of,
        buckets=buckets,
        by_counterparty=sorted(
            by_counterparty.values(),
            key=lambda row: (-row.total_cents, row.counterparty_id),
        ),
        total_cents=total,
        assignments=assignments,
    )
