"""Tests for aging classification."""
from datetime import date, timedelta

import pytest

from apar.models.aging import DEFAULT_BUCKETS, AgingBucket
from apar.services.aging import bucket_for, classify, days_overdue, validate_buckets
from apar.services.exceptions import AgingConfigurationError

AS_OF = date(2024, 6, 30)


@pytest.mark.parametrize("days, label", [
    (-10, "Current"),
    (0, "Current"),
    (1, "1-30"),
    (30, "1-30"),
    (31, "31-60"),
    (60, "31-60"),
    (61, "61-90"),
    (90, "61-90"),
    (91, "90+"),
    (400, "90+"),
])
def test_bucket_boundaries(days, label):
    assert bucket_for(days, DEFAULT_BUCKETS).label == label


def test_every_open_invoice_lands_in_one_bucket(make_invoice):
    invoices = [
        make_invoice(gross=100 * (i + 1), applied=10 * i, due_date=AS_OF - timedelta(days=offset))
        for i, offset in enumerate(range(-20, 200, 7))
    ]

    report = classify(invoices, AS_OF)

    assert set(report.assignments) == {inv.id for inv in invoices}
    assert sum(b.count for b in report.buckets) == len(invoices)
    assert sum(b.amount_cents for b in report.buckets) == sum(inv.balance_due_cents() for inv in invoices)
    assert report.total_cents == sum(inv.balance_due_cents() for inv in invoices)


def test_paid_and_cancelled_are_left_out(make_invoice):
    open_invoice = make_invoice(gross=300, due_date=AS_OF)
    paid = make_invoice(gross=300, applied=300, due_date=AS_OF)
    cancelled = make_invoice(gross=300, is_cancelled=True, due_date=AS_OF)

    report = classify([open_invoice, paid, cancelled], AS_OF)

    assert list(report.assignments) == [open_invoice.id]
    assert report.total_cents == 300


def test_classification_is_idempotent(make_invoice):
    invoices = [
        make_invoice(gross=1000, due_date=AS_OF - timedelta(days=45)),
        make_invoice(gross=500, applied=100, due_date=AS_OF + timedelta(days=3)),
    ]

    assert classify(invoices, AS_OF) == classify(invoices, AS_OF)


def test_percentages_and_counterparty_rollup(make_invoice):
    invoices = [
        make_invoice(gross=300, counterparty_id="acme", due_date=AS_OF),
        make_invoice(gross=100, counterparty_id="acme", due_date=AS_OF - timedelta(days=100)),
        make_invoice(gross=600, counterparty_id="zenith", due_date=AS_OF - timedelta(days=10)),
    ]

    report = classify(invoices, AS_OF)
    by_label = {b.label: b for b in report.buckets}

    assert [b.label for b in report.buckets] == ["Current", "1-30", "31-60", "61-90", "90+"]
    assert by_label["Current"].percentage == pytest.approx(30.0)
    assert by_label["1-30"].percentage == pytest.approx(60.0)
    assert by_label["90+"].percentage == pytest.approx(10.0)
    assert by_label["31-60"].percentage == 0.0

    # Largest balance first
    assert [row.counterparty_id for row in report.by_counterparty] == ["zenith", "acme"]
    acme = report.by_counterparty[1]
    assert acme.amounts["Current"] == 300
    assert acme.amounts["90+"] == 100
    assert acme.total_cents == 400


def test_empty_report():
    report = classify([], AS_OF)
    assert report.total_cents == 0
    assert all(b.percentage == 0.0 for b in report.buckets)
    assert report.by_counterparty == []


def test_days_overdue(make_invoice):
    assert days_overdue(make_invoice(due_date=date(2024, 6, 1)), AS_OF) == 29
    assert days_overdue(make_invoice(due_date=date(2024, 7, 10)), AS_OF) == -10


def test_custom_buckets(make_invoice):
    buckets = [
        AgingBucket(label="not due", upper_days=1),
        AgingBucket(label="overdue", lower_days=1),
    ]
    invoice = make_invoice(gross=250, due_date=AS_OF - timedelta(days=200))

    report = classify([invoice], AS_OF, buckets)

    assert report.assignments == {invoice.id: "overdue"}


class TestBucketValidation:
    def test_defaults_are_valid(self):
        validate_buckets(DEFAULT_BUCKETS)

    def test_empty(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([])

    def test_gap(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([
                AgingBucket(label="a", upper_days=10),
                AgingBucket(label="b", lower_days=20),
            ])

    def test_overlap(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([
                AgingBucket(label="a", upper_days=30),
                AgingBucket(label="b", lower_days=20),
            ])

    def test_bounded_below(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([AgingBucket(label="a", lower_days=0)])

    def test_bounded_above(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([AgingBucket(label="a", upper_days=10)])

    def test_duplicate_labels(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([
                AgingBucket(label="a", upper_days=10),
                AgingBucket(label="a", lower_days=10),
            ])

    def test_empty_range(self):
        with pytest.raises(AgingConfigurationError):
            validate_buckets([
                AgingBucket(label="a", upper_days=10),
                AgingBucket(label="b", lower_days=10, upper_days=10),
                AgingBucket(label="c", lower_days=10),
            ])

    def test_classify_validates(self, make_invoice):
        with pytest.raises(AgingConfigurationError):
            classify([make_invoice()], AS_OF, [AgingBucket(label="a", upper_days=5)])
