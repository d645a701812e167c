from datetime import date, timedelta

import pytest

from apar.core.clock import FixedClock
from apar.models.base import LedgerSide
from apar.services.aging_service import AgingService

AS_OF = date(2024, 6, 30)


@pytest.fixture
def aging(ledger):
    return AgingService(ledger.stores, ledger.snapshot, clock=FixedClock(AS_OF))


@pytest.mark.asyncio
async def test_report_uses_injected_clock(ledger, aging, make_invoice):
    invoice = ledger.add(make_invoice(gross=1000, applied=400, due_date=AS_OF - timedelta(days=45)))
    ledger.add(make_invoice(gross=500, applied=500, due_date=AS_OF - timedelta(days=45)))

    report = await aging.aging_report()

    assert report.as_of == AS_OF
    assert report.assignments == {invoice.id: "31-60"}
    assert report.total_cents == 600


@pytest.mark.asyncio
async def test_report_filters(ledger, aging, make_invoice):
    ledger.add(make_invoice(gross=100, counterparty_id="acme", side=LedgerSide.PAYABLE))
    ledger.add(make_invoice(gross=200, counterparty_id="acme", side=LedgerSide.RECEIVABLE))
    ledger.add(make_invoice(gross=400, counterparty_id="zenith", side=LedgerSide.PAYABLE))

    payables = await aging.aging_report(side=LedgerSide.PAYABLE)
    acme = await aging.aging_report(counterparty_id="acme")

    assert payables.total_cents == 500
    assert acme.total_cents == 300


@pytest.mark.asyncio
async def test_as_of_override(ledger, aging, make_invoice):
    invoice = ledger.add(make_invoice(gross=100, due_date=AS_OF))

    later = await aging.aging_report(as_of=AS_OF + timedelta(days=95))

    assert later.assignments[invoice.id] == "90+"


@pytest.mark.asyncio
async def test_payment_proposals_grouped(ledger, aging, make_invoice):
    ledger.add(make_invoice(gross=100, counterparty_id="vendor-a", side=LedgerSide.PAYABLE, due_date=AS_OF + timedelta(days=2)))
    ledger.add(make_invoice(gross=100, counterparty_id="vendor-b", side=LedgerSide.PAYABLE, due_date=AS_OF - timedelta(days=1)))
    ledger.add(make_invoice(gross=100, counterparty_id="vendor-a", side=LedgerSide.PAYABLE, due_date=AS_OF + timedelta(days=30)))
    ledger.add(make_invoice(gross=100, counterparty_id="cust-1", side=LedgerSide.RECEIVABLE, due_date=AS_OF))

    groups = await aging.payment_proposals()

    assert list(groups) == ["vendor-b", "vendor-a"]
    assert groups["vendor-b"][0].priority == "high"
    assert groups["vendor-a"][0].priority == "medium"
    assert len(groups["vendor-a"]) == 1
