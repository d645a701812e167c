from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

from apar.models.base import LedgerSide
from apar.services.exceptions import NotFound, ReconciliationTimeout
from apar.services.reconciliation import reconcile

AS_OF = date(2024, 6, 30)


def test_get_statement(client, make_invoice, make_payment):
    invoice = make_invoice(gross=1000, issue_date=date(2024, 6, 2))
    receipt = make_payment(amount=400, payment_date=date(2024, 6, 10))
    statement = reconcile("cust-1", date(2024, 6, 1), AS_OF, [invoice], [receipt], [])

    with patch("apar.services.statement_service.StatementService.reconcile", new_callable=AsyncMock) as mock_reconcile:
        mock_reconcile.return_value = statement

        response = client.get(
            "/api/v1/statements/cust-1",
            params={"period_start": "2024-06-01", "period_end": "2024-06-30", "side": "receivable"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["closing_balance_cents"] == 600
        assert [e["running_balance_cents"] for e in data["entries"]] == [1000, 600]
        assert data["discrepancies"] == []

        args, kwargs = mock_reconcile.call_args
        assert args == ("cust-1", date(2024, 6, 1), AS_OF)
        assert kwargs["side"] == LedgerSide.RECEIVABLE


def test_statement_requires_period(client):
    response = client.get("/api/v1/statements/cust-1", params={"period_start": "2024-06-01"})
    assert response.status_code == 422


def test_statement_inverted_period(client):
    response = client.get(
        "/api/v1/statements/cust-1",
        params={"period_start": "2024-06-30", "period_end": "2024-06-01"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "period_start 2024-06-30 is after period_end 2024-06-01"


def test_statement_timeout(client):
    with patch("apar.services.statement_service.StatementService.reconcile", new_callable=AsyncMock) as mock_reconcile:
        mock_reconcile.side_effect = ReconciliationTimeout("Statement for 'cust-1' did not complete within 30s")

        response = client.get(
            "/api/v1/statements/cust-1",
            params={"period_start": "2024-06-01", "period_end": "2024-06-30"},
        )

        assert response.status_code == 504


def test_statement_unknown_counterparty(client):
    with patch("apar.services.statement_service.StatementService.reconcile", new_callable=AsyncMock) as mock_reconcile:
        mock_reconcile.side_effect = NotFound("Counterparty", "ghost")

        response = client.get(
            "/api/v1/statements/ghost",
            params={"period_start": "2024-06-01", "period_end": "2024-06-30"},
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Counterparty 'ghost' not found"


def test_aging_report(client, make_invoice):
    invoice = make_invoice(gross=1000, applied=400, due_date=AS_OF - timedelta(days=45))

    with patch("apar.services.aging_service.AgingService._open_invoices", new_callable=AsyncMock) as mock_open:
        mock_open.return_value = [invoice]

        response = client.get("/api/v1/aging/")

        assert response.status_code == 200
        data = response.json()
        assert data["as_of"] == "2024-06-30"
        assert data["total_cents"] == 600
        assert data["assignments"] == {invoice.id: "31-60"}
        assert data["by_counterparty"][0]["amounts"]["31-60"] == 600


def test_payment_proposals(client, make_invoice):
    due_soon = make_invoice(gross=500, counterparty_id="vendor-a", side=LedgerSide.PAYABLE, due_date=AS_OF + timedelta(days=1))

    with patch("apar.services.aging_service.AgingService._open_invoices", new_callable=AsyncMock) as mock_open:
        mock_open.return_value = [due_soon]

        response = client.get("/api/v1/aging/proposals", params={"days_threshold": 3})

        assert response.status_code == 200
        data = response.json()
        assert list(data) == ["vendor-a"]
        assert data["vendor-a"][0]["priority"] == "medium"
        assert data["vendor-a"][0]["balance_due_cents"] == 500
