from datetime import date
from typing import List, Optional, Sequence

from apar.models.base import LedgerSide
from apar.models.invoice import Invoice, InvoiceStatus
from apar.repositories.base import AppliedAmountRepository, until_filter
from apar.services.exceptions import NotFound


class InvoiceRepository(AppliedAmountRepository):
    """Invoice store."""

    collection_name = "invoices"
    entity_label = "Invoice"
    model = Invoice

    async def insert_invoice(self, invoice: Invoice, session=None) -> Invoice:
        return await self._insert(invoice, session=session)

    async def get_invoice(self, invoice_id: str, session=None) -> Invoice:
        return await self._get(invoice_id, session=session)

    async def get_invoices(self, invoice_ids: Sequence[str], session=None) -> List[Invoice]:
        """Fetch several invoices, returned in the order requested."""
        found = await self._find({"_id": {"$in": list(invoice_ids)}}, session=session)
        by_id = {inv.id: inv for inv in found}
        missing = [inv_id for inv_id in invoice_ids if inv_id not in by_id]
        if missing:
            raise NotFound(self.entity_label, missing[0])
        return [by_id[inv_id] for inv_id in invoice_ids]

    async def list_open_invoices(
        self,
        counterparty_id: Optional[str] = None,
        side: Optional[LedgerSide] = None,
        session=None,
    ) -> List[Invoice]:
        """Open and partially applied invoices, optionally for one counterparty/side."""
        query = {
            "status": {"$in": [InvoiceStatus.OPEN.value, InvoiceStatus.PARTIALLY_APPLIED.value]},
        }
        if counterparty_id is not None:
            query["counterparty_id"] = counterparty_id
        if side is not None:
            query["side"] = LedgerSide(side).value
        return await self._find(query, session=session)

    async def list_by_counterparty(
        self,
        counterparty_id: str,
        until: Optional[date] = None,
        side: Optional[LedgerSide] = None,
        session=None,
    ) -> List[Invoice]:
        """Every non-cancelled invoice issued up to `until` (inclusive)."""
        query = {
            "counterparty_id": counterparty_id,
            "is_cancelled": False,
            **until_filter("issue_date", until),
        }
        if side is not None:
            query["side"] = LedgerSide(side).value
        return await self._find(query, session=session)
