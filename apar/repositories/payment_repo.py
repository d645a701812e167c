from datetime import date
from typing import List, Optional

from apar.models.base import LedgerSide
from apar.models.payment import Payment
from apar.repositories.base import AppliedAmountRepository, until_filter


class PaymentRepository(AppliedAmountRepository):
    """Payment (AP) / receipt (AR) store."""

    collection_name = "payments"
    entity_label = "Payment"
    model = Payment

    async def insert_payment(self, payment: Payment, session=None) -> Payment:
        return await self._insert(payment, session=session)

    async def get_payment(self, payment_id: str, session=None) -> Payment:
        return await self._get(payment_id, session=session)

    async def list_by_counterparty(
        self,
        counterparty_id: str,
        until: Optional[date] = None,
        side: Optional[LedgerSide] = None,
        session=None,
    ) -> List[Payment]:
        query = {
            "counterparty_id": counterparty_id,
            "is_cancelled": False,
            **until_filter("payment_date", until),
        }
        if side is not None:
            query["side"] = LedgerSide(side).value
        return await self._find(query, session=session)
