from datetime import date
from typing import Iterable, List, Optional

from apar.models.base import LedgerSide
from apar.models.credit import CreditInstrument, CreditKind, CreditStatus
from apar.repositories.base import AppliedAmountRepository, until_filter


class CreditInstrumentRepository(AppliedAmountRepository):
    """Credit note / debit note / advance store."""

    collection_name = "credit_instruments"
    entity_label = "Credit instrument"
    model = CreditInstrument

    async def insert_instrument(self, instrument: CreditInstrument, session=None) -> CreditInstrument:
        return await self._insert(instrument, session=session)

    async def get_instrument(self, instrument_id: str, session=None) -> CreditInstrument:
        return await self._get(instrument_id, session=session)

    async def list_usable(
        self,
        counterparty_id: str,
        side: Optional[LedgerSide] = None,
        kinds: Optional[Iterable[CreditKind]] = None,
        session=None,
    ) -> List[CreditInstrument]:
        """Instruments with something left to apply, oldest first."""
        query = {
            "counterparty_id": counterparty_id,
            "status": {"$in": [CreditStatus.ACTIVE.value, CreditStatus.PARTIALLY_APPLIED.value]},
        }
        if side is not None:
            query["side"] = LedgerSide(side).value
        if kinds is not None:
            query["kind"] = {"$in": [CreditKind(k).value for k in kinds]}
        instruments = await self._find(query, session=session, sort_field="issue_date")
        return [inst for inst in instruments if inst.is_usable()]

    async def list_by_counterparty(
        self,
        counterparty_id: str,
        until: Optional[date] = None,
        side: Optional[LedgerSide] = None,
        session=None,
    ) -> List[CreditInstrument]:
        query = {
            "counterparty_id": counterparty_id,
            "is_cancelled": False,
            **until_filter("issue_date", until),
        }
        if side is not None:
            query["side"] = LedgerSide(side).value
        return await self._find(query, session=session)
