from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

from apar.core.clock import Clock, SystemClock
from apar.core.config import settings
from apar.db.session import snapshot_reads
from apar.models.aging import DEFAULT_BUCKETS, AgingBucket, AgingReport
from apar.models.base import LedgerSide
from apar.repositories.stores import LedgerStores
from apar.services.aging import classify
from apar.services.proposals import PaymentProposal, group_by_counterparty, propose_payments


class AgingService:
    def __init__(self, stores: LedgerStores, snapshot_factory: Callable, clock: Optional[Clock] = None):
        self.stores = stores
        self.snapshot = snapshot_factory
        self.clock = clock or SystemClock()

    @classmethod
    def for_db(cls, db, clock: Optional[Clock] = None) -> "AgingService":
        return cls(LedgerStores.from_db(db), lambda: snapshot_reads(db), clock=clock)

    async def _open_invoices(self, side, counterparty_id):
        async with self.snapshot() as session:
            return await self.stores.invoices.list_open_invoices(
                counterparty_id=counterparty_id, side=side, session=session
            )

    async def aging_report(
        self,
        side: Optional[LedgerSide] = None,
        counterparty_id: Optional[str] = None,
        as_of: Optional[date] = None,
        bucket_defs: Sequence[AgingBucket] = DEFAULT_BUCKETS,
    ) -> AgingReport:
        """Aging of open balances; as_of defaults to the injected clock's date."""
        invoices = await self._open_invoices(side, counterparty_id)
        return classify(invoices, as_of or self.clock.today(), bucket_defs)

    async def payment_proposals(
        self,
        side: Optional[LedgerSide] = LedgerSide.PAYABLE,
        days_threshold: Optional[int] = None,
        include_overdue: bool = True,
        as_of: Optional[date] = None,
    ) -> Dict[str, List[PaymentProposal]]:
        """Invoices worth paying now, grouped by counterparty."""
        invoices = await self._open_invoices(side, None)
        proposals = propose_payments(
            invoices,
            as_of or self.clock.today(),
            days_threshold=settings.PROPOSAL_DAYS_THRESHOLD if days_threshold is None else days_threshold,
            include_overdue=include_overdue,
            medium_priority_days=settings.PROPOSAL_MEDIUM_PRIORITY_DAYS,
        )
        return group_by_counterparty(proposals)
