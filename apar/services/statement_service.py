import asyncio
import logging
from datetime import date
from typing import Callable, Optional

from apar.core.config import settings
from apar.db.session import snapshot_reads
from apar.models.base import LedgerSide
from apar.models.ledger import Statement
from apar.repositories.stores import LedgerStores
from apar.services.exceptions import InvalidPeriod, NotFound, ReconciliationTimeout
from apar.services.reconciliation import reconcile

logger = logging.getLogger(__name__)


class StatementService:
    """Counterparty statements over a consistent snapshot, bounded in time."""

    def __init__(self, stores: LedgerStores, snapshot_factory: Callable, timeout_seconds: Optional[float] = None):
        self.stores = stores
        self.snapshot = snapshot_factory
        self.timeout_seconds = settings.RECONCILIATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    @classmethod
    def for_db(cls, db) -> "StatementService":
        return cls(LedgerStores.from_db(db), lambda: snapshot_reads(db))

    async def reconcile(
        self,
        counterparty_id: str,
        period_start: date,
        period_end: date,
        side: Optional[LedgerSide] = None,
        timeout: Optional[float] = None,
    ) -> Statement:
        """
        Build the statement, or raise ReconciliationTimeout.

        A partial statement is never returned: on timeout the read is
        cancelled and nothing comes back.
        """
        if period_start > period_end:
            raise InvalidPeriod(period_start, period_end)

        budget = self.timeout_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                self._build(counterparty_id, period_start, period_end, side),
                timeout=budget,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "Statement for %s (%s..%s) exceeded %.1fs",
                counterparty_id, period_start, period_end, budget,
            )
            raise ReconciliationTimeout(
                f"Statement for '{counterparty_id}' did not complete within {budget}s"
            ) from exc

    async def _build(self, counterparty_id, period_start, period_end, side) -> Statement:
        async with self.snapshot() as session:
            invoices = await self.stores.invoices.list_by_counterparty(
                counterparty_id, until=period_end, side=side, session=session
            )
            payments = await self.stores.payments.list_by_counterparty(
                counterparty_id, until=period_end, side=side, session=session
            )
            credits = await self.stores.credits.list_by_counterparty(
                counterparty_id, until=period_end, side=side, session=session
            )
            allocations = await self.stores.allocations.list_by_counterparty(counterparty_id, session=session)

        if not (invoices or payments or credits):
            if not await self._has_documents(counterparty_id, side):
                raise NotFound("Counterparty", counterparty_id)
            logger.info("No documents for %s up to %s", counterparty_id, period_end)

        return reconcile(
            counterparty_id,
            period_start,
            period_end,
            invoices,
            payments,
            credits,
            allocations=allocations,
        )

    async def _has_documents(self, counterparty_id, side) -> bool:
        # Documents dated after the period still make the counterparty known.
        async with self.snapshot() as session:
            for store in (self.stores.invoices, self.stores.payments, self.stores.credits):
                if await store.list_by_counterparty(counterparty_id, side=side, session=session):
                    return True
        return False
