# apar/services/allocation_service.py

"""
ALLOCATION SERVICE

Runs the allocation engine against the stores.

RULES:
- One transaction per logical operation: the allocation inserts and every
  amount_applied update of that operation commit together or not at all.
- Updates are conditional on the version read at the start of the
  operation. A ConcurrentModification aborts the transaction and the whole
  operation is replayed against fresh balances (ALLOCATION_MAX_RETRIES).
- A repeated idempotency key returns the recorded batch and writes nothing.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from apar.core.clock import Clock, SystemClock
from apar.core.config import settings
from apar.db.session import transaction
from apar.models.credit import CreditInstrument, CreditKind, NOTE_KINDS
from apar.models.invoice import Invoice
from apar.repositories.stores import LedgerStores
from apar.services.allocation_engine import (
    AllocationBatch,
    ConservationBreach,
    FundingSource,
    allocate,
    applied_from_log,
    check_conservation,
)
from apar.services.credit_policy import CreditOrdering, NetPayablePlan, consume, plan_net_payable
from apar.services.exceptions import (
    AllocationNotPermitted,
    ConcurrentModification,
    InvalidAllocationAmount,
    ReconciliationDiscrepancy,
)

logger = logging.getLogger(__name__)

# (invoice_id, requested_cents or None for auto mode)
AllocationLine = Tuple[str, Optional[int]]


@dataclass
class SettlementResult:
    invoice: Invoice
    plan: NetPayablePlan
    batches: List[AllocationBatch] = field(default_factory=list)

    @property
    def total_applied_cents(self) -> int:
        return sum(batch.total_cents for batch in self.batches)


class AllocationService:
    def __init__(
        self,
        stores: LedgerStores,
        transaction_factory: Callable,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
        clamp_default: Optional[bool] = None,
        credit_ordering: Optional[str] = None,
    ):
        self.stores = stores
        self.transaction = transaction_factory
        self.clock = clock or SystemClock()
        self.max_retries = settings.ALLOCATION_MAX_RETRIES if max_retries is None else max_retries
        self.clamp_default = settings.ALLOCATION_CLAMP_DEFAULT if clamp_default is None else clamp_default
        self.credit_ordering = CreditOrdering(credit_ordering or settings.CREDIT_ORDERING)

    @classmethod
    def for_db(cls, db, clock: Optional[Clock] = None) -> "AllocationService":
        return cls(LedgerStores.from_db(db), lambda: transaction(db), clock=clock)

    # ===== PUBLIC OPERATIONS =====

    async def allocate_payment(
        self,
        payment_id: str,
        lines: Optional[Sequence[AllocationLine]] = None,
        clamp: Optional[bool] = None,
        idempotency_key: Optional[str] = None,
    ) -> AllocationBatch:
        """
        Apply a payment/receipt to invoices.

        `lines=None` spreads the payment over the counterparty's open
        invoices, oldest due date first.
        """
        return await self._with_retry(
            f"payment {payment_id}",
            lambda: self._allocate_source(
                self.stores.payments.get_payment, payment_id, lines, clamp, idempotency_key
            ),
        )

    async def allocate_credit(
        self,
        instrument_id: str,
        lines: Optional[Sequence[AllocationLine]] = None,
        clamp: Optional[bool] = None,
        idempotency_key: Optional[str] = None,
    ) -> AllocationBatch:
        """Apply a credit note, debit note or advance to invoices."""
        return await self._with_retry(
            f"credit instrument {instrument_id}",
            lambda: self._allocate_source(
                self.stores.credits.get_instrument, instrument_id, lines, clamp, idempotency_key
            ),
        )

    async def apply_credit_to_invoice(
        self,
        invoice_id: str,
        amount_cents: Optional[int] = None,
        kinds: Iterable[CreditKind] = NOTE_KINDS,
    ) -> List[AllocationBatch]:
        """
        Offset an invoice with the counterparty's usable instruments of `kinds`,
        oldest first. `amount_cents` defaults to the whole balance due.
        """
        kinds = tuple(kinds)
        return await self._with_retry(
            f"credit for invoice {invoice_id}",
            lambda: self._apply_credit(invoice_id, amount_cents, kinds),
        )

    async def settle_invoice(
        self,
        invoice_id: str,
        payment_id: str,
        ordering: Optional[CreditOrdering] = None,
        clamp: Optional[bool] = None,
    ) -> SettlementResult:
        """
        Net-payable processing: consume credits and advances (in `ordering`),
        then apply the payment to what is left.
        """
        ordering = CreditOrdering(ordering or self.credit_ordering)
        return await self._with_retry(
            f"settlement of invoice {invoice_id}",
            lambda: self._settle(invoice_id, payment_id, ordering, clamp),
        )

    async def rebuild_applied_amounts(self, entity_id: str, entity_kind: str):
        """
        Recompute amount_applied_cents of one invoice/payment/credit instrument
        from the allocation log and persist it if the stored value drifted.
        """
        return await self._with_retry(
            f"rebuild of {entity_kind} {entity_id}",
            lambda: self._rebuild(entity_id, entity_kind),
        )

    async def verify_conservation(self, counterparty_id: str) -> List[ConservationBreach]:
        """Every document of the counterparty whose applied amount disagrees with the log."""
        async with self.transaction() as session:
            invoices = await self.stores.invoices.list_by_counterparty(counterparty_id, session=session)
            payments = await self.stores.payments.list_by_counterparty(counterparty_id, session=session)
            credits = await self.stores.credits.list_by_counterparty(counterparty_id, session=session)
            allocations = await self.stores.allocations.list_by_counterparty(counterparty_id, session=session)
        return check_conservation([*invoices, *payments, *credits], allocations)

    # ===== PRIVATE HELPERS =====

    async def _with_retry(self, label: str, operation):
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except ConcurrentModification as exc:
                if attempt == attempts:
                    logger.error("Giving up on %s after %d attempts: %s", label, attempt, exc)
                    raise
                logger.warning("Conflict on %s (attempt %d/%d): %s", label, attempt, attempts, exc)

    def _resolve_clamp(self, clamp: Optional[bool]) -> bool:
        return self.clamp_default if clamp is None else clamp

    async def _allocate_source(self, getter, source_id, lines, clamp, idempotency_key) -> AllocationBatch:
        async with self.transaction() as session:
            if idempotency_key:
                previous = await self.stores.allocations.find_by_idempotency_key(idempotency_key, session=session)
                if previous:
                    return await self._replay(getter, source_id, previous, session)

            source = await getter(source_id, session=session)
            targets = await self._targets(source, lines, session)
            batch = allocate(
                source,
                targets,
                clamp=self._resolve_clamp(clamp),
                applied_at=self.clock.now(),
                idempotency_key=idempotency_key,
            )
            if not batch.allocations:
                return batch
            committed = await self._commit([batch], session)
            return committed[0]

    async def _targets(self, source: FundingSource, lines, session) -> List[Tuple[Invoice, Optional[int]]]:
        if lines is None:
            invoices = await self.stores.invoices.list_open_invoices(
                counterparty_id=source.counterparty_id, side=source.side, session=session
            )
            return [(invoice, None) for invoice in invoices]

        invoice_ids = [invoice_id for invoice_id, _ in lines]
        invoices = await self.stores.invoices.get_invoices(invoice_ids, session=session)
        return [(invoice, amount) for invoice, (_, amount) in zip(invoices, lines)]

    async def _replay(self, getter, source_id, previous, session) -> AllocationBatch:
        if any(a.source_id != source_id for a in previous):
            raise AllocationNotPermitted("Idempotency key was already used for a different source")
        source = await getter(source_id, session=session)
        invoice_ids = list(dict.fromkeys(a.target_invoice_id for a in previous))
        invoices = await self.stores.invoices.get_invoices(invoice_ids, session=session)
        logger.info("Idempotent replay of batch %s for source %s", previous[0].batch_id, source_id)
        return AllocationBatch(
            batch_id=previous[0].batch_id,
            source=source,
            invoices=invoices,
            allocations=previous,
            replayed=True,
        )

    async def _apply_credit(self, invoice_id, amount_cents, kinds) -> List[AllocationBatch]:
        async with self.transaction() as session:
            invoice = await self.stores.invoices.get_invoice(invoice_id, session=session)
            if not invoice.is_open():
                raise AllocationNotPermitted(f"Invoice '{invoice_id}' is {invoice.status.value}")

            balance = invoice.balance_due_cents()
            target = balance if amount_cents is None else amount_cents
            if target <= 0 or target > balance:
                raise InvalidAllocationAmount(
                    f"Credit of {target} for invoice '{invoice_id}' must be within 1..{balance}",
                    invoice_id=invoice_id,
                    requested_cents=target,
                    limit_cents=balance,
                )

            pool = await self.stores.credits.list_usable(
                invoice.counterparty_id, side=invoice.side, kinds=kinds, session=session
            )
            by_id = {inst.id: inst for inst in pool}
            batches, _ = self._chain_credit_batches(invoice, consume(pool, target), by_id)
            return await self._commit(batches, session)

    async def _settle(self, invoice_id, payment_id, ordering, clamp) -> SettlementResult:
        async with self.transaction() as session:
            invoice = await self.stores.invoices.get_invoice(invoice_id, session=session)
            payment = await self.stores.payments.get_payment(payment_id, session=session)
            if not invoice.is_open():
                raise AllocationNotPermitted(f"Invoice '{invoice_id}' is {invoice.status.value}")

            pool = await self.stores.credits.list_usable(
                invoice.counterparty_id, side=invoice.side, session=session
            )
            plan = plan_net_payable(invoice.balance_due_cents(), pool, ordering)
            by_id = {inst.id: inst for inst in pool}
            batches, current = self._chain_credit_batches(invoice, plan.lines, by_id)

            if plan.net_payable_cents > 0:
                batches.append(allocate(
                    payment,
                    [(current, plan.net_payable_cents)],
                    clamp=self._resolve_clamp(clamp),
                    applied_at=self.clock.now(),
                ))

            committed = await self._commit(batches, session)
            final_invoice = committed[-1].invoices[-1] if committed and committed[-1].invoices else invoice
            return SettlementResult(invoice=final_invoice, plan=plan, batches=committed)

    def _chain_credit_batches(
        self,
        invoice: Invoice,
        lines,
        by_id: Dict[str, CreditInstrument],
    ) -> Tuple[List[AllocationBatch], Invoice]:
        """One batch per consumed instrument, each building on the previous invoice state."""
        batches = []
        current = invoice
        for line in lines:
            batch = allocate(
                by_id[line.instrument_id],
                [(current, line.amount_cents)],
                applied_at=self.clock.now(),
            )
            current = batch.invoices[0]
            batches.append(batch)
        return batches, current

    async def _commit(self, batches: List[AllocationBatch], session) -> List[AllocationBatch]:
        """
        Persist a set of batches inside the caller's transaction.

        Each touched record is written once with its final amount, guarded by
        the version it was read at.
        """
        batches = [b for b in batches if b.allocations]
        if not batches:
            return []

        saved_sources: Dict[str, FundingSource] = {}
        saved_invoices: Dict[str, Invoice] = {}

        final_sources = {b.source.id: b.source for b in batches}
        final_invoices: Dict[str, Invoice] = {}
        for b in batches:
            for inv in b.invoices:
                final_invoices[inv.id] = inv

        for source_id, source in final_sources.items():
            repo = self.stores.credits if isinstance(source, CreditInstrument) else self.stores.payments
            saved_sources[source_id] = await repo.save_applied(source, session=session)
        for inv_id, inv in final_invoices.items():
            saved_invoices[inv_id] = await self.stores.invoices.save_applied(inv, session=session)

        allocations = [a for b in batches for a in b.allocations]
        await self.stores.allocations.insert_allocations(allocations, session=session)

        for b in batches:
            logger.info(
                "Committed batch %s: %s %s -> %d invoice(s), %d cents",
                b.batch_id, b.source.source_type, b.source.id, len(b.invoices), b.total_cents,
            )

        return [
            AllocationBatch(
                batch_id=b.batch_id,
                source=saved_sources[b.source.id],
                invoices=[saved_invoices[inv.id] for inv in b.invoices],
                allocations=b.allocations,
            )
            for b in batches
        ]

    async def _rebuild(self, entity_id: str, entity_kind: str):
        getters = {
            "invoice": (self.stores.invoices, self.stores.invoices.get_invoice, "target"),
            "payment": (self.stores.payments, self.stores.payments.get_payment, "source"),
            "credit": (self.stores.credits, self.stores.credits.get_instrument, "source"),
        }
        if entity_kind not in getters:
            raise ValueError(f"entity_kind must be one of {sorted(getters)}, got {entity_kind!r}")
        repo, getter, role = getters[entity_kind]

        async with self.transaction() as session:
            entity = await getter(entity_id, session=session)
            allocations = await self.stores.allocations.list_allocations_for(entity_id, session=session)
            logged = applied_from_log(entity_id, allocations, role)
            if logged == entity.amount_applied_cents:
                return entity

            total = entity.gross_amount_cents if role == "target" else entity.total_cents
            if logged > total:
                raise ReconciliationDiscrepancy(
                    f"Allocations against {entity_kind} '{entity_id}' sum to {logged}, above its total {total}",
                    discrepancy_cents=logged - total,
                )

            logger.warning(
                "Rebuilding %s %s: stored %d, allocation log %d",
                entity_kind, entity_id, entity.amount_applied_cents, logged,
            )
            rebuilt = entity.model_copy(update={"amount_applied_cents": logged})
            return await repo.save_applied(rebuilt, session=session)
