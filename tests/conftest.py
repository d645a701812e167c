import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from itertools import count
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from apar.core.clock import FixedClock, get_clock
from apar.db.mongo import get_db
from apar.main import app
from apar.models.base import LedgerSide
from apar.models.credit import CreditInstrument, CreditKind
from apar.models.invoice import Invoice
from apar.models.payment import Payment
from apar.repositories.stores import LedgerStores
from apar.services.exceptions import ConcurrentModification, NotFound


AS_OF = date(2024, 6, 30)
_created = count()


def _created_at():
    # Strictly increasing creation timestamps keep same-day ordering deterministic.
    return datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(_created))


# ===== MODEL FACTORIES =====

@pytest.fixture
def make_invoice():
    def _make(
        gross=1000,
        applied=0,
        counterparty_id="cust-1",
        side=LedgerSide.RECEIVABLE,
        issue_date=date(2024, 5, 1),
        due_date=None,
        **kwargs
    ):
        return Invoice(
            counterparty_id=counterparty_id,
            side=side,
            issue_date=issue_date,
            due_date=due_date or issue_date + timedelta(days=30),
            gross_amount_cents=gross,
            amount_applied_cents=applied,
            created_at=kwargs.pop("created_at", _created_at()),
            **kwargs
        )
    return _make


@pytest.fixture
def make_payment():
    def _make(
        amount=1000,
        applied=0,
        counterparty_id="cust-1",
        side=LedgerSide.RECEIVABLE,
        payment_date=date(2024, 6, 1),
        **kwargs
    ):
        return Payment(
            counterparty_id=counterparty_id,
            side=side,
            payment_date=payment_date,
            amount_cents=amount,
            amount_applied_cents=applied,
            created_at=kwargs.pop("created_at", _created_at()),
            **kwargs
        )
    return _make


@pytest.fixture
def make_credit():
    def _make(
        amount=200,
        applied=0,
        kind=CreditKind.CREDIT_NOTE,
        counterparty_id="cust-1",
        side=LedgerSide.RECEIVABLE,
        issue_date=date(2024, 5, 15),
        **kwargs
    ):
        return CreditInstrument(
            counterparty_id=counterparty_id,
            side=side,
            kind=kind,
            issue_date=issue_date,
            original_amount_cents=amount,
            amount_applied_cents=applied,
            created_at=kwargs.pop("created_at", _created_at()),
            **kwargs
        )
    return _make


# ===== MOTOR MOCKS =====

def _cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def mock_cursor():
    """Build a motor cursor stub yielding `docs`."""
    return _cursor


@pytest.fixture
def mock_collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.insert_many = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collection.find.return_value = _cursor([])
    return collection


@pytest.fixture
def mock_db(mock_collection):
    db = MagicMock()
    db.__getitem__.return_value = mock_collection
    return db


# ===== IN-MEMORY LEDGER =====
#
# Stands in for MongoDB with multi-document transactions: writes are buffered
# on the session and applied at commit, which re-checks every version the
# transaction read. Reads yield to the event loop so concurrent operations
# interleave the way they would against a real server.

class FakeSession:
    def __init__(self):
        self.writes = {}       # (collection, id) -> model
        self.expected = {}     # (collection, id) -> version read
        self.allocations = []


class FakeLedger:
    def __init__(self):
        self.records = {"invoices": {}, "payments": {}, "credit_instruments": {}}
        self.allocations = []
        self.commits = 0
        self.stores = LedgerStores(
            invoices=FakeInvoiceStore(self, "invoices", "Invoice"),
            credits=FakeCreditStore(self, "credit_instruments", "Credit instrument"),
            payments=FakePaymentStore(self, "payments", "Payment"),
            allocations=FakeAllocationStore(self),
        )

    def add(self, *entities):
        for entity in entities:
            if isinstance(entity, Invoice):
                self.records["invoices"][entity.id] = entity
            elif isinstance(entity, Payment):
                self.records["payments"][entity.id] = entity
            else:
                self.records["credit_instruments"][entity.id] = entity
        return entities[0] if len(entities) == 1 else entities

    def current(self, entity):
        for records in self.records.values():
            if entity.id in records:
                return records[entity.id]
        raise KeyError(entity.id)

    def commit(self, session):
        for (collection, entity_id), version in session.expected.items():
            stored = self.records[collection][entity_id]
            if stored.version != version:
                raise ConcurrentModification(
                    f"{entity_id} moved from version {version} to {stored.version}",
                    entity_id=entity_id,
                    expected_version=version,
                )
        for (collection, entity_id), entity in session.writes.items():
            self.records[collection][entity_id] = entity
        self.allocations.extend(session.allocations)
        self.commits += 1

    @asynccontextmanager
    async def transaction(self):
        session = FakeSession()
        yield session
        self.commit(session)

    @asynccontextmanager
    async def snapshot(self):
        yield FakeSession()


class FakeAppliedStore:
    def __init__(self, ledger, collection, label):
        self.ledger = ledger
        self.collection = collection
        self.label = label

    def _read(self, entity_id, session):
        if session is not None and (self.collection, entity_id) in session.writes:
            return session.writes[(self.collection, entity_id)]
        return self.ledger.records[self.collection].get(entity_id)

    def _all(self, session):
        return [self._read(entity_id, session) for entity_id in self.ledger.records[self.collection]]

    async def _get(self, entity_id, session=None):
        await asyncio.sleep(0)
        entity = self._read(entity_id, session)
        if entity is None:
            raise NotFound(self.label, entity_id)
        return entity

    async def save_applied(self, entity, session=None):
        await asyncio.sleep(0)
        stored = self.ledger.records[self.collection][entity.id]
        if stored.version != entity.version:
            raise ConcurrentModification(
                f"{entity.id} changed since version {entity.version}",
                entity_id=entity.id,
                expected_version=entity.version,
            )
        key = (self.collection, entity.id)
        session.expected.setdefault(key, entity.version)
        saved = entity.model_copy(update={"version": entity.version + 1})
        session.writes[key] = saved
        return saved


class FakeInvoiceStore(FakeAppliedStore):
    async def get_invoice(self, invoice_id, session=None):
        return await self._get(invoice_id, session)

    async def get_invoices(self, invoice_ids, session=None):
        return [await self._get(invoice_id, session) for invoice_id in invoice_ids]

    async def list_open_invoices(self, counterparty_id=None, side=None, session=None):
        await asyncio.sleep(0)
        return [
            inv for inv in self._all(session)
            if inv.is_open()
            and (counterparty_id is None or inv.counterparty_id == counterparty_id)
            and (side is None or inv.side == side)
        ]

    async def list_by_counterparty(self, counterparty_id, until=None, side=None, session=None):
        await asyncio.sleep(0)
        return [
            inv for inv in self._all(session)
            if inv.counterparty_id == counterparty_id
            and not inv.is_cancelled
            and (until is None or inv.issue_date <= until)
            and (side is None or inv.side == side)
        ]


class FakePaymentStore(FakeAppliedStore):
    async def get_payment(self, payment_id, session=None):
        return await self._get(payment_id, session)

    async def list_by_counterparty(self, counterparty_id, until=None, side=None, session=None):
        await asyncio.sleep(0)
        return [
            pay for pay in self._all(session)
            if pay.counterparty_id == counterparty_id
            and not pay.is_cancelled
            and (until is None or pay.payment_date <= until)
            and (side is None or pay.side == side)
        ]


class FakeCreditStore(FakeAppliedStore):
    async def get_instrument(self, instrument_id, session=None):
        return await self._get(instrument_id, session)

    async def list_usable(self, counterparty_id, side=None, kinds=None, session=None):
        await asyncio.sleep(0)
        kinds = None if kinds is None else {CreditKind(k) for k in kinds}
        usable = [
            inst for inst in self._all(session)
            if inst.counterparty_id == counterparty_id
            and inst.is_usable()
            and (side is None or inst.side == side)
            and (kinds is None or inst.kind in kinds)
        ]
        return sorted(usable, key=lambda inst: inst.issue_date)

    async def list_by_counterparty(self, counterparty_id, until=None, side=None, session=None):
        await asyncio.sleep(0)
        return [
            inst for inst in self._all(session)
            if inst.counterparty_id == counterparty_id
            and not inst.is_cancelled
            and (until is None or inst.issue_date <= until)
            and (side is None or inst.side == side)
        ]


class FakeAllocationStore:
    def __init__(self, ledger):
        self.ledger = ledger

    def _visible(self, session):
        pending = session.allocations if session is not None else []
        return [*self.ledger.allocations, *pending]

    async def insert_allocations(self, allocations, session=None):
        await asyncio.sleep(0)
        session.allocations.extend(allocations)
        return list(allocations)

    async def list_allocations_for(self, entity_id, session=None):
        await asyncio.sleep(0)
        return [
            a for a in self._visible(session)
            if a.source_id == entity_id or a.target_invoice_id == entity_id
        ]

    async def list_by_counterparty(self, counterparty_id, session=None):
        await asyncio.sleep(0)
        return [a for a in self._visible(session) if a.counterparty_id == counterparty_id]

    async def find_by_idempotency_key(self, key, session=None):
        await asyncio.sleep(0)
        return [a for a in self._visible(session) if a.idempotency_key == key]


@pytest.fixture
def ledger():
    return FakeLedger()


# ===== API =====

@pytest.fixture
def client():
    """TestClient with the database and clock dependencies stubbed out."""
    app.dependency_overrides[get_db] = lambda: MagicMock()
    app.dependency_overrides[get_clock] = lambda: FixedClock(AS_OF)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
