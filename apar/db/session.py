from contextlib import asynccontextmanager

from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from apar.services.exceptions import ConcurrentModification


@asynccontextmanager
async def transaction(db):
    """
    One client session + transaction per logical operation.

    Everything written through the yielded session commits together or not at
    all. Write conflicts reported by the server surface as
    ConcurrentModification so callers can retry against fresh balances.
    """
    try:
        async with await db.client.start_session() as session:
            async with session.start_transaction(write_concern=WriteConcern("majority")):
                yield session
    except PyMongoError as exc:
        if exc.has_error_label("TransientTransactionError"):
            raise ConcurrentModification("Write conflict during commit") from exc
        raise


@asynccontextmanager
async def snapshot_reads(db):
    """Read-only session pinned to a single snapshot (no mixed commit states)."""
    async with await db.client.start_session() as session:
        async with session.start_transaction(read_concern=ReadConcern("snapshot")):
            yield session
