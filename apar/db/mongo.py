import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from apar.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    # Invoice indexes
    await mongodb.db["invoices"].create_index([("counterparty_id", 1), ("side", 1), ("status", 1)])
    await mongodb.db["invoices"].create_index([("counterparty_id", 1), ("issue_date", 1)])

    # Credit instruments (credit notes, debit notes, advances)
    await mongodb.db["credit_instruments"].create_index([("counterparty_id", 1), ("kind", 1), ("status", 1)])
    await mongodb.db["credit_instruments"].create_index([("counterparty_id", 1), ("issue_date", 1)])

    # Payments / receipts
    await mongodb.db["payments"].create_index([("counterparty_id", 1), ("payment_date", 1)])

    # Allocation log
    await mongodb.db["allocations"].create_index("source_id")
    await mongodb.db["allocations"].create_index("target_invoice_id")
    await mongodb.db["allocations"].create_index("idempotency_key", sparse=True)

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
