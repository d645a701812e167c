from dataclasses import dataclass

from motor.motor_asyncio import AsyncIOMotorDatabase

from apar.repositories.allocation_repo import AllocationRepository
from apar.repositories.credit_repo import CreditInstrumentRepository
from apar.repositories.invoice_repo import InvoiceRepository
from apar.repositories.payment_repo import PaymentRepository


@dataclass
class LedgerStores:
    """The four collaborator stores the services work against."""
    invoices: InvoiceRepository
    credits: CreditInstrumentRepository
    payments: PaymentRepository
    allocations: AllocationRepository

    @classmethod
    def from_db(cls, db: AsyncIOMotorDatabase) -> "LedgerStores":
        return cls(
            invoices=InvoiceRepository(db),
            credits=CreditInstrumentRepository(db),
            payments=PaymentRepository(db),
            allocations=AllocationRepository(db),
        )
