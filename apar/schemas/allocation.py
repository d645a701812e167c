from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from apar.services.allocation_engine import AllocationBatch
from apar.services.allocation_service import SettlementResult
from apar.services.credit_policy import CreditOrdering, NetPayablePlan


class AllocationLineIn(BaseModel):
    invoice_id: str
    amount_cents: Optional[int] = None


class AllocateRequest(BaseModel):
    """Request body to apply a source. No lines = auto (oldest due first)."""
    lines: Optional[List[AllocationLineIn]] = None
    clamp: Optional[bool] = None
    idempotency_key: Optional[str] = None

    def as_lines(self):
        if self.lines is None:
            return None
        return [(line.invoice_id, line.amount_cents) for line in self.lines]


class ApplyCreditRequest(BaseModel):
    amount_cents: Optional[int] = None
    include_advances: bool = False


class SettleRequest(BaseModel):
    payment_id: str
    ordering: Optional[CreditOrdering] = None
    clamp: Optional[bool] = None


class AllocationResponse(BaseModel):
    id: str
    batch_id: str
    source_id: str
    source_type: str
    target_invoice_id: str
    amount_cents: int
    applied_at: datetime


class InvoiceStateResponse(BaseModel):
    id: str
    reference: str
    gross_amount_cents: int
    amount_applied_cents: int
    balance_due_cents: int
    status: str


class AllocationBatchResponse(BaseModel):
    batch_id: str
    source_id: str
    source_type: str
    source_status: str
    source_available_cents: int
    total_cents: int
    replayed: bool = False
    allocations: List[AllocationResponse] = Field(default_factory=list)
    invoices: List[InvoiceStateResponse] = Field(default_factory=list)

    @classmethod
    def from_batch(cls, batch: AllocationBatch) -> "AllocationBatchResponse":
        return cls(
            batch_id=batch.batch_id,
            source_id=batch.source.id,
            source_type=batch.source.source_type,
            source_status=batch.source.status.value,
            source_available_cents=batch.source.available_amount_cents(),
            total_cents=batch.total_cents,
            replayed=batch.replayed,
            allocations=[
                AllocationResponse(
                    id=a.id,
                    batch_id=a.batch_id,
                    source_id=a.source_id,
                    source_type=a.source_type,
                    target_invoice_id=a.target_invoice_id,
                    amount_cents=a.amount_cents,
                    applied_at=a.applied_at,
                )
                for a in batch.allocations
            ],
            invoices=[
                InvoiceStateResponse(
                    id=inv.id,
                    reference=inv.reference,
                    gross_amount_cents=inv.gross_amount_cents,
                    amount_applied_cents=inv.amount_applied_cents,
                    balance_due_cents=inv.balance_due_cents(),
                    status=inv.status.value,
                )
                for inv in batch.invoices
            ],
        )


class SettlementResponse(BaseModel):
    invoice: InvoiceStateResponse
    plan: NetPayablePlan
    batches: List[AllocationBatchResponse]
    total_applied_cents: int

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementResponse":
        inv = result.invoice
        return cls(
            invoice=InvoiceStateResponse(
                id=inv.id,
                reference=inv.reference,
                gross_amount_cents=inv.gross_amount_cents,
                amount_applied_cents=inv.amount_applied_cents,
                balance_due_cents=inv.balance_due_cents(),
                status=inv.status.value,
            ),
            plan=result.plan,
            batches=[AllocationBatchResponse.from_batch(b) for b in result.batches],
            total_applied_cents=result.total_applied_cents,
        )
