from typing import List

from fastapi import APIRouter, Depends

from apar.core.clock import get_clock
from apar.db.mongo import get_db
from apar.models.credit import CreditKind, NOTE_KINDS
from apar.schemas.allocation import (
    AllocateRequest,
    AllocationBatchResponse,
    ApplyCreditRequest,
    SettleRequest,
    SettlementResponse,
)
from apar.services.allocation_service import AllocationService

router = APIRouter()


@router.post("/payments/{payment_id}", response_model=AllocationBatchResponse)
async def allocate_payment(
    payment_id: str,
    payload: AllocateRequest,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Apply a payment or receipt to invoices"""
    service = AllocationService.for_db(db, clock)
    batch = await service.allocate_payment(
        payment_id,
        lines=payload.as_lines(),
        clamp=payload.clamp,
        idempotency_key=payload.idempotency_key,
    )
    return AllocationBatchResponse.from_batch(batch)


@router.post("/credits/{instrument_id}", response_model=AllocationBatchResponse)
async def allocate_credit(
    instrument_id: str,
    payload: AllocateRequest,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Apply a credit note, debit note or advance to invoices"""
    service = AllocationService.for_db(db, clock)
    batch = await service.allocate_credit(
        instrument_id,
        lines=payload.as_lines(),
        clamp=payload.clamp,
        idempotency_key=payload.idempotency_key,
    )
    return AllocationBatchResponse.from_batch(batch)


@router.post("/invoices/{invoice_id}/apply-credit", response_model=List[AllocationBatchResponse])
async def apply_credit(
    invoice_id: str,
    payload: ApplyCreditRequest,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Offset an invoice with available credit, oldest first"""
    kinds = (*NOTE_KINDS, CreditKind.ADVANCE) if payload.include_advances else NOTE_KINDS
    service = AllocationService.for_db(db, clock)
    batches = await service.apply_credit_to_invoice(invoice_id, amount_cents=payload.amount_cents, kinds=kinds)
    return [AllocationBatchResponse.from_batch(b) for b in batches]


@router.post("/invoices/{invoice_id}/settle", response_model=SettlementResponse)
async def settle_invoice(
    invoice_id: str,
    payload: SettleRequest,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Consume credits and advances, then pay the net amount"""
    service = AllocationService.for_db(db, clock)
    result = await service.settle_invoice(
        invoice_id,
        payload.payment_id,
        ordering=payload.ordering,
        clamp=payload.clamp,
    )
    return SettlementResponse.from_result(result)
