from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends

from apar.core.clock import get_clock
from apar.db.mongo import get_db
from apar.models.aging import AgingReport
from apar.models.base import LedgerSide
from apar.services.aging_service import AgingService
from apar.services.proposals import PaymentProposal

router = APIRouter()


@router.get("/", response_model=AgingReport)
async def get_aging(
    side: Optional[LedgerSide] = None,
    counterparty_id: Optional[str] = None,
    as_of: Optional[date] = None,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Open balances by days past due"""
    service = AgingService.for_db(db, clock)
    return await service.aging_report(side=side, counterparty_id=counterparty_id, as_of=as_of)


@router.get("/proposals", response_model=Dict[str, List[PaymentProposal]])
async def get_payment_proposals(
    side: LedgerSide = LedgerSide.PAYABLE,
    days_threshold: Optional[int] = None,
    include_overdue: bool = True,
    as_of: Optional[date] = None,
    db = Depends(get_db),
    clock = Depends(get_clock)
):
    """Invoices due soon (and overdue), grouped by counterparty"""
    service = AgingService.for_db(db, clock)
    return await service.payment_proposals(
        side=side,
        days_threshold=days_threshold,
        include_overdue=include_overdue,
        as_of=as_of,
    )
