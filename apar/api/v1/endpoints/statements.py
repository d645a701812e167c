from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from apar.db.mongo import get_db
from apar.models.base import LedgerSide
from apar.models.ledger import Statement
from apar.services.statement_service import StatementService

router = APIRouter()


@router.get("/{counterparty_id}", response_model=Statement)
async def get_statement(
    counterparty_id: str,
    period_start: date,
    period_end: date,
    side: Optional[LedgerSide] = None,
    db = Depends(get_db)
):
    """Running-balance statement for a counterparty over a period"""
    service = StatementService.for_db(db)
    return await service.reconcile(counterparty_id, period_start, period_end, side=side)
