from fastapi import APIRouter
from apar.api.v1.endpoints import allocations, statements, aging

api_router = APIRouter()

api_router.include_router(allocations.router, prefix="/allocations", tags=["allocations"])
api_router.include_router(statements.router, prefix="/statements", tags=["statements"])
api_router.include_router(aging.router, prefix="/aging", tags=["aging"])
