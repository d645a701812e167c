import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from apar.core.config import settings
from apar.db.mongo import connect_to_mongo, close_mongo_connection
from apar.api.v1.api import api_router
from apar.services.exceptions import (
    AgingConfigurationError,
    AllocationNotPermitted,
    ConcurrentModification,
    InsufficientFunds,
    InvalidAllocationAmount,
    InvalidPeriod,
    NotFound,
    ReconciliationTimeout,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
)


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(InvalidAllocationAmount)
@app.exception_handler(InsufficientFunds)
@app.exception_handler(AllocationNotPermitted)
@app.exception_handler(AgingConfigurationError)
@app.exception_handler(InvalidPeriod)
async def rejected_handler(request: Request, exc: Exception):
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(ConcurrentModification)
async def conflict_handler(request: Request, exc: ConcurrentModification):
    return _error(status.HTTP_409_CONFLICT, "The records changed while processing, please retry")


@app.exception_handler(ReconciliationTimeout)
async def timeout_handler(request: Request, exc: ReconciliationTimeout):
    return _error(status.HTTP_504_GATEWAY_TIMEOUT, str(exc))


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

app.include_router(api_router, prefix=settings.API_V1_STR)
