import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_worker
from app.models.user import User
from app.models.worker import Worker
from app.schemas.common import Envelope, ok
from app.schemas.earnings import (
    EarningsPeriod,
    EarningsProjectionResponse,
    EarningsSummaryResponse,
    EarningTransactionItem,
    MonthlyEarningsItem,
    PositionEarningsItem,
    ProjectionMethod,
    ProjectionPeriod,
)
from app.services import earnings as earnings_service
from app.utils.rate_limit import limiter

logger = structlog.get_logger()
router = APIRouter()


@router.get("/summary", response_model=Envelope[EarningsSummaryResponse])
@limiter.limit("30/minute")
async def get_summary(
    request: Request,
    period: EarningsPeriod = Query(EarningsPeriod.MONTH),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Total earnings for the period plus month-over-month comparison."""
    _, worker = worker_ctx
    earnings = await earnings_service.load_earnings(db, worker.id)
    return ok(earnings_service.summarize(earnings, period.value))


@router.get("/monthly", response_model=Envelope[list[MonthlyEarningsItem]])
@limiter.limit("30/minute")
async def get_monthly(
    request: Request,
    months: int = Query(12, ge=1, le=36),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    _, worker = worker_ctx
    earnings = await earnings_service.load_earnings(db, worker.id)
    return ok(earnings_service.monthly(earnings, months=months))


@router.get("/by-position", response_model=Envelope[list[PositionEarningsItem]])
@limiter.limit("30/minute")
async def get_by_position(
    request: Request,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    _, worker = worker_ctx
    earnings = await earnings_service.load_earnings(db, worker.id)
    return ok(earnings_service.by_position(earnings))


@router.get("/projection", response_model=Envelope[EarningsProjectionResponse])
@limiter.limit("30/minute")
async def get_projection(
    request: Request,
    period: ProjectionPeriod = Query(ProjectionPeriod.MONTH),
    method: ProjectionMethod = Query(ProjectionMethod.SIMPLE_AVERAGE),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Project future earnings from the last three months of completed bookings."""
    _, worker = worker_ctx
    earnings = await earnings_service.load_earnings(db, worker.id)
    try:
        projection = earnings_service.project(earnings, period=period.value, method=method.value)
    except earnings_service.NotEnoughDataError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ok(projection)


@router.get("/transactions", response_model=Envelope[list[EarningTransactionItem]])
@limiter.limit("30/minute")
async def get_transactions(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    _, worker = worker_ctx
    earnings = await earnings_service.load_earnings(db, worker.id)
    return ok(earnings_service.transactions(earnings, limit=limit, offset=offset))
