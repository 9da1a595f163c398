import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_business
from app.models.business import Business
from app.models.compliance import ComplianceTracking
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.compliance import ComplianceCheckResponse, ComplianceRecordResponse
from app.services import compliance
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter
from app.utils.timeutil import parse_month

router = APIRouter()


@router.get("/check", response_model=Envelope[ComplianceCheckResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def check_compliance(
    request: Request,
    worker_id: uuid.UUID,
    month: str | None = Query(None, pattern=r"^\d{4}-\d{2}$"),
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Days a worker has worked for the calling business in a month, and whether another booking is allowed."""
    _, business = business_ctx
    target_month = None
    if month:
        try:
            target_month = parse_month(month)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="month must be YYYY-MM")

    try:
        result = await compliance.check_before_accept(db, worker_id, business.id, target_month)
    except compliance.ComplianceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ok(result)


@router.get("/records", response_model=Envelope[list[ComplianceRecordResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_records(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Tracked monthly day counts for the calling business, for audits. Most recent month first."""
    _, business = business_ctx
    result = await db.execute(
        select(ComplianceTracking)
        .where(ComplianceTracking.business_id == business.id)
        .options(selectinload(ComplianceTracking.worker))
        .order_by(ComplianceTracking.month.desc(), ComplianceTracking.days_worked.desc())
        .limit(limit)
        .offset(offset)
    )
    return ok(result.scalars().all())
