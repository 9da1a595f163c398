import structlog
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_admin
from app.models.cancellation import CancellationReason
from app.models.user import User
from app.schemas.cancellation import CancellationReasonCreateRequest, CancellationReasonResponse
from app.schemas.common import Envelope, ok
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=Envelope[list[CancellationReasonResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_reasons(request: Request, db: AsyncSession = Depends(get_db)):
    """Active cancellation reasons in display order."""
    result = await db.execute(
        select(CancellationReason)
        .where(CancellationReason.is_active.is_(True))
        .order_by(CancellationReason.sort_order, CancellationReason.name)
    )
    return ok(result.scalars().all())


@router.post("", response_model=Envelope[CancellationReasonResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_reason(
    request: Request,
    body: CancellationReasonCreateRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    reason = CancellationReason(**body.model_dump(), is_active=True)
    db.add(reason)
    await db.flush()
    logger.info("cancellation_reason_created", reason_id=str(reason.id), admin_id=str(admin.id))
    return ok(reason)
