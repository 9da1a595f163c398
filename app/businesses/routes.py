import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_business
from app.models.business import Business
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.profile import BusinessResponse, BusinessUpdateRequest
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


@router.get("/me", response_model=Envelope[BusinessResponse])
@limiter.limit("30/minute")
async def get_my_business(
    request: Request,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
):
    _, business = business_ctx
    return ok(business)


@router.put("/me", response_model=Envelope[BusinessResponse])
@limiter.limit("30/minute")
async def update_my_business(
    request: Request,
    body: BusinessUpdateRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Update the current business profile. Verification status is admin-only."""
    _, business = business_ctx

    UPDATABLE_FIELDS = {"name", "description", "phone", "email", "website", "address"}
    update_data = body.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if field not in UPDATABLE_FIELDS:
            continue
        if field == "website" and value is not None:
            value = str(value)
        setattr(business, field, value)

    await db.flush()
    logger.info("business_profile_updated", business_id=str(business.id), fields=sorted(update_data))
    return ok(business)


@router.get("/{business_id}", response_model=Envelope[BusinessResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_business_profile(
    request: Request,
    business_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Public business profile."""
    business = await db.get(Business, business_id)
    if business is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    return ok(business)
