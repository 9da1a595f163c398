import uuid
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_admin
from app.models.audit_log import AuditLog
from app.models.booking import Booking
from app.models.dispute import Dispute
from app.models.enums import ACTIVE_DISPUTE_STATUSES, BookingStatus, UserRole
from app.models.social import SocialPlatform
from app.models.user import User
from app.schemas.admin import AuditLogResponse, DeactivateUserRequest, PlatformStatsResponse
from app.schemas.auth import UserResponse
from app.schemas.common import Envelope, ok
from app.schemas.social import SocialPlatformCreateRequest, SocialPlatformResponse
from app.utils.rate_limit import limiter

logger = structlog.get_logger()
router = APIRouter()


# --- 1. Platform stats ---


@router.get("/stats", response_model=Envelope[PlatformStatsResponse])
@limiter.limit("30/minute")
async def platform_stats(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """High-level platform statistics."""
    role_counts = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    status_counts = await db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status))
    bookings_by_status = {BookingStatus(s).value: c for s, c in status_counts.all()}

    volume = await db.execute(
        select(func.coalesce(func.sum(Booking.final_price), 0)).where(Booking.status == BookingStatus.COMPLETED)
    )
    open_disputes = await db.execute(
        select(func.count(Dispute.id)).where(Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
    )

    return ok({
        "users_by_role": {UserRole(role).value: count for role, count in role_counts.all()},
        "total_bookings": sum(bookings_by_status.values()),
        "bookings_by_status": bookings_by_status,
        "completed_volume": Decimal(str(volume.scalar() or 0)),
        "open_disputes": open_disputes.scalar() or 0,
    })


# --- 2. Users ---


@router.get("/users", response_model=Envelope[list[UserResponse]])
@limiter.limit("30/minute")
async def list_users(
    request: Request,
    role: UserRole | None = Query(None),
    is_active: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(User)
    if role is not None:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    result = await db.execute(stmt.order_by(User.created_at.desc()).offset(offset).limit(limit))
    return ok(result.scalars().all())


@router.patch("/users/{user_id}/deactivate", response_model=Envelope[UserResponse])
@limiter.limit("10/minute")
async def deactivate_user(
    request: Request,
    user_id: uuid.UUID,
    body: DeactivateUserRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate an account. Deactivated users cannot log in or refresh tokens."""
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.role == UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot deactivate admin users")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already deactivated")

    user.is_active = False
    db.add(AuditLog(
        action="deactivate_user",
        actor_user_id=admin.id,
        target_user_id=user.id,
        detail=body.reason,
    ))
    await db.flush()
    logger.info("user_deactivated", user_id=str(user.id), admin_id=str(admin.id))
    return ok(user)


@router.patch("/users/{user_id}/reactivate", response_model=Envelope[UserResponse])
@limiter.limit("10/minute")
async def reactivate_user(
    request: Request,
    user_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already active")

    user.is_active = True
    db.add(AuditLog(action="reactivate_user", actor_user_id=admin.id, target_user_id=user.id))
    await db.flush()
    logger.info("user_reactivated", user_id=str(user.id), admin_id=str(admin.id))
    return ok(user)


# --- 3. Audit trail ---


@router.get("/audit-logs", response_model=Envelope[list[AuditLogResponse]])
@limiter.limit("30/minute")
async def list_audit_logs(
    request: Request,
    action: str | None = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Privileged actions, newest first."""
    stmt = select(AuditLog)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    result = await db.execute(stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit))
    return ok(result.scalars().all())


# --- 4. Social platforms ---


@router.post("/social-platforms", response_model=Envelope[SocialPlatformResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_social_platform(
    request: Request,
    body: SocialPlatformCreateRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(
        select(SocialPlatform.id).where(SocialPlatform.platform_name == body.platform_name)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Platform already exists")

    platform = SocialPlatform(
        platform_name=body.platform_name,
        platform_type=body.platform_type,
        webhook_url=str(body.webhook_url) if body.webhook_url else None,
        is_available=body.is_available,
    )
    db.add(platform)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Platform already exists")

    logger.info("social_platform_created", platform_id=str(platform.id), admin_id=str(admin.id))
    return ok(platform)
