import re
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_business, get_current_user, get_current_worker
from app.models.audit_log import AuditLog
from app.models.badge import Badge, WorkerBadge
from app.models.business import Business
from app.models.enums import BadgeCategory, BadgeVerificationStatus, NotificationType, UserRole
from app.models.user import User
from app.models.worker import Worker
from app.schemas.badge import (
    BadgeCreateRequest,
    BadgeResponse,
    BadgeVerifyRequest,
    PendingVerificationResponse,
    WorkerBadgeDetailResponse,
    WorkerBadgeResponse,
)
from app.schemas.common import Envelope, ok
from app.schemas.profile import WorkerResponse
from app.services.notifications import notify_safely
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter
from app.utils.timeutil import utcnow

logger = structlog.get_logger()
router = APIRouter()

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_STRIP.sub("-", name.lower()).strip("-")


@router.get("", response_model=Envelope[list[BadgeResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_badges(
    request: Request,
    search: str | None = Query(None, max_length=100),
    category: BadgeCategory | None = Query(None),
    is_certified: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    query = select(Badge)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Badge.name.ilike(pattern), Badge.description.ilike(pattern)))
    if category:
        query = query.where(Badge.category == category)
    if is_certified is not None:
        query = query.where(Badge.is_certified.is_(is_certified))
    result = await db.execute(query.order_by(Badge.name))
    return ok(result.scalars().all())


@router.post("", response_model=Envelope[BadgeResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_badge(
    request: Request,
    body: BadgeCreateRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Define a badge this business can verify for workers."""
    _, business = business_ctx
    slug = slugify(body.name)
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Badge name must contain letters or digits")

    existing = await db.execute(select(Badge.id).where(Badge.slug == slug))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A badge with this name already exists")

    badge = Badge(
        name=body.name,
        slug=slug,
        description=body.description,
        icon=body.icon,
        category=body.category,
        industry=body.industry,
        provider_id=business.id,
        is_certified=body.is_certified,
    )
    db.add(badge)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A badge with this name already exists")

    logger.info("badge_created", badge_id=str(badge.id), provider_id=str(business.id))
    return ok(badge)


@router.get("/me", response_model=Envelope[list[WorkerBadgeDetailResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def my_badges(
    request: Request,
    verification_status: BadgeVerificationStatus | None = Query(None, alias="status"),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    _, worker = worker_ctx
    query = (
        select(WorkerBadge)
        .where(WorkerBadge.worker_id == worker.id)
        .options(selectinload(WorkerBadge.badge))
    )
    if verification_status:
        query = query.where(WorkerBadge.verification_status == verification_status)
    result = await db.execute(query.order_by(WorkerBadge.created_at.desc()))
    return ok(result.scalars().all())


@router.get("/pending-verifications", response_model=Envelope[list[PendingVerificationResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def pending_verifications(
    request: Request,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Pending requests for badges this business provides, oldest first."""
    _, business = business_ctx
    result = await db.execute(
        select(WorkerBadge)
        .join(Badge, Badge.id == WorkerBadge.badge_id)
        .where(
            Badge.provider_id == business.id,
            WorkerBadge.verification_status == BadgeVerificationStatus.PENDING,
        )
        .options(selectinload(WorkerBadge.badge), selectinload(WorkerBadge.worker))
        .order_by(WorkerBadge.created_at.asc())
    )
    return ok(result.scalars().all())


@router.post("/worker-badges/{worker_badge_id}/verify", response_model=Envelope[WorkerBadgeResponse])
@limiter.limit("30/minute")
async def verify_badge(
    request: Request,
    worker_badge_id: uuid.UUID,
    body: BadgeVerifyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a worker's badge request. Provider business or admin only."""
    if body.status == BadgeVerificationStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Status must be verified or rejected")

    result = await db.execute(
        select(WorkerBadge)
        .where(WorkerBadge.id == worker_badge_id)
        .options(selectinload(WorkerBadge.badge), selectinload(WorkerBadge.worker))
        .with_for_update(of=WorkerBadge)
    )
    worker_badge = result.scalar_one_or_none()
    if worker_badge is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Badge request not found")

    if user.role != UserRole.ADMIN:
        business = (
            await db.execute(select(Business).where(Business.user_id == user.id))
        ).scalar_one_or_none()
        if business is None or worker_badge.badge.provider_id != business.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the badge provider can verify this badge",
            )

    if worker_badge.verification_status != BadgeVerificationStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Badge request already processed")

    worker_badge.verification_status = body.status
    worker_badge.verified_by = user.id
    worker_badge.notes = body.notes
    if body.status == BadgeVerificationStatus.VERIFIED:
        worker_badge.verified_at = utcnow()

    db.add(AuditLog(
        action="verify_badge" if body.status == BadgeVerificationStatus.VERIFIED else "reject_badge",
        actor_user_id=user.id,
        target_user_id=worker_badge.worker.user_id,
        detail=body.notes,
        metadata_json={"worker_badge_id": str(worker_badge.id), "badge_id": str(worker_badge.badge_id)},
    ))
    await db.flush()

    verified = body.status == BadgeVerificationStatus.VERIFIED
    await notify_safely(
        db,
        user_id=worker_badge.worker.user_id,
        notification_type=NotificationType.BADGE_VERIFIED if verified else NotificationType.BADGE_REJECTED,
        title="Badge verified" if verified else "Badge request rejected",
        body=f"Your request for the '{worker_badge.badge.name}' badge was {'verified' if verified else 'rejected'}.",
        link="/worker/badges",
        data={"worker_badge_id": str(worker_badge.id)},
    )
    logger.info("badge_verification", worker_badge_id=str(worker_badge.id), status=body.status.value)
    return ok(worker_badge)


@router.post("/{badge_id}/request", response_model=Envelope[WorkerBadgeResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def request_badge(
    request: Request,
    badge_id: uuid.UUID,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Ask the badge provider to verify that the worker holds this badge."""
    _, worker = worker_ctx
    badge = await db.get(Badge, badge_id)
    if badge is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Badge not found")

    existing = await db.execute(
        select(WorkerBadge.id).where(WorkerBadge.worker_id == worker.id, WorkerBadge.badge_id == badge.id)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You already have this badge")

    worker_badge = WorkerBadge(
        worker_id=worker.id,
        badge_id=badge.id,
        verification_status=BadgeVerificationStatus.PENDING,
    )
    db.add(worker_badge)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You already have this badge")

    if badge.provider_id is not None:
        provider = await db.get(Business, badge.provider_id)
        if provider is not None:
            await notify_safely(
                db,
                user_id=provider.user_id,
                notification_type=NotificationType.BADGE_REQUESTED,
                title="Badge verification requested",
                body=f"{worker.full_name} requested the '{badge.name}' badge.",
                link="/business/badges/pending",
                data={"worker_badge_id": str(worker_badge.id)},
            )

    logger.info("badge_requested", worker_badge_id=str(worker_badge.id), badge_id=str(badge.id))
    return ok(worker_badge)


@router.get("/{badge_id}/workers", response_model=Envelope[list[WorkerResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def workers_by_badge(
    request: Request,
    badge_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Workers holding a verified badge."""
    if await db.get(Badge, badge_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Badge not found")
    result = await db.execute(
        select(Worker)
        .join(WorkerBadge, WorkerBadge.worker_id == Worker.id)
        .where(
            WorkerBadge.badge_id == badge_id,
            WorkerBadge.verification_status == BadgeVerificationStatus.VERIFIED,
        )
        .order_by(Worker.full_name)
    )
    return ok(result.scalars().all())
