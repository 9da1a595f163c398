import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_user
from app.models.booking import Booking
from app.models.business import Business
from app.models.enums import BookingStatus, PartyRole
from app.models.review import Review
from app.models.user import User
from app.models.worker import Worker
from app.schemas.common import Envelope, ok
from app.schemas.review import RatingSummaryResponse, ReviewCreateRequest, ReviewResponse
from app.services import reliability
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


@router.post("", response_model=Envelope[ReviewResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_review(
    request: Request,
    body: ReviewCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Review the other party of a completed booking."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == body.booking_id)
        .options(selectinload(Booking.worker), selectinload(Booking.business))
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

    if user.id == booking.business.user_id:
        reviewer_role = PartyRole.BUSINESS
    elif user.id == booking.worker.user_id:
        reviewer_role = PartyRole.WORKER
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant of this booking")

    if booking.status != BookingStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Can only review completed bookings",
        )

    existing = await db.execute(
        select(Review).where(Review.booking_id == booking.id, Review.reviewer_id == user.id)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already reviewed this booking")

    review = Review(
        booking_id=booking.id,
        worker_id=booking.worker_id,
        business_id=booking.business_id,
        reviewer_id=user.id,
        reviewer_role=reviewer_role,
        rating=body.rating,
        comment=body.comment,
        would_rehire=body.would_rehire,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already reviewed this booking")

    # Business ratings feed the worker's reliability score
    if reviewer_role == PartyRole.BUSINESS:
        await reliability.update_score(db, booking.worker_id)

    logger.info(
        "review_created",
        review_id=str(review.id),
        booking_id=str(booking.id),
        reviewer_role=reviewer_role.value,
    )
    return ok(review)


@router.get("/workers/{worker_id}", response_model=Envelope[list[ReviewResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_worker_reviews(
    request: Request,
    worker_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    db: AsyncSession = Depends(get_db),
):
    """Reviews businesses left for a worker, newest first."""
    if await db.get(Worker, worker_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")

    result = await db.execute(
        select(Review)
        .where(Review.worker_id == worker_id, Review.reviewer_role == PartyRole.BUSINESS)
        .order_by(Review.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return ok(result.scalars().all())


@router.get("/businesses/{business_id}", response_model=Envelope[list[ReviewResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_business_reviews(
    request: Request,
    business_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    db: AsyncSession = Depends(get_db),
):
    """Reviews workers left for a business, newest first."""
    if await db.get(Business, business_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")

    result = await db.execute(
        select(Review)
        .where(Review.business_id == business_id, Review.reviewer_role == PartyRole.WORKER)
        .order_by(Review.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return ok(result.scalars().all())


@router.get("/workers/{worker_id}/summary", response_model=Envelope[RatingSummaryResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def worker_rating_summary(
    request: Request,
    worker_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Average rating from businesses and a 5-to-1 star breakdown."""
    if await db.get(Worker, worker_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")

    result = await db.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.worker_id == worker_id, Review.reviewer_role == PartyRole.BUSINESS)
        .group_by(Review.rating)
    )
    counts = {rating: count for rating, count in result.all()}
    total = sum(counts.values())
    average = round(sum(r * c for r, c in counts.items()) / total, 1) if total else None

    breakdown = [
        {
            "rating": rating,
            "count": counts.get(rating, 0),
            "percentage": round(counts.get(rating, 0) * 100 / total, 1) if total else 0.0,
        }
        for rating in range(5, 0, -1)
    ]
    return ok({
        "worker_id": worker_id,
        "average_rating": average,
        "total_reviews": total,
        "breakdown": breakdown,
    })
