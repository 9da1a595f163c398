"""Worker reliability score.

score = (0.4 * attendance + 0.3 * punctuality + 0.3 * rating / 5) * 5,
clamped to [1, 5] and rounded to one decimal. Computed from completed bookings
only; a worker without completed bookings has no score.
"""
import uuid
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.booking import Booking
from app.models.enums import BookingStatus, PartyRole
from app.models.reliability import ReliabilityScoreHistory
from app.models.review import Review
from app.models.worker import Worker
from app.schemas.reliability import ScoreBreakdown
from app.utils.timeutil import as_utc

logger = structlog.get_logger()

ATTENDANCE_WEIGHT = 0.4
PUNCTUALITY_WEIGHT = 0.3
RATING_WEIGHT = 0.3


def compute_score(attendance: float, punctuality: float, avg_rating: float) -> float:
    raw = (
        ATTENDANCE_WEIGHT * attendance
        + PUNCTUALITY_WEIGHT * punctuality
        + RATING_WEIGHT * (avg_rating / 5)
    ) * 5
    return round(min(5.0, max(1.0, raw)), 1)


async def calculate_score(db: AsyncSession, worker_id: uuid.UUID) -> ScoreBreakdown | None:
    result = await db.execute(
        select(Booking.start_date, Booking.actual_start_time).where(
            Booking.worker_id == worker_id,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    completed = result.all()
    if not completed:
        return None

    # Completed bookings were attended by construction
    attendance = 1.0

    timed = [(as_utc(start), as_utc(actual)) for start, actual in completed if start and actual]
    if timed:
        on_time = sum(1 for start, actual in timed if actual <= start)
        punctuality = on_time / len(timed)
    else:
        punctuality = 1.0

    rating_result = await db.execute(
        select(func.avg(Review.rating)).where(
            Review.worker_id == worker_id,
            Review.reviewer_role == PartyRole.BUSINESS,
        )
    )
    avg = rating_result.scalar()
    avg_rating = float(avg) if avg is not None else 0.0

    return ScoreBreakdown(
        score=compute_score(attendance, punctuality, avg_rating),
        attendance_rate=round(attendance, 2),
        punctuality_rate=round(punctuality, 2),
        avg_rating=round(avg_rating, 1),
        completed_jobs_count=len(completed),
    )


async def update_score(db: AsyncSession, worker_id: uuid.UUID) -> ScoreBreakdown | None:
    """Recompute, persist on the worker, and append a history row. None when nothing to score."""
    breakdown = await calculate_score(db, worker_id)
    if breakdown is None:
        return None

    worker = (
        await db.execute(select(Worker).where(Worker.id == worker_id).with_for_update())
    ).scalar_one()
    worker.reliability_score = Decimal(str(breakdown.score))
    db.add(
        ReliabilityScoreHistory(
            worker_id=worker_id,
            score=Decimal(str(breakdown.score)),
            attendance_rate=Decimal(str(breakdown.attendance_rate)),
            punctuality_rate=Decimal(str(breakdown.punctuality_rate)),
            avg_rating=Decimal(str(breakdown.avg_rating)),
            completed_jobs_count=breakdown.completed_jobs_count,
        )
    )
    await db.flush()
    logger.info(
        "reliability_score_updated",
        worker_id=str(worker_id),
        score=breakdown.score,
        completed_jobs=breakdown.completed_jobs_count,
    )
    return breakdown


async def get_history(
    db: AsyncSession, worker_id: uuid.UUID, limit: int | None = None
) -> list[ReliabilityScoreHistory]:
    result = await db.execute(
        select(ReliabilityScoreHistory)
        .where(ReliabilityScoreHistory.worker_id == worker_id)
        .order_by(ReliabilityScoreHistory.calculated_at.desc())
        .limit(limit or settings.RELIABILITY_HISTORY_LIMIT)
    )
    return list(result.scalars().all())
