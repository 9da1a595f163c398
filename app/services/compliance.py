"""Monthly working-day limit for daily workers (PP 35/2021).

A daily worker may work at most COMPLIANCE_LIMIT_DAYS days in a calendar month
for the same business. Past COMPLIANCE_WARNING_DAYS the business is warned.
"""
import uuid
from datetime import date

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.booking import Booking
from app.models.business import Business
from app.models.compliance import ComplianceTracking
from app.models.enums import BookingStatus, ComplianceStatus, WarningLevel
from app.models.worker import Worker
from app.schemas.compliance import ComplianceCheckResponse
from app.utils.timeutil import month_bounds, month_start, utcnow

logger = structlog.get_logger()

# Bookings that count as a worked day
_COUNTED_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.COMPLETED)


class ComplianceError(Exception):
    """Raised when a compliance lookup references an unknown worker or business."""


def _result(status: ComplianceStatus, days: int, level: WarningLevel, message: str) -> ComplianceCheckResponse:
    return ComplianceCheckResponse(
        can_accept=status != ComplianceStatus.BLOCKED,
        status=status,
        days_worked=days,
        warning_level=level,
        message=message,
    )


def evaluate(days_worked: int) -> ComplianceCheckResponse:
    limit = settings.COMPLIANCE_LIMIT_DAYS
    if days_worked >= limit:
        return _result(
            ComplianceStatus.BLOCKED,
            days_worked,
            WarningLevel.LIMIT,
            f"Worker has reached {days_worked} days this month. "
            f"PP 35/2021 limit ({limit} days) reached. Cannot accept more bookings.",
        )
    if days_worked >= settings.COMPLIANCE_WARNING_DAYS:
        return _result(
            ComplianceStatus.WARNING,
            days_worked,
            WarningLevel.APPROACHING,
            f"Warning: Worker has worked {days_worked} days this month. "
            f"Approaching PP 35/2021 limit of {limit} days.",
        )
    return _result(ComplianceStatus.OK, days_worked, WarningLevel.NONE, "Worker can be booked")


async def days_worked(
    db: AsyncSession, worker_id: uuid.UUID, business_id: uuid.UUID, month: date
) -> int:
    start, end = month_bounds(month_start(month))
    result = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.worker_id == worker_id,
            Booking.business_id == business_id,
            Booking.status.in_(_COUNTED_STATUSES),
            Booking.start_date >= start,
            Booking.start_date < end,
        )
    )
    return result.scalar() or 0


async def compliance_status(
    db: AsyncSession,
    worker_id: uuid.UUID,
    business_id: uuid.UUID,
    month: date | None = None,
) -> ComplianceCheckResponse:
    count = await days_worked(db, worker_id, business_id, month or utcnow().date())
    return evaluate(count)


async def check_before_accept(
    db: AsyncSession,
    worker_id: uuid.UUID,
    business_id: uuid.UUID,
    month: date | None = None,
) -> ComplianceCheckResponse:
    """Compliance status for a prospective acceptance. Raises ComplianceError for unknown parties."""
    worker = await db.get(Worker, worker_id)
    if worker is None:
        raise ComplianceError("Worker not found")
    business = await db.get(Business, business_id)
    if business is None:
        raise ComplianceError("Business not found")
    return await compliance_status(db, worker_id, business_id, month)


async def record_tracking(
    db: AsyncSession,
    worker_id: uuid.UUID,
    business_id: uuid.UUID,
    month: date,
) -> ComplianceTracking:
    """Upsert the tracked day count for the worker/business/month."""
    first_day = month_start(month)
    count = await days_worked(db, worker_id, business_id, first_day)
    result = await db.execute(
        select(ComplianceTracking)
        .where(
            ComplianceTracking.worker_id == worker_id,
            ComplianceTracking.business_id == business_id,
            ComplianceTracking.month == first_day,
        )
        .with_for_update()
    )
    tracking = result.scalar_one_or_none()
    if tracking is None:
        tracking = ComplianceTracking(
            worker_id=worker_id,
            business_id=business_id,
            month=first_day,
            days_worked=count,
        )
        db.add(tracking)
    else:
        tracking.days_worked = count
    await db.flush()
    logger.info(
        "compliance_tracking_updated",
        worker_id=str(worker_id),
        business_id=str(business_id),
        month=first_day.isoformat(),
        days_worked=count,
    )
    return tracking
