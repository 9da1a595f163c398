"""Check-in and check-out history for hired bookings.

A booking enters attendance once the business accepts it. Stats only count
bookings whose start time has passed, so upcoming shifts do not lower the
attendance rate.
"""
import math
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.booking import Booking
from app.models.enums import AttendanceStatus, BookingStatus
from app.schemas.attendance import AttendanceRecord, AttendanceStatsResponse
from app.utils.geo import verify_location
from app.utils.timeutil import as_utc, utcnow

HIRED_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED)


def attendance_status(booking: Booking) -> AttendanceStatus:
    if booking.checkout_time is not None:
        return AttendanceStatus.CHECKED_OUT
    if booking.actual_start_time is not None:
        return AttendanceStatus.CHECKED_IN
    return AttendanceStatus.NOT_CHECKED_IN


def is_on_time(booking: Booking, tolerance_minutes: int | None = None) -> bool | None:
    """Whether the check-in fell within the tolerance either side of the start. None before check-in."""
    if booking.actual_start_time is None:
        return None
    tolerance = timedelta(
        minutes=tolerance_minutes if tolerance_minutes is not None else settings.ATTENDANCE_ON_TIME_MINUTES
    )
    return abs(as_utc(booking.actual_start_time) - as_utc(booking.start_date)) <= tolerance


def build_record(booking: Booking) -> AttendanceRecord:
    """Attendance view of a booking. Needs ``job`` and ``worker`` loaded."""
    job = booking.job
    return AttendanceRecord(
        booking_id=booking.id,
        booking_status=booking.status,
        attendance_status=attendance_status(booking),
        start_date=booking.start_date,
        end_date=booking.end_date,
        check_in_at=booking.actual_start_time,
        check_out_at=booking.checkout_time,
        check_in_lat=booking.check_in_lat,
        check_in_lng=booking.check_in_lng,
        check_out_lat=booking.check_out_lat,
        check_out_lng=booking.check_out_lng,
        check_in_location=verify_location(booking.check_in_lat, booking.check_in_lng, job.lat, job.lng),
        check_out_location=verify_location(booking.check_out_lat, booking.check_out_lng, job.lat, job.lng),
        on_time=is_on_time(booking),
        job=job,
        worker=booking.worker,
    )


async def list_attendance(
    db: AsyncSession,
    *,
    worker_id: uuid.UUID | None = None,
    job_id: uuid.UUID | None = None,
    business_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[AttendanceRecord], int]:
    """One page of attendance records, latest shift first, plus the total match count.

    ``start`` is inclusive and ``end`` exclusive, both on the booking start date.
    """
    conditions = [Booking.status.in_(HIRED_STATUSES)]
    if worker_id is not None:
        conditions.append(Booking.worker_id == worker_id)
    if job_id is not None:
        conditions.append(Booking.job_id == job_id)
    if business_id is not None:
        conditions.append(Booking.business_id == business_id)
    if start is not None:
        conditions.append(Booking.start_date >= start)
    if end is not None:
        conditions.append(Booking.start_date < end)

    total = (await db.execute(select(func.count(Booking.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Booking)
        .where(*conditions)
        .options(selectinload(Booking.job), selectinload(Booking.worker))
        .order_by(Booking.start_date.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return [build_record(b) for b in result.scalars().all()], total


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def compute_stats(worker_id: uuid.UUID, bookings: list[Booking], now: datetime | None = None) -> AttendanceStatsResponse:
    now = now or utcnow()
    due = [b for b in bookings if b.status in HIRED_STATUSES and as_utc(b.start_date) <= now]
    checked_in = [b for b in due if b.actual_start_time is not None]
    checked_out = sum(1 for b in due if b.checkout_time is not None)
    on_time = sum(1 for b in checked_in if is_on_time(b))
    rate = round(len(checked_in) / len(due) * 100) if due else 0
    return AttendanceStatsResponse(
        worker_id=worker_id,
        total_bookings=len(due),
        checked_in_bookings=len(checked_in),
        checked_out_bookings=checked_out,
        attendance_rate=rate,
        on_time_arrivals=on_time,
    )


async def worker_stats(db: AsyncSession, worker_id: uuid.UUID) -> AttendanceStatsResponse:
    result = await db.execute(
        select(Booking).where(Booking.worker_id == worker_id, Booking.status.in_(HIRED_STATUSES))
    )
    return compute_stats(worker_id, list(result.scalars().all()))
