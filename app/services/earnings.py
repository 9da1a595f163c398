"""Worker earnings analytics.

Every completed booking with a final price is one earning. The earning date is
the checkout time, falling back to the booking end date.
"""
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.booking import Booking
from app.models.enums import BookingStatus
from app.schemas.earnings import Earning
from app.utils.timeutil import as_utc, utcnow

MIN_PROJECTION_EARNINGS = 3
MEDIUM_CONFIDENCE_EARNINGS = 5
HIGH_CONFIDENCE_EARNINGS = 10
PROJECTION_WINDOW_MONTHS = 3
WEEKS_IN_PERIOD = {"week": 1, "month": 4, "quarter": 12}

_ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


class NotEnoughDataError(Exception):
    pass


def _round(value: Decimal, places: Decimal = _CENT) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def _months_ago(moment: datetime, months: int) -> datetime:
    year = moment.year
    month = moment.month - months
    while month <= 0:
        month += 12
        year -= 1
    # Clamp the day for short months
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment.replace(year=year, month=month, day=28)


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def period_start(period: str, now: datetime) -> datetime | None:
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return _months_ago(now, 1)
    if period == "quarter":
        return _months_ago(now, 3)
    if period == "year":
        return _months_ago(now, 12)
    return None


def percent_change(current: Decimal, previous: Decimal) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round(float((current - previous) / previous * 100), 1)


def _previous_month_bounds(now: datetime) -> tuple[datetime, datetime]:
    current_start = _month_start(now)
    previous_start = _month_start(current_start - timedelta(days=1))
    return previous_start, current_start


async def load_earnings(db: AsyncSession, worker_id: uuid.UUID) -> list[Earning]:
    result = await db.execute(
        select(Booking)
        .options(selectinload(Booking.job))
        .where(
            Booking.worker_id == worker_id,
            Booking.status == BookingStatus.COMPLETED,
            Booking.final_price.is_not(None),
        )
    )
    earnings = []
    for booking in result.scalars().all():
        earned_at = as_utc(booking.checkout_time or booking.end_date)
        earnings.append(
            Earning(
                booking_id=booking.id,
                job_title=booking.job.title if booking.job else "Unknown",
                amount=Decimal(booking.final_price),
                earned_at=earned_at,
                payment_status=booking.payment_status,
            )
        )
    earnings.sort(key=lambda e: e.earned_at, reverse=True)
    return earnings


def _sum(earnings: list[Earning]) -> Decimal:
    return sum((e.amount for e in earnings), _ZERO)


def _between(earnings: list[Earning], start: datetime | None, end: datetime) -> list[Earning]:
    return [e for e in earnings if (start is None or e.earned_at >= start) and e.earned_at < end]


def summarize(earnings: list[Earning], period: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    start = period_start(period, now)
    in_period = [e for e in earnings if (start is None or e.earned_at >= start) and e.earned_at <= now]

    current_month = _sum(_between(earnings, _month_start(now), now + timedelta(microseconds=1)))
    prev_start, prev_end = _previous_month_bounds(now)
    previous_month = _sum(_between(earnings, prev_start, prev_end))

    total = _sum(in_period)
    count = len(in_period)
    return {
        "period": period,
        "period_start": start,
        "period_end": now,
        "total_earnings": _round(total),
        "current_month_earnings": _round(current_month),
        "previous_month_earnings": _round(previous_month),
        "month_over_month_change": percent_change(current_month, previous_month),
        "total_bookings": count,
        "average_per_booking": _round(total / count) if count else _ZERO,
        "currency": settings.DEFAULT_CURRENCY,
    }


def monthly(earnings: list[Earning], months: int = 12, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    cutoff = _month_start(_months_ago(now, months - 1))
    buckets: dict[str, list[Earning]] = defaultdict(list)
    for e in earnings:
        if e.earned_at >= cutoff:
            buckets[e.earned_at.strftime("%Y-%m")].append(e)
    items = []
    for month in sorted(buckets, reverse=True):
        group = buckets[month]
        total = _sum(group)
        items.append(
            {
                "month": month,
                "earnings": _round(total),
                "bookings_count": len(group),
                "average_earning": _round(total / len(group)),
            }
        )
    return items


def by_position(earnings: list[Earning]) -> list[dict]:
    groups: dict[str, list[Earning]] = defaultdict(list)
    for e in earnings:
        groups[e.job_title].append(e)
    items = []
    for title, group in groups.items():
        amounts = [e.amount for e in group]
        total = sum(amounts, _ZERO)
        items.append(
            {
                "position": title,
                "total": _round(total),
                "count": len(group),
                "average": _round(total / len(group)),
                "highest": _round(max(amounts)),
                "lowest": _round(min(amounts)),
                "last_booking_date": max(e.earned_at for e in group),
            }
        )
    items.sort(key=lambda item: item["total"], reverse=True)
    return items


def _confidence(data_points: int) -> str:
    if data_points >= HIGH_CONFIDENCE_EARNINGS:
        return "high"
    if data_points >= MEDIUM_CONFIDENCE_EARNINGS:
        return "medium"
    return "low"


def project(
    earnings: list[Earning],
    period: str = "month",
    method: str = "simple_average",
    now: datetime | None = None,
) -> dict:
    """Project earnings over the next week/month/quarter from the last three months.

    Raises NotEnoughDataError below MIN_PROJECTION_EARNINGS earnings.
    """
    now = now or utcnow()
    window_start = _months_ago(now, PROJECTION_WINDOW_MONTHS)
    recent = [e for e in earnings if window_start <= e.earned_at <= now]
    if len(recent) < MIN_PROJECTION_EARNINGS:
        raise NotEnoughDataError(
            f"Not enough data for a projection. At least {MIN_PROJECTION_EARNINGS} completed bookings are required."
        )

    total = float(_sum(recent))
    count = len(recent)
    average = total / count
    weeks = (now - window_start).total_seconds() / (7 * 24 * 3600)
    frequency = count / weeks if weeks > 0 else 0.0

    current_month = float(_sum(_between(recent, _month_start(now), now + timedelta(microseconds=1))))
    prev_start, prev_end = _previous_month_bounds(now)
    previous_month = float(_sum(_between(recent, prev_start, prev_end)))
    trend = percent_change(Decimal(str(current_month)), Decimal(str(previous_month)))

    weeks_in_period = WEEKS_IN_PERIOD[period]
    if method == "trend_based":
        month_amount = current_month if current_month > 0 else previous_month
        projected = (month_amount * (1 + trend / 100) / 4) * weeks_in_period
    else:
        projected = average * frequency * weeks_in_period

    return {
        "period": period,
        "method": method,
        "projected_earnings": _round(Decimal(str(projected)), Decimal("1")),
        "confidence": _confidence(count),
        "data_points": count,
        "factors": {
            "average_earning": round(average),
            "bookings_per_week": round(frequency, 1),
            "trend_percentage": round(trend, 1),
            "months_analyzed": PROJECTION_WINDOW_MONTHS,
        },
    }


def transactions(earnings: list[Earning], limit: int = 20, offset: int = 0) -> list[dict]:
    return [
        {
            "booking_id": e.booking_id,
            "job_title": e.job_title,
            "amount": _round(e.amount),
            "completed_at": e.earned_at,
            "payment_status": e.payment_status,
        }
        for e in earnings[offset: offset + limit]
    ]
