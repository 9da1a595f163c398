import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from app.models.enums import PaymentStatus


class EarningsPeriod(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    ALL_TIME = "all_time"


class ProjectionPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class ProjectionMethod(str, Enum):
    SIMPLE_AVERAGE = "simple_average"
    TREND_BASED = "trend_based"
    BOOKING_BASED = "booking_based"


class Earning(BaseModel):
    booking_id: uuid.UUID
    job_title: str
    amount: Decimal
    earned_at: datetime
    payment_status: PaymentStatus | None = None


class EarningsSummaryResponse(BaseModel):
    period: EarningsPeriod
    period_start: datetime | None = None
    period_end: datetime
    total_earnings: Decimal
    current_month_earnings: Decimal
    previous_month_earnings: Decimal
    month_over_month_change: float
    total_bookings: int
    average_per_booking: Decimal
    currency: str


class MonthlyEarningsItem(BaseModel):
    month: str
    earnings: Decimal
    bookings_count: int
    average_earning: Decimal


class PositionEarningsItem(BaseModel):
    position: str
    total: Decimal
    count: int
    average: Decimal
    highest: Decimal
    lowest: Decimal
    last_booking_date: datetime | None = None


class ProjectionFactors(BaseModel):
    average_earning: float
    bookings_per_week: float
    trend_percentage: float
    months_analyzed: int


class EarningsProjectionResponse(BaseModel):
    period: ProjectionPeriod
    method: ProjectionMethod
    projected_earnings: Decimal
    confidence: str
    data_points: int
    factors: ProjectionFactors


class EarningTransactionItem(BaseModel):
    booking_id: uuid.UUID
    job_title: str
    amount: Decimal
    completed_at: datetime | None = None
    payment_status: str | None = None
