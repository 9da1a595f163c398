import uuid
from datetime import datetime

from pydantic import BaseModel

from app.models.enums import AttendanceStatus, BookingStatus, LocationVerification


class AttendanceJobSummary(BaseModel):
    id: uuid.UUID
    title: str
    address: str
    lat: float | None = None
    lng: float | None = None

    model_config = {"from_attributes": True}


class AttendanceWorkerSummary(BaseModel):
    id: uuid.UUID
    full_name: str
    phone: str | None = None

    model_config = {"from_attributes": True}


class AttendanceRecord(BaseModel):
    booking_id: uuid.UUID
    booking_status: BookingStatus
    attendance_status: AttendanceStatus
    start_date: datetime
    end_date: datetime
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    check_in_lat: float | None = None
    check_in_lng: float | None = None
    check_out_lat: float | None = None
    check_out_lng: float | None = None
    check_in_location: LocationVerification
    check_out_location: LocationVerification
    on_time: bool | None = None
    job: AttendanceJobSummary
    worker: AttendanceWorkerSummary


class AttendancePage(BaseModel):
    items: list[AttendanceRecord]
    total: int
    page: int
    limit: int
    total_pages: int


class AttendanceStatsResponse(BaseModel):
    worker_id: uuid.UUID
    total_bookings: int
    checked_in_bookings: int
    checked_out_bookings: int
    attendance_rate: int
    on_time_arrivals: int
