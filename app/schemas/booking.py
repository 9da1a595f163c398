import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.enums import BookingStatus, PartyRole, PaymentStatus
from app.schemas.compliance import ComplianceCheckResponse
from app.schemas.job import JobResponse
from app.schemas.profile import BusinessResponse, WorkerResponse


class BookingResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    worker_id: uuid.UUID
    business_id: uuid.UUID
    status: BookingStatus
    start_date: datetime
    end_date: datetime
    actual_start_time: datetime | None = None
    checkout_time: datetime | None = None
    check_in_lat: float | None = None
    check_in_lng: float | None = None
    check_out_lat: float | None = None
    check_out_lng: float | None = None
    final_price: Decimal
    payment_status: PaymentStatus | None = None
    review_deadline: datetime | None = None
    accepted_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: PartyRole | None = None
    cancellation_reason_id: uuid.UUID | None = None
    cancellation_note: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    job: JobResponse
    worker: WorkerResponse
    business: BusinessResponse


class BusinessBookingResponse(BookingResponse):
    booking_notes: str | None = None


class ApplicantResponse(BookingResponse):
    worker: WorkerResponse
    booking_notes: str | None = None


class ApplicationResponse(BookingResponse):
    job: JobResponse


class DuplicateApplicationResponse(BaseModel):
    has_applied: bool
    application: BookingResponse | None = None


class AcceptApplicationResponse(BaseModel):
    booking: BookingResponse
    compliance: ComplianceCheckResponse


class CancelBookingRequest(BaseModel):
    reason_id: uuid.UUID
    note: str | None = Field(None, max_length=1000)


class CancellationReasonSummary(BaseModel):
    id: uuid.UUID
    name: str
    category: str

    model_config = {"from_attributes": True}


class CancellationHistoryItem(BookingResponse):
    job: JobResponse
    cancellation_reason: CancellationReasonSummary | None = None


class BookingNotesRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)


class LocationRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class BulkStatusRequest(BaseModel):
    booking_ids: list[uuid.UUID] = Field(min_length=1, max_length=50)
    status: BookingStatus

    @field_validator("status")
    @classmethod
    def accept_or_reject(cls, v: BookingStatus) -> BookingStatus:
        if v not in (BookingStatus.ACCEPTED, BookingStatus.REJECTED):
            raise ValueError("status must be accepted or rejected")
        return v


class BulkStatusFailure(BaseModel):
    booking_id: uuid.UUID
    error: str


class BulkStatusResponse(BaseModel):
    updated: list[BookingResponse]
    failed: list[BulkStatusFailure]
