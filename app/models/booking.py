import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import BookingStatus, PartyRole, PaymentStatus
from app.models.types import GUID


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # One application per worker per job
        UniqueConstraint("job_id", "worker_id", name="uq_booking_job_worker"),
        CheckConstraint("final_price >= 0", name="ck_booking_final_price_positive"),
        Index("ix_booking_worker_created", "worker_id", "created_at"),
        Index("ix_booking_business_created", "business_id", "created_at"),
        Index("ix_booking_compliance", "worker_id", "business_id", "status", "start_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[BookingStatus] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checkout_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    # NULL until checkout, then follows the wallet hold through review/dispute
    payment_status: Mapped[PaymentStatus | None] = mapped_column(String(20), nullable=True, index=True)
    review_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[PartyRole | None] = mapped_column(String(10), nullable=True)
    cancellation_reason_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("cancellation_reasons.id", ondelete="SET NULL"), nullable=True
    )
    cancellation_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Private to the business
    booking_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    job: Mapped["Job"] = relationship("Job", lazy="raise")
    worker: Mapped["Worker"] = relationship("Worker", lazy="raise")
    business: Mapped["Business"] = relationship("Business", lazy="raise")
    cancellation_reason: Mapped["CancellationReason | None"] = relationship("CancellationReason", lazy="raise")
    disputes: Mapped[list["Dispute"]] = relationship("Dispute", back_populates="booking", lazy="raise")
    reviews: Mapped[list["Review"]] = relationship("Review", back_populates="booking", lazy="raise")
