import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import JobStatus
from app.models.types import GUID


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint("budget_min >= 0", name="ck_job_budget_min_positive"),
        CheckConstraint("budget_max >= budget_min", name="ck_job_budget_range"),
        CheckConstraint("workers_needed >= 1", name="ck_job_workers_needed_positive"),
        Index("ix_job_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    requirements: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    position_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    budget_min: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    budget_max: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    workers_needed: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    # Venue coordinates for attendance location checks
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[JobStatus] = mapped_column(String(20), nullable=False, default=JobStatus.OPEN, index=True)
    platform_settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    business: Mapped["Business"] = relationship("Business", lazy="raise")
