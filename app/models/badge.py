import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import BadgeCategory, BadgeVerificationStatus
from app.models.types import GUID


class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[BadgeCategory] = mapped_column(String(20), nullable=False, index=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # NULL provider means a platform-issued badge, verifiable by admins only
    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_certified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WorkerBadge(Base):
    __tablename__ = "worker_badges"
    __table_args__ = (
        UniqueConstraint("worker_id", "badge_id", name="uq_worker_badge"),
        Index("ix_worker_badge_badge_status", "badge_id", "verification_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    badge_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("badges.id", ondelete="CASCADE"), nullable=False
    )
    verification_status: Mapped[BadgeVerificationStatus] = mapped_column(
        String(20), nullable=False, default=BadgeVerificationStatus.PENDING
    )
    verified_by: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    badge: Mapped["Badge"] = relationship("Badge", lazy="raise")
    worker: Mapped["Worker"] = relationship("Worker", lazy="raise")
