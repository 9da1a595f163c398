import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.types import GUID


class ReliabilityScoreHistory(Base):
    __tablename__ = "reliability_score_history"
    __table_args__ = (
        Index("ix_reliability_history_worker_calculated", "worker_id", "calculated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[Decimal] = mapped_column(Numeric(2, 1), nullable=False)
    attendance_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    punctuality_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    avg_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    completed_jobs_count: Mapped[int] = mapped_column(Integer, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
