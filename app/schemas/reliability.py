import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class ScoreBreakdown(BaseModel):
    score: float
    attendance_rate: float
    punctuality_rate: float
    avg_rating: float
    completed_jobs_count: int


class ReliabilityScoreResponse(BaseModel):
    worker_id: uuid.UUID
    score: float | None = None
    attendance_rate: float | None = None
    punctuality_rate: float | None = None
    avg_rating: float | None = None
    completed_jobs_count: int


class ReliabilityHistoryResponse(BaseModel):
    id: uuid.UUID
    worker_id: uuid.UUID
    score: Decimal
    attendance_rate: Decimal
    punctuality_rate: Decimal
    avg_rating: Decimal
    completed_jobs_count: int
    calculated_at: datetime

    model_config = {"from_attributes": True}
