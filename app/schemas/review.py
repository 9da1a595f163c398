import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.enums import PartyRole


class ReviewCreateRequest(BaseModel):
    booking_id: uuid.UUID
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)
    would_rehire: bool | None = None


class ReviewResponse(BaseModel):
    id: uuid.UUID
    booking_id: uuid.UUID
    worker_id: uuid.UUID
    business_id: uuid.UUID
    reviewer_id: uuid.UUID
    reviewer_role: PartyRole
    rating: int
    comment: str | None = None
    would_rehire: bool | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RatingBreakdownItem(BaseModel):
    rating: int
    count: int
    percentage: float


class RatingSummaryResponse(BaseModel):
    worker_id: uuid.UUID
    average_rating: float | None = None
    total_reviews: int
    breakdown: list[RatingBreakdownItem]
