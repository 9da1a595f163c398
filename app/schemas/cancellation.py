import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.enums import CancellationReasonCategory


class CancellationReasonCreateRequest(BaseModel):
    category: CancellationReasonCategory
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(None, max_length=1000)
    requires_verification: bool = False
    penalty_percentage: int = Field(0, ge=0, le=100)
    sort_order: int = 0


class CancellationReasonResponse(BaseModel):
    id: uuid.UUID
    category: CancellationReasonCategory
    name: str
    description: str | None = None
    requires_verification: bool
    penalty_percentage: int
    is_active: bool
    sort_order: int
    created_at: datetime

    model_config = {"from_attributes": True}
