import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    action: str
    actor_user_id: uuid.UUID | None = None
    target_user_id: uuid.UUID | None = None
    detail: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeactivateUserRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=1000)


class PlatformStatsResponse(BaseModel):
    users_by_role: dict[str, int]
    total_bookings: int
    bookings_by_status: dict[str, int]
    completed_volume: Decimal
    open_disputes: int
