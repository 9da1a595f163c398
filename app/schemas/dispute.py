import uuid
from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl

from app.models.enums import DisputeResolution, DisputeStatus, PartyRole


class DisputeCreateRequest(BaseModel):
    booking_id: uuid.UUID
    reason: str = Field(min_length=10, max_length=2000)
    evidence_urls: list[HttpUrl] = Field(default_factory=list, max_length=10)


class DisputeResolveRequest(BaseModel):
    resolution: DisputeResolution
    notes: str | None = Field(None, max_length=2000)


class DisputeResponse(BaseModel):
    id: uuid.UUID
    booking_id: uuid.UUID
    raised_by: uuid.UUID | None = None
    raised_by_role: PartyRole
    reason: str
    evidence_urls: list[str] = []
    status: DisputeStatus
    resolution: DisputeResolution | None = None
    resolution_notes: str | None = None
    resolved_by: uuid.UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ActiveDisputeResponse(BaseModel):
    has_active_dispute: bool
    dispute: DisputeResponse | None = None
