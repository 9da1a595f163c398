import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.enums import BadgeCategory, BadgeVerificationStatus
from app.schemas.profile import WorkerResponse


class BadgeCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(None, max_length=2000)
    icon: str | None = Field(None, max_length=100)
    category: BadgeCategory
    industry: str | None = Field(None, max_length=100)
    is_certified: bool = False


class BadgeResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    description: str | None = None
    icon: str | None = None
    category: BadgeCategory
    industry: str | None = None
    provider_id: uuid.UUID | None = None
    is_certified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BadgeVerifyRequest(BaseModel):
    status: BadgeVerificationStatus
    notes: str | None = Field(None, max_length=1000)


class WorkerBadgeResponse(BaseModel):
    id: uuid.UUID
    worker_id: uuid.UUID
    badge_id: uuid.UUID
    verification_status: BadgeVerificationStatus
    verified_by: uuid.UUID | None = None
    verified_at: datetime | None = None
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WorkerBadgeDetailResponse(WorkerBadgeResponse):
    badge: BadgeResponse


class PendingVerificationResponse(WorkerBadgeDetailResponse):
    worker: WorkerResponse
