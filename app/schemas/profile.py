import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, HttpUrl


class WorkerResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str
    phone: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    skills: list[str] = []
    reliability_score: Decimal | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WorkerUpdateRequest(BaseModel):
    full_name: str | None = Field(None, min_length=2, max_length=200)
    phone: str | None = Field(None, pattern=r"^\+?[0-9]{8,15}$")
    bio: str | None = Field(None, max_length=2000)
    avatar_url: HttpUrl | None = None
    skills: list[str] | None = Field(None, max_length=50)


class BusinessResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    description: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    address: str | None = None
    is_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BusinessUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=200)
    description: str | None = Field(None, max_length=5000)
    phone: str | None = Field(None, pattern=r"^\+?[0-9]{8,15}$")
    email: str | None = Field(None, max_length=255)
    website: HttpUrl | None = None
    address: str | None = Field(None, max_length=500)
