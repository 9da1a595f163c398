import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, HttpUrl

from app.models.enums import ConnectionStatus


class SocialPlatformCreateRequest(BaseModel):
    platform_name: str = Field(min_length=2, max_length=100)
    platform_type: str = Field(min_length=2, max_length=50)
    webhook_url: HttpUrl | None = None
    is_available: bool = True


class SocialPlatformResponse(BaseModel):
    id: uuid.UUID
    platform_name: str
    platform_type: str
    is_available: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ConnectPlatformRequest(BaseModel):
    platform_id: uuid.UUID
    access_token: str = Field(min_length=1, max_length=4000)
    refresh_token: str | None = Field(None, max_length=4000)
    token_expires_at: datetime | None = None
    platform_account_id: str | None = Field(None, max_length=200)
    platform_account_name: str | None = Field(None, max_length=200)
    settings: dict[str, Any] = Field(default_factory=dict)


class ConnectionSettingsUpdate(BaseModel):
    settings: dict[str, Any]


class SocialConnectionResponse(BaseModel):
    """Connection view; tokens are never returned."""

    id: uuid.UUID
    business_id: uuid.UUID
    platform_id: uuid.UUID
    platform_account_id: str | None = None
    platform_account_name: str | None = None
    status: ConnectionStatus
    settings: dict[str, Any] = {}
    error_count: int
    last_error: str | None = None
    last_error_at: datetime | None = None
    last_used_at: datetime | None = None
    token_expires_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SocialConnectionDetailResponse(SocialConnectionResponse):
    platform: SocialPlatformResponse
