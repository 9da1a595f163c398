import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    body: str
    link: str | None = None
    data: dict[str, Any] | None = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class PushKeys(BaseModel):
    auth: str = Field(min_length=1, max_length=255)
    p256dh: str = Field(min_length=1, max_length=255)


class PushSubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=10, max_length=2000, pattern=r"^https://")
    keys: PushKeys
    user_agent: str | None = Field(None, max_length=500)


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2000)


class PushSubscriptionResponse(BaseModel):
    id: uuid.UUID
    endpoint: str
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationPreferencesResponse(BaseModel):
    push_enabled: bool
    new_applications: bool
    booking_status: bool
    payment_confirmation: bool
    new_job_matches: bool
    shift_reminders: bool

    model_config = {"from_attributes": True}


class NotificationPreferencesUpdate(BaseModel):
    push_enabled: bool | None = None
    new_applications: bool | None = None
    booking_status: bool | None = None
    payment_confirmation: bool | None = None
    new_job_matches: bool | None = None
    shift_reminders: bool | None = None
