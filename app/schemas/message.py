import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class MessageCreateRequest(BaseModel):
    receiver_id: uuid.UUID
    content: str = Field(min_length=1, max_length=5000)
    booking_id: uuid.UUID | None = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message content cannot be empty")
        return v


class MessageResponse(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    booking_id: uuid.UUID | None = None
    content: str
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime
    sender_name: str | None = None

    model_config = {"from_attributes": True}


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkedCountResponse(BaseModel):
    updated: int
