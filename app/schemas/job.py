import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

from app.models.enums import JobStatus

_REQUIRED_JOB_FIELDS = (
    "title", "description", "requirements", "budget_min", "budget_max",
    "workers_needed", "address", "platform_settings",
)


class JobCreateRequest(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    description: str = Field(min_length=1, max_length=10000)
    requirements: list[str] = Field(default_factory=list, max_length=50)
    position_type: str | None = Field(None, max_length=50)
    budget_min: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    budget_max: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    workers_needed: int = Field(1, ge=1, le=1000)
    deadline: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    address: str = Field(min_length=1, max_length=500)
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    platform_settings: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def budget_range(self):
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min must be less than or equal to budget_max")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class JobUpdateRequest(BaseModel):
    """Partial job edit. Omitted fields keep their value."""

    title: str | None = Field(None, min_length=3, max_length=200)
    description: str | None = Field(None, min_length=1, max_length=10000)
    requirements: list[str] | None = Field(None, max_length=50)
    position_type: str | None = Field(None, max_length=50)
    budget_min: Decimal | None = Field(None, ge=0, max_digits=14, decimal_places=2)
    budget_max: Decimal | None = Field(None, ge=0, max_digits=14, decimal_places=2)
    workers_needed: int | None = Field(None, ge=1, le=1000)
    deadline: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    address: str | None = Field(None, min_length=1, max_length=500)
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    platform_settings: dict[str, Any] | None = None

    @model_validator(mode="after")
    def required_fields_not_cleared(self):
        for name in _REQUIRED_JOB_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class JobStatusUpdateRequest(BaseModel):
    status: JobStatus


class JobResponse(BaseModel):
    id: uuid.UUID
    business_id: uuid.UUID
    title: str
    description: str
    requirements: list[str] = []
    position_type: str | None = None
    budget_min: Decimal
    budget_max: Decimal
    workers_needed: int
    deadline: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    address: str
    lat: float | None = None
    lng: float | None = None
    status: JobStatus
    platform_settings: dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}


class JobCreatedResponse(BaseModel):
    job: JobResponse
    queued_posts: int
