import uuid
from datetime import date, datetime

from pydantic import BaseModel

from app.models.enums import ComplianceStatus, WarningLevel
from app.schemas.profile import WorkerResponse


class ComplianceCheckResponse(BaseModel):
    can_accept: bool
    status: ComplianceStatus
    days_worked: int
    warning_level: WarningLevel
    message: str


class ComplianceRecordResponse(BaseModel):
    id: uuid.UUID
    worker_id: uuid.UUID
    business_id: uuid.UUID
    month: date
    days_worked: int
    updated_at: datetime
    worker: WorkerResponse

    model_config = {"from_attributes": True}
