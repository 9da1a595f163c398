import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.models.enums import UserRole
from app.schemas.profile import BusinessResponse, WorkerResponse


def validate_password_complexity(password: str) -> str:
    """Validate password contains at least one uppercase, one lowercase, and one digit."""
    if not any(c.isupper() for c in password) or not any(c.islower() for c in password) or not any(c.isdigit() for c in password):
        raise ValueError("Password must contain an uppercase letter, a lowercase letter and a digit")
    return password


class RegistrationRole(str, Enum):
    WORKER = "worker"
    BUSINESS = "business"


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: RegistrationRole
    # Worker registration
    full_name: str | None = Field(None, min_length=2, max_length=200)
    # Business registration
    name: str | None = Field(None, min_length=2, max_length=200)
    phone: str | None = Field(None, pattern=r"^\+?[0-9]{8,15}$")

    @field_validator("password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        return validate_password_complexity(v)

    @model_validator(mode="after")
    def name_matches_role(self):
        if self.role == RegistrationRole.WORKER and not self.full_name:
            raise ValueError("full_name is required for worker registration")
        if self.role == RegistrationRole.BUSINESS and not self.name:
            raise ValueError("name is required for business registration")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserWithProfileResponse(BaseModel):
    user: UserResponse
    worker: WorkerResponse | None = None
    business: BusinessResponse | None = None
