import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import TransactionStatus, TransactionType


class WalletResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    pending_balance: Decimal
    available_balance: Decimal
    currency: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WalletTransactionResponse(BaseModel):
    id: uuid.UUID
    wallet_id: uuid.UUID
    booking_id: uuid.UUID | None = None
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    description: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WalletDetailsResponse(BaseModel):
    wallet: WalletResponse
    recent_transactions: list[WalletTransactionResponse]


class WalletBalanceResponse(BaseModel):
    pending_balance: Decimal
    available_balance: Decimal
    currency: str


class PayoutRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    description: str | None = Field(None, max_length=255)
