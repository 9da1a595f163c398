import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.wallet import (
    PayoutRequest,
    WalletBalanceResponse,
    WalletDetailsResponse,
    WalletResponse,
    WalletTransactionResponse,
)
from app.services import wallet as ledger
from app.utils.rate_limit import LEDGER_RATE_LIMIT, LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


def _ledger_http_error(e: ledger.LedgerError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/me", response_model=Envelope[WalletDetailsResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_my_wallet(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's wallet with its ten most recent transactions. Created on first access."""
    return ok(await ledger.get_wallet_details(db, user.id))


@router.post("/me", response_model=Envelope[WalletResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_my_wallet(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        wallet = await ledger.create_wallet(db, user.id)
    except ledger.LedgerError as e:
        raise _ledger_http_error(e)
    return ok(wallet)


@router.get("/me/balance", response_model=Envelope[WalletBalanceResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_my_balance(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        balance = await ledger.get_balance(db, user.id)
    except ledger.LedgerError as e:
        raise _ledger_http_error(e)
    return ok(balance)


@router.get("/me/transactions", response_model=Envelope[list[WalletTransactionResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_transactions(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok(await ledger.list_transactions(db, user.id, limit=limit))


@router.post("/me/payout", response_model=Envelope[WalletTransactionResponse])
@limiter.limit(LEDGER_RATE_LIMIT)
async def request_payout(
    request: Request,
    body: PayoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Debit the available balance. Bank transfer happens outside this service."""
    try:
        txn = await ledger.deduct_available_funds(db, user.id, body.amount, description=body.description)
    except ledger.LedgerError as e:
        logger.info("payout_rejected", user_id=str(user.id), reason=e.message)
        raise _ledger_http_error(e)
    return ok(txn)
