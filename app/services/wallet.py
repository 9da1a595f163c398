"""Wallet ledger: the only code allowed to change wallet balances.

Every mutation runs inside the caller's transaction, locks the wallet row with
SELECT ... FOR UPDATE, and writes the balance change together with its
wallet_transactions row in a single flush. Guards raise LedgerError before
anything is written, so the caller's rollback leaves no partial state.
"""
import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.enums import DisputeResolution, TransactionStatus, TransactionType
from app.models.wallet import Wallet, WalletTransaction

logger = structlog.get_logger()

_CENT = Decimal("0.01")


class LedgerError(Exception):
    """A ledger guard failed. Nothing was written."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _money(amount: Decimal | int | float | str) -> Decimal:
    value = Decimal(str(amount)).quantize(_CENT)
    if value <= 0:
        raise LedgerError("Amount must be greater than zero", status_code=400)
    return value


def _record_metric(operation: str) -> None:
    from app.metrics import WALLET_OPERATIONS

    WALLET_OPERATIONS.labels(operation=operation).inc()


async def _get_wallet(db: AsyncSession, user_id: uuid.UUID, lock: bool = False) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_wallet(db: AsyncSession, user_id: uuid.UUID, currency: str | None = None) -> Wallet:
    if await _get_wallet(db, user_id) is not None:
        raise LedgerError("Wallet already exists")
    wallet = Wallet(
        user_id=user_id,
        pending_balance=Decimal("0.00"),
        available_balance=Decimal("0.00"),
        currency=currency or settings.DEFAULT_CURRENCY,
    )
    db.add(wallet)
    await db.flush()
    await db.refresh(wallet)
    logger.info("wallet_created", user_id=str(user_id), wallet_id=str(wallet.id))
    return wallet


async def get_or_create_wallet(db: AsyncSession, user_id: uuid.UUID, lock: bool = False) -> Wallet:
    wallet = await _get_wallet(db, user_id, lock=lock)
    if wallet is None:
        wallet = await create_wallet(db, user_id)
    return wallet


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> dict:
    wallet = await _get_wallet(db, user_id)
    if wallet is None:
        raise LedgerError("Wallet not found", status_code=404)
    return {
        "pending_balance": wallet.pending_balance,
        "available_balance": wallet.available_balance,
        "currency": wallet.currency,
    }


async def add_pending_funds(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: Decimal,
    booking_id: uuid.UUID | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """Hold funds for a completed job until its review window ends."""
    value = _money(amount)
    wallet = await get_or_create_wallet(db, user_id, lock=True)

    wallet.pending_balance = Decimal(wallet.pending_balance) + value
    txn = WalletTransaction(
        wallet_id=wallet.id,
        booking_id=booking_id,
        amount=value,
        type=TransactionType.HOLD,
        status=TransactionStatus.PENDING_REVIEW,
        description=description or "Job payment completed",
    )
    db.add(txn)
    await db.flush()
    _record_metric("hold")
    logger.info(
        "wallet_funds_held",
        wallet_id=str(wallet.id),
        booking_id=str(booking_id) if booking_id else None,
        amount=str(value),
    )
    return txn


async def release_funds(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: Decimal,
    booking_id: uuid.UUID | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """Move held funds to the available balance once the review window has passed."""
    value = _money(amount)
    wallet = await _get_wallet(db, user_id, lock=True)
    if wallet is None:
        raise LedgerError("Wallet not found", status_code=404)
    if Decimal(wallet.pending_balance) < value:
        raise LedgerError("Insufficient pending balance")

    wallet.pending_balance = Decimal(wallet.pending_balance) - value
    wallet.available_balance = Decimal(wallet.available_balance) + value
    if booking_id is not None:
        await db.execute(
            update(WalletTransaction)
            .where(
                WalletTransaction.wallet_id == wallet.id,
                WalletTransaction.booking_id == booking_id,
                WalletTransaction.status == TransactionStatus.PENDING_REVIEW,
            )
            .values(status=TransactionStatus.RELEASED)
            .execution_options(synchronize_session="fetch")
        )
    txn = WalletTransaction(
        wallet_id=wallet.id,
        booking_id=booking_id,
        amount=value,
        type=TransactionType.RELEASE,
        status=TransactionStatus.RELEASED,
        description=description or "Funds available for withdrawal",
    )
    db.add(txn)
    await db.flush()
    _record_metric("release")
    logger.info(
        "wallet_funds_released",
        wallet_id=str(wallet.id),
        booking_id=str(booking_id) if booking_id else None,
        amount=str(value),
    )
    return txn


async def deduct_available_funds(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: Decimal,
    description: str | None = None,
) -> WalletTransaction:
    """Debit the available balance for a payout."""
    value = _money(amount)
    wallet = await _get_wallet(db, user_id, lock=True)
    if wallet is None:
        raise LedgerError("Wallet not found", status_code=404)
    if Decimal(wallet.available_balance) < value:
        raise LedgerError("Insufficient available balance")

    wallet.available_balance = Decimal(wallet.available_balance) - value
    txn = WalletTransaction(
        wallet_id=wallet.id,
        booking_id=None,
        amount=value,
        type=TransactionType.PAYOUT,
        status=TransactionStatus.RELEASED,
        description=description or "Withdrawal",
    )
    db.add(txn)
    await db.flush()
    _record_metric("payout")
    logger.info("wallet_payout", wallet_id=str(wallet.id), amount=str(value))
    return txn


async def find_hold(
    db: AsyncSession,
    booking_id: uuid.UUID,
    status: TransactionStatus,
    lock: bool = False,
) -> WalletTransaction | None:
    stmt = (
        select(WalletTransaction)
        .where(
            WalletTransaction.booking_id == booking_id,
            WalletTransaction.type == TransactionType.HOLD,
            WalletTransaction.status == status,
        )
        .order_by(WalletTransaction.created_at.desc())
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def mark_hold_disputed(db: AsyncSession, booking_id: uuid.UUID) -> WalletTransaction | None:
    """Freeze the booking's hold while a dispute is open. Balances do not move."""
    hold = await find_hold(db, booking_id, TransactionStatus.PENDING_REVIEW, lock=True)
    if hold is not None:
        hold.status = TransactionStatus.DISPUTED
        await db.flush()
    return hold


async def resolve_hold(
    db: AsyncSession,
    hold: WalletTransaction,
    resolution: DisputeResolution,
) -> Wallet:
    """Settle a disputed hold according to the dispute outcome."""
    wallet = (
        await db.execute(select(Wallet).where(Wallet.id == hold.wallet_id).with_for_update())
    ).scalar_one()
    amount = Decimal(hold.amount)

    if resolution == DisputeResolution.RESOLVED_WORKER:
        if Decimal(wallet.pending_balance) < amount:
            raise LedgerError("Insufficient pending balance")
        wallet.pending_balance = Decimal(wallet.pending_balance) - amount
        wallet.available_balance = Decimal(wallet.available_balance) + amount
        hold.status = TransactionStatus.AVAILABLE
    elif resolution == DisputeResolution.RESOLVED_BUSINESS:
        if Decimal(wallet.pending_balance) < amount:
            raise LedgerError("Insufficient pending balance")
        wallet.pending_balance = Decimal(wallet.pending_balance) - amount
        hold.status = TransactionStatus.CANCELLED
    else:
        hold.status = TransactionStatus.PENDING_REVIEW

    await db.flush()
    _record_metric(f"dispute_{resolution.value}")
    logger.info(
        "wallet_hold_resolved",
        wallet_id=str(wallet.id),
        transaction_id=str(hold.id),
        resolution=resolution.value,
    )
    return wallet


async def list_transactions(
    db: AsyncSession, user_id: uuid.UUID, limit: int | None = None
) -> list[WalletTransaction]:
    wallet = await _get_wallet(db, user_id)
    if wallet is None:
        return []
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.created_at.desc())
        .limit(limit or settings.WALLET_TRANSACTIONS_LIMIT)
    )
    return list(result.scalars().all())


async def get_wallet_details(db: AsyncSession, user_id: uuid.UUID) -> dict:
    wallet = await get_or_create_wallet(db, user_id)
    recent = await list_transactions(db, user_id, limit=10)
    return {"wallet": wallet, "recent_transactions": recent}
