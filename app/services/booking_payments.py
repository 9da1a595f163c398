"""Money movements tied to the booking lifecycle.

Shared by the booking routes and the scheduler. Callers own the transaction:
these functions flush but never commit.
"""
from datetime import timedelta
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.booking import Booking
from app.models.enums import BookingStatus, NotificationType, PaymentStatus
from app.models.job import Job
from app.models.worker import Worker
from app.services import wallet as ledger
from app.services.notifications import notify_safely
from app.utils.booking_state import validate_transition
from app.utils.timeutil import utcnow

logger = structlog.get_logger()


async def checkout(db: AsyncSession, booking: Booking, job: Job, worker: Worker) -> Decimal:
    """Complete an in-progress booking and hold the worker's pay for the review window.

    Returns the held amount (0 when the job has no price). Raises HTTPException on an
    illegal transition and LedgerError on a ledger failure; the caller's rollback
    then discards every change made here.
    """
    validate_transition(booking.status, BookingStatus.COMPLETED, action="check out")
    now = utcnow()
    booking.status = BookingStatus.COMPLETED
    booking.checkout_time = now
    booking.payment_status = PaymentStatus.PENDING_REVIEW
    booking.review_deadline = now + timedelta(hours=settings.REVIEW_WINDOW_HOURS)
    if job.budget_max is not None:
        booking.final_price = job.budget_max
    amount = Decimal(booking.final_price or 0)

    if amount > 0:
        await ledger.add_pending_funds(
            db,
            user_id=worker.user_id,
            amount=amount,
            booking_id=booking.id,
            description=f"Payment for {job.title}",
        )
    else:
        logger.info("checkout_without_payment", booking_id=str(booking.id))
    await db.flush()
    return amount


async def release_booking_payment(db: AsyncSession, booking: Booking, worker: Worker) -> Decimal:
    """Move a completed booking's held pay to the worker's available balance.

    Only valid while the booking is completed and its payment is pending review
    (a dispute moves it to disputed, which blocks release).
    """
    if booking.status != BookingStatus.COMPLETED or booking.payment_status != PaymentStatus.PENDING_REVIEW:
        raise ledger.LedgerError("Payment can only be released for completed bookings pending review")

    amount = Decimal(booking.final_price or 0)
    if amount > 0:
        await ledger.release_funds(
            db,
            user_id=worker.user_id,
            amount=amount,
            booking_id=booking.id,
        )
    booking.payment_status = PaymentStatus.RELEASED
    await db.flush()

    await notify_safely(
        db,
        user_id=worker.user_id,
        notification_type=NotificationType.PAYMENT_RELEASED,
        title="Payment released",
        body=f"{settings.DEFAULT_CURRENCY} {amount:,.0f} is now available in your wallet.",
        link="/worker/wallet",
        data={"booking_id": str(booking.id)},
    )
    logger.info("booking_payment_released", booking_id=str(booking.id), amount=str(amount))
    return amount
