import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_business, get_current_user, get_current_worker, get_party_profiles
from app.metrics import BOOKINGS_CANCELLED, BOOKINGS_COMPLETED
from app.models.booking import Booking
from app.models.business import Business
from app.models.cancellation import CancellationReason
from app.models.enums import BookingStatus, NotificationType, PartyRole, UserRole
from app.models.user import User
from app.models.worker import Worker
from app.schemas.booking import (
    AcceptApplicationResponse,
    BookingDetailResponse,
    BookingNotesRequest,
    BookingResponse,
    BulkStatusRequest,
    BulkStatusResponse,
    BusinessBookingResponse,
    CancelBookingRequest,
    CancellationHistoryItem,
    LocationRequest,
)
from app.schemas.common import Envelope, ok
from app.schemas.compliance import ComplianceCheckResponse
from app.services import compliance, reliability
from app.services.booking_payments import checkout, release_booking_payment
from app.services.notifications import notify_safely
from app.services.wallet import LedgerError
from app.utils.booking_state import validate_transition
from app.utils.geo import verify_location
from app.utils.rate_limit import LEDGER_RATE_LIMIT, LIST_RATE_LIMIT, limiter
from app.utils.timeutil import as_utc, month_start, utcnow

logger = structlog.get_logger()
router = APIRouter()


async def _load_booking(db: AsyncSession, booking_id: uuid.UUID, lock: bool = False) -> Booking:
    """Fetch a booking with its job and both parties. Locks the booking row when asked."""
    stmt = (
        select(Booking)
        .where(Booking.id == booking_id)
        .options(
            selectinload(Booking.job),
            selectinload(Booking.worker),
            selectinload(Booking.business),
        )
    )
    if lock:
        stmt = stmt.with_for_update(of=Booking)
    booking = (await db.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _require_business_owner(booking: Booking, business: Business) -> None:
    if booking.business_id != business.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")


def _require_worker_owner(booking: Booking, worker: Worker) -> None:
    if booking.worker_id != worker.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")


async def _accept(db: AsyncSession, booking: Booking, business: Business) -> ComplianceCheckResponse:
    """Accept a pending application. Every guard raises before the booking changes."""
    _require_business_owner(booking, business)
    validate_transition(booking.status, BookingStatus.ACCEPTED, action="accept")

    month = month_start(as_utc(booking.start_date))
    try:
        result = await compliance.check_before_accept(db, booking.worker_id, booking.business_id, month)
    except compliance.ComplianceError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if not result.can_accept:
        logger.warning(
            "booking_accept_blocked_by_compliance",
            booking_id=str(booking.id),
            worker_id=str(booking.worker_id),
            days_worked=result.days_worked,
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)

    booking.status = BookingStatus.ACCEPTED
    booking.accepted_at = utcnow()
    await db.flush()

    await compliance.record_tracking(db, booking.worker_id, booking.business_id, month)

    await notify_safely(
        db,
        user_id=booking.worker.user_id,
        notification_type=NotificationType.APPLICATION_ACCEPTED,
        title="Application accepted",
        body=f"{business.name} accepted your application for {booking.job.title}",
        link=f"/worker/bookings/{booking.id}",
        data={"booking_id": str(booking.id)},
    )

    logger.info(
        "booking_accepted",
        booking_id=str(booking.id),
        compliance_status=result.status.value,
        days_worked=result.days_worked,
    )
    return result


async def _reject(db: AsyncSession, booking: Booking, business: Business) -> None:
    _require_business_owner(booking, business)
    validate_transition(booking.status, BookingStatus.REJECTED, action="reject")

    booking.status = BookingStatus.REJECTED
    await db.flush()

    await notify_safely(
        db,
        user_id=booking.worker.user_id,
        notification_type=NotificationType.APPLICATION_REJECTED,
        title="Application not selected",
        body=f"{business.name} did not select your application for {booking.job.title}",
        link=f"/worker/bookings/{booking.id}",
        data={"booking_id": str(booking.id)},
    )
    logger.info("booking_rejected", booking_id=str(booking.id))


@router.get("", response_model=Envelope[list[BookingResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_bookings(
    request: Request,
    booking_status: BookingStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings of the current worker or business, newest first."""
    worker, business = await get_party_profiles(user, db)
    if worker is not None:
        query = select(Booking).where(Booking.worker_id == worker.id)
    elif business is not None:
        query = select(Booking).where(Booking.business_id == business.id)
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only workers and businesses have bookings")

    if booking_status:
        query = query.where(Booking.status == booking_status)
    result = await db.execute(query.order_by(Booking.created_at.desc()).limit(limit).offset(offset))
    return ok(result.scalars().all())


@router.get("/cancellation-history", response_model=Envelope[list[CancellationHistoryItem]])
@limiter.limit(LIST_RATE_LIMIT)
async def cancellation_history(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancelled bookings of the caller that carry a cancellation reason."""
    worker, business = await get_party_profiles(user, db)
    query = select(Booking).where(
        Booking.status == BookingStatus.CANCELLED,
        Booking.cancellation_reason_id.is_not(None),
    )
    if worker is not None:
        query = query.where(Booking.worker_id == worker.id)
    elif business is not None:
        query = query.where(Booking.business_id == business.id)
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only workers and businesses have bookings")

    result = await db.execute(
        query.options(selectinload(Booking.job), selectinload(Booking.cancellation_reason))
        .order_by(Booking.cancelled_at.desc())
    )
    return ok(result.scalars().all())


@router.post("/bulk-status", response_model=Envelope[BulkStatusResponse])
@limiter.limit("10/minute")
async def bulk_update_status(
    request: Request,
    body: BulkStatusRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Accept or reject several applications at once.

    Each booking goes through the same guards as the single-booking route. A
    booking that fails a guard is reported in ``failed`` and the rest still apply.
    """
    _, business = business_ctx
    updated: list[Booking] = []
    failed: list[dict] = []
    for booking_id in dict.fromkeys(body.booking_ids):
        try:
            booking = await _load_booking(db, booking_id, lock=True)
            if body.status == BookingStatus.ACCEPTED:
                await _accept(db, booking, business)
            else:
                await _reject(db, booking, business)
        except HTTPException as e:
            failed.append({"booking_id": booking_id, "error": e.detail})
            continue
        updated.append(booking)

    logger.info(
        "booking_bulk_status",
        status=body.status.value,
        updated=len(updated),
        failed=len(failed),
    )
    return ok({"updated": updated, "failed": failed})


@router.get("/{booking_id}", response_model=Envelope[BookingDetailResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_booking(
    request: Request,
    booking_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Booking detail, visible to its worker, its business or an admin."""
    booking = await _load_booking(db, booking_id)
    if user.role != UserRole.ADMIN and user.id not in (booking.worker.user_id, booking.business.user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")
    return ok(booking)


@router.post("/{booking_id}/accept", response_model=Envelope[AcceptApplicationResponse])
@limiter.limit("20/minute")
async def accept_application(
    request: Request,
    booking_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Accept a pending application, subject to the monthly working-day limit."""
    _, business = business_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    result = await _accept(db, booking, business)
    return ok({"booking": booking, "compliance": result})


@router.post("/{booking_id}/reject", response_model=Envelope[BookingResponse])
@limiter.limit("20/minute")
async def reject_application(
    request: Request,
    booking_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    _, business = business_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    await _reject(db, booking, business)
    return ok(booking)


@router.put("/{booking_id}/notes", response_model=Envelope[BusinessBookingResponse])
@limiter.limit("20/minute")
async def update_booking_notes(
    request: Request,
    booking_id: uuid.UUID,
    body: BookingNotesRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Set or clear the business's private notes about the worker on this booking."""
    _, business = business_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    _require_business_owner(booking, business)

    notes = body.notes.strip() if body.notes else None
    booking.booking_notes = notes or None
    await db.flush()
    logger.info("booking_notes_updated", booking_id=str(booking.id), cleared=booking.booking_notes is None)
    return ok(booking)


@router.post("/{booking_id}/cancel-application", response_model=Envelope[BookingResponse])
@limiter.limit("20/minute")
async def cancel_application(
    request: Request,
    booking_id: uuid.UUID,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a pending application."""
    _, worker = worker_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    _require_worker_owner(booking, worker)
    if booking.status != BookingStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending applications can be withdrawn",
        )

    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = utcnow()
    booking.cancelled_by = PartyRole.WORKER
    await db.flush()

    BOOKINGS_CANCELLED.labels(cancelled_by=PartyRole.WORKER.value).inc()
    logger.info("application_withdrawn", booking_id=str(booking.id))
    return ok(booking)


@router.post("/{booking_id}/start", response_model=Envelope[BookingResponse])
@limiter.limit("20/minute")
async def start_booking(
    request: Request,
    booking_id: uuid.UUID,
    body: LocationRequest | None = None,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Check in to an accepted booking, optionally with the worker's position."""
    _, worker = worker_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    _require_worker_owner(booking, worker)
    validate_transition(booking.status, BookingStatus.IN_PROGRESS, action="start")

    booking.status = BookingStatus.IN_PROGRESS
    booking.actual_start_time = utcnow()
    if body is not None:
        booking.check_in_lat, booking.check_in_lng = body.lat, body.lng
    await db.flush()

    await notify_safely(
        db,
        user_id=booking.business.user_id,
        notification_type=NotificationType.BOOKING_STARTED,
        title="Worker checked in",
        body=f"{worker.full_name} started work on {booking.job.title}",
        link=f"/business/bookings/{booking.id}",
        data={"booking_id": str(booking.id)},
    )
    logger.info(
        "booking_started",
        booking_id=str(booking.id),
        location=verify_location(
            booking.check_in_lat, booking.check_in_lng, booking.job.lat, booking.job.lng
        ).value,
    )
    return ok(booking)


@router.post("/{booking_id}/checkout", response_model=Envelope[BookingResponse])
@limiter.limit(LEDGER_RATE_LIMIT)
async def checkout_booking(
    request: Request,
    booking_id: uuid.UUID,
    body: LocationRequest | None = None,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Complete the booking and hold the worker's pay for the review window.

    Status change, wallet hold and score refresh share the request transaction.
    """
    _, worker = worker_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    _require_worker_owner(booking, worker)

    try:
        amount = await checkout(db, booking, booking.job, worker)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if body is not None:
        booking.check_out_lat, booking.check_out_lng = body.lat, body.lng
        await db.flush()

    await notify_safely(
        db,
        user_id=worker.user_id,
        notification_type=NotificationType.PAYMENT_HELD,
        title="Job completed",
        body=f"Payment for {booking.job.title} is held until the review period ends.",
        link="/worker/wallet",
        data={"booking_id": str(booking.id), "amount": str(amount)},
    )
    await notify_safely(
        db,
        user_id=booking.business.user_id,
        notification_type=NotificationType.BOOKING_COMPLETED,
        title="Booking completed",
        body=f"{worker.full_name} checked out of {booking.job.title}. Please review the work.",
        link=f"/business/bookings/{booking.id}",
        data={"booking_id": str(booking.id)},
    )

    await reliability.update_score(db, worker.id)

    BOOKINGS_COMPLETED.inc()
    logger.info("booking_checked_out", booking_id=str(booking.id), amount=str(amount))
    return ok(booking)


@router.post("/{booking_id}/release-payment", response_model=Envelope[BookingResponse])
@limiter.limit(LEDGER_RATE_LIMIT)
async def release_payment(
    request: Request,
    booking_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Release the held pay early, before the review window expires."""
    _, business = business_ctx
    booking = await _load_booking(db, booking_id, lock=True)
    _require_business_owner(booking, business)

    try:
        await release_booking_payment(db, booking, booking.worker)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ok(booking)


@router.post("/{booking_id}/cancel", response_model=Envelope[BookingResponse])
@limiter.limit("20/minute")
async def cancel_booking(
    request: Request,
    booking_id: uuid.UUID,
    body: CancelBookingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel an accepted or in-progress booking with a reason. Either party may cancel."""
    booking = await _load_booking(db, booking_id, lock=True)
    if user.id == booking.worker.user_id:
        cancelled_by = PartyRole.WORKER
        other_user_id = booking.business.user_id
    elif user.id == booking.business.user_id:
        cancelled_by = PartyRole.BUSINESS
        other_user_id = booking.worker.user_id
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")

    if booking.status not in (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot cancel a booking in status '{BookingStatus(booking.status).value}'",
        )

    reason = await db.get(CancellationReason, body.reason_id)
    if reason is None or not reason.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cancellation reason")

    booking.status = BookingStatus.CANCELLED
    booking.cancellation_reason_id = reason.id
    booking.cancellation_note = body.note
    booking.cancelled_at = utcnow()
    booking.cancelled_by = cancelled_by
    await db.flush()

    message = f"Reason: {reason.name}"
    if body.note:
        message = f"{message}. {body.note}"
    await notify_safely(
        db,
        user_id=other_user_id,
        notification_type=NotificationType.BOOKING_CANCELLED,
        title=f"Booking cancelled: {booking.job.title}",
        body=message,
        link=f"/bookings/{booking.id}",
        data={"booking_id": str(booking.id), "reason_id": str(reason.id)},
    )

    BOOKINGS_CANCELLED.labels(cancelled_by=cancelled_by.value).inc()
    logger.info(
        "booking_cancelled",
        booking_id=str(booking.id),
        cancelled_by=cancelled_by.value,
        reason=reason.name,
    )
    return ok(booking)
