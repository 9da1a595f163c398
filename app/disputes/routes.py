import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_admin, get_current_user, get_party_profiles
from app.metrics import DISPUTES_OPENED, DISPUTES_RESOLVED
from app.models.audit_log import AuditLog
from app.models.booking import Booking
from app.models.dispute import Dispute
from app.models.enums import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeResolution,
    DisputeStatus,
    NotificationType,
    PartyRole,
    PaymentStatus,
    TransactionStatus,
    UserRole,
)
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.dispute import ActiveDisputeResponse, DisputeCreateRequest, DisputeResolveRequest, DisputeResponse
from app.services import wallet as ledger
from app.services.notifications import notify_safely
from app.utils.rate_limit import LEDGER_RATE_LIMIT, LIST_RATE_LIMIT, limiter
from app.utils.timeutil import utcnow

logger = structlog.get_logger()
router = APIRouter()

_DEFAULT_RESOLUTION_NOTES = {
    DisputeResolution.RESOLVED_WORKER: "Dispute resolved in favour of the worker",
    DisputeResolution.RESOLVED_BUSINESS: "Dispute resolved in favour of the business",
    DisputeResolution.REJECTED: "Dispute rejected",
}

# Booking payment status after each outcome
_PAYMENT_STATUS_AFTER = {
    DisputeResolution.RESOLVED_WORKER: PaymentStatus.AVAILABLE,
    DisputeResolution.RESOLVED_BUSINESS: PaymentStatus.CANCELLED,
    DisputeResolution.REJECTED: PaymentStatus.PENDING_REVIEW,
}


async def _load_booking_with_parties(db: AsyncSession, booking_id: uuid.UUID, lock: bool = False) -> Booking:
    stmt = (
        select(Booking)
        .where(Booking.id == booking_id)
        .options(selectinload(Booking.worker), selectinload(Booking.business), selectinload(Booking.job))
    )
    if lock:
        stmt = stmt.with_for_update(of=Booking)
    booking = (await db.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _party_role(booking: Booking, user: User) -> PartyRole | None:
    if user.id == booking.worker.user_id:
        return PartyRole.WORKER
    if user.id == booking.business.user_id:
        return PartyRole.BUSINESS
    return None


async def _active_dispute(db: AsyncSession, booking_id: uuid.UUID) -> Dispute | None:
    result = await db.execute(
        select(Dispute)
        .where(Dispute.booking_id == booking_id, Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
        .order_by(Dispute.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_dispute_or_404(db: AsyncSession, dispute_id: uuid.UUID, lock: bool = False) -> Dispute:
    stmt = select(Dispute).where(Dispute.id == dispute_id)
    if lock:
        stmt = stmt.with_for_update()
    dispute = (await db.execute(stmt)).scalar_one_or_none()
    if dispute is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dispute not found")
    return dispute


@router.post("", response_model=Envelope[DisputeResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def raise_dispute(
    request: Request,
    body: DisputeCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open a dispute on a completed booking whose payment is still under review.

    The booking row is locked for the duration, so two concurrent disputes on the same
    booking cannot both pass the active-dispute guard. The hold is frozen in the same
    transaction.
    """
    booking = await _load_booking_with_parties(db, body.booking_id, lock=True)
    role = _party_role(booking, user)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")

    if booking.payment_status != PaymentStatus.PENDING_REVIEW:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Disputes can only be raised while the payment is pending review",
        )
    if await _active_dispute(db, booking.id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An active dispute already exists for this booking",
        )

    dispute = Dispute(
        booking_id=booking.id,
        raised_by=user.id,
        raised_by_role=role,
        reason=body.reason,
        evidence_urls=[str(url) for url in body.evidence_urls],
        status=DisputeStatus.PENDING,
    )
    db.add(dispute)
    booking.payment_status = PaymentStatus.DISPUTED
    await ledger.mark_hold_disputed(db, booking.id)
    await db.flush()

    other_user_id = booking.business.user_id if role == PartyRole.WORKER else booking.worker.user_id
    await notify_safely(
        db,
        user_id=other_user_id,
        notification_type=NotificationType.DISPUTE_RAISED,
        title="Dispute raised",
        body=f"A dispute was raised on {booking.job.title}. The payment is on hold until it is resolved.",
        link=f"/disputes/{dispute.id}",
        data={"dispute_id": str(dispute.id), "booking_id": str(booking.id)},
    )

    DISPUTES_OPENED.labels(raised_by_role=role.value).inc()
    logger.info("dispute_raised", dispute_id=str(dispute.id), booking_id=str(booking.id), raised_by_role=role.value)
    return ok(dispute)


@router.get("/me", response_model=Envelope[list[DisputeResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_disputes(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Disputes on the caller's bookings, newest first."""
    worker, business = await get_party_profiles(user, db)
    query = select(Dispute).join(Booking, Booking.id == Dispute.booking_id)
    if worker is not None:
        query = query.where(Booking.worker_id == worker.id)
    elif business is not None:
        query = query.where(Booking.business_id == business.id)
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only workers and businesses have disputes")
    result = await db.execute(query.order_by(Dispute.created_at.desc()))
    return ok(result.scalars().all())


@router.get("/pending", response_model=Envelope[list[DisputeResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_pending_disputes(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Open disputes awaiting an admin, oldest first."""
    result = await db.execute(
        select(Dispute)
        .where(Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
        .order_by(Dispute.created_at.asc())
    )
    return ok(result.scalars().all())


@router.get("/booking/{booking_id}/active", response_model=Envelope[ActiveDisputeResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def check_active_dispute(
    request: Request,
    booking_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _load_booking_with_parties(db, booking_id)
    if user.role != UserRole.ADMIN and _party_role(booking, user) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")
    dispute = await _active_dispute(db, booking.id)
    return ok({"has_active_dispute": dispute is not None, "dispute": dispute})


@router.get("/{dispute_id}", response_model=Envelope[DisputeResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    dispute = await _get_dispute_or_404(db, dispute_id)
    if user.role != UserRole.ADMIN and dispute.raised_by != user.id:
        booking = await _load_booking_with_parties(db, dispute.booking_id)
        if _party_role(booking, user) is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your dispute")
    return ok(dispute)


@router.post("/{dispute_id}/investigate", response_model=Envelope[DisputeResponse])
@limiter.limit("20/minute")
async def mark_investigating(
    request: Request,
    dispute_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    dispute = await _get_dispute_or_404(db, dispute_id, lock=True)
    if dispute.status != DisputeStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending disputes can be moved to investigation",
        )
    dispute.status = DisputeStatus.INVESTIGATING
    await db.flush()
    logger.info("dispute_investigating", dispute_id=str(dispute.id), admin_id=str(admin.id))
    return ok(dispute)


@router.post("/{dispute_id}/resolve", response_model=Envelope[DisputeResponse])
@limiter.limit(LEDGER_RATE_LIMIT)
async def resolve_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    body: DisputeResolveRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Settle a dispute and the frozen hold in one transaction.

    Locks the dispute, the booking and the wallet. Any failure rolls back all of
    them together, so a dispute is never marked resolved without its money moving.
    """
    dispute = await _get_dispute_or_404(db, dispute_id, lock=True)
    if dispute.status not in ACTIVE_DISPUTE_STATUSES:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Dispute already resolved")

    booking = await _load_booking_with_parties(db, dispute.booking_id, lock=True)
    resolution = body.resolution

    hold = await ledger.find_hold(db, booking.id, TransactionStatus.DISPUTED, lock=True)
    if hold is not None:
        try:
            await ledger.resolve_hold(db, hold, resolution)
        except ledger.LedgerError as e:
            logger.error("dispute_resolution_ledger_failed", dispute_id=str(dispute.id), error=e.message)
            raise HTTPException(status_code=e.status_code, detail=e.message)
    else:
        logger.info("dispute_resolved_without_hold", dispute_id=str(dispute.id), booking_id=str(booking.id))

    booking.payment_status = _PAYMENT_STATUS_AFTER[resolution]
    dispute.status = DisputeStatus.REJECTED if resolution == DisputeResolution.REJECTED else DisputeStatus.RESOLVED
    dispute.resolution = resolution
    dispute.resolution_notes = body.notes or _DEFAULT_RESOLUTION_NOTES[resolution]
    dispute.resolved_by = admin.id
    dispute.resolved_at = utcnow()

    db.add(AuditLog(
        action="resolve_dispute",
        actor_user_id=admin.id,
        target_user_id=dispute.raised_by,
        detail=dispute.resolution_notes,
        metadata_json={
            "dispute_id": str(dispute.id),
            "booking_id": str(booking.id),
            "resolution": resolution.value,
            "amount": str(hold.amount) if hold is not None else None,
        },
    ))
    await db.flush()

    for party_user_id in (booking.worker.user_id, booking.business.user_id):
        await notify_safely(
            db,
            user_id=party_user_id,
            notification_type=NotificationType.DISPUTE_RESOLVED,
            title="Dispute resolved",
            body=dispute.resolution_notes,
            link=f"/disputes/{dispute.id}",
            data={"dispute_id": str(dispute.id), "resolution": resolution.value},
        )

    DISPUTES_RESOLVED.labels(resolution=resolution.value).inc()
    logger.info(
        "dispute_resolved",
        dispute_id=str(dispute.id),
        booking_id=str(booking.id),
        resolution=resolution.value,
        admin_id=str(admin.id),
    )
    return ok(dispute)
