import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from starlette.requests import Request
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_user
from app.models.booking import Booking
from app.models.enums import NotificationType, UserRole
from app.models.message import Message
from app.models.user import User
from app.schemas.common import Envelope, StatusResponse, ok
from app.schemas.message import MarkedCountResponse, MessageCreateRequest, MessageResponse, UnreadCountResponse
from app.services.notifications import notify_safely
from app.utils.display_name import get_display_name
from app.utils.rate_limit import limiter
from app.utils.timeutil import utcnow

logger = structlog.get_logger()
router = APIRouter()

NOTIFICATION_PREVIEW_LENGTH = 50


def _with_sender():
    # The sender's profiles are needed for the display name
    return selectinload(Message.sender).options(
        selectinload(User.worker_profile), selectinload(User.business_profile)
    )


def _to_response(msg: Message) -> MessageResponse:
    """Convert a Message ORM object to a response with the sender's display name."""
    sender = msg.__dict__.get("sender")
    return MessageResponse(
        id=msg.id,
        sender_id=msg.sender_id,
        receiver_id=msg.receiver_id,
        booking_id=msg.booking_id,
        content=msg.content,
        is_read=msg.is_read,
        read_at=msg.read_at,
        created_at=msg.created_at,
        sender_name=get_display_name(sender) if sender is not None else None,
    )


def _preview(content: str) -> str:
    if len(content) <= NOTIFICATION_PREVIEW_LENGTH:
        return content
    return content[:NOTIFICATION_PREVIEW_LENGTH] + "..."


async def _get_booking_parties(db: AsyncSession, booking_id: uuid.UUID) -> tuple[Booking, set[uuid.UUID]]:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .options(selectinload(Booking.worker), selectinload(Booking.business))
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking, {booking.worker.user_id, booking.business.user_id}


async def _get_message_or_404(db: AsyncSession, message_id: uuid.UUID) -> Message:
    message = await db.get(Message, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


@router.post("", response_model=Envelope[MessageResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def send_message(
    request: Request,
    body: MessageCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Send a direct message, optionally tied to a booking both users take part in."""
    if body.receiver_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot send a message to yourself")

    receiver = await db.get(User, body.receiver_id)
    if receiver is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receiver not found")

    if body.booking_id is not None:
        _, parties = await _get_booking_parties(db, body.booking_id)
        if {user.id, receiver.id} != parties:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Both users must be parties of the booking",
            )

    message = Message(
        sender_id=user.id,
        receiver_id=receiver.id,
        booking_id=body.booking_id,
        content=body.content,
        is_read=False,
    )
    db.add(message)
    await db.flush()

    sender = (
        await db.execute(
            select(User)
            .where(User.id == user.id)
            .options(selectinload(User.worker_profile), selectinload(User.business_profile))
        )
    ).scalar_one()
    sender_name = get_display_name(sender)

    await notify_safely(
        db,
        user_id=receiver.id,
        notification_type=NotificationType.NEW_MESSAGE,
        title=f"New message from {sender_name}",
        body=_preview(body.content),
        link=f"/messages/{user.id}",
        data={"message_id": str(message.id), "sender_id": str(user.id)},
    )

    logger.info(
        "message_sent",
        message_id=str(message.id),
        sender_id=str(user.id),
        booking_id=str(body.booking_id) if body.booking_id else None,
    )
    response = _to_response(message)
    response.sender_name = sender_name
    return ok(response)


@router.get("", response_model=Envelope[list[MessageResponse]])
@limiter.limit("60/minute")
async def list_my_messages(
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Messages sent or received by the caller, newest first."""
    result = await db.execute(
        select(Message)
        .where(or_(Message.sender_id == user.id, Message.receiver_id == user.id))
        .options(_with_sender())
        .order_by(Message.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return ok([_to_response(m) for m in result.scalars().all()])


@router.get("/unread", response_model=Envelope[list[MessageResponse]])
@limiter.limit("60/minute")
async def list_unread(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Message)
        .where(Message.receiver_id == user.id, Message.is_read.is_(False))
        .options(_with_sender())
        .order_by(Message.created_at.desc())
    )
    return ok([_to_response(m) for m in result.scalars().all()])


@router.get("/unread/count", response_model=Envelope[UnreadCountResponse])
@limiter.limit("60/minute")
async def unread_count(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(func.count(Message.id)).where(Message.receiver_id == user.id, Message.is_read.is_(False))
    )
    return ok({"unread_count": result.scalar() or 0})


@router.post("/read-all", response_model=Envelope[MarkedCountResponse])
@limiter.limit("30/minute")
async def mark_all_as_read(
    request: Request,
    sender_id: uuid.UUID | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark every unread message to the caller as read, optionally only those from one sender."""
    stmt = (
        update(Message)
        .where(Message.receiver_id == user.id, Message.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if sender_id is not None:
        stmt = stmt.where(Message.sender_id == sender_id)
    result = await db.execute(stmt)
    return ok({"updated": result.rowcount or 0})


@router.get("/conversations/{other_user_id}", response_model=Envelope[list[MessageResponse]])
@limiter.limit("60/minute")
async def get_conversation(
    request: Request,
    other_user_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Messages between the caller and another user, oldest first."""
    result = await db.execute(
        select(Message)
        .where(
            or_(
                and_(Message.sender_id == user.id, Message.receiver_id == other_user_id),
                and_(Message.sender_id == other_user_id, Message.receiver_id == user.id),
            )
        )
        .options(_with_sender())
        .order_by(Message.created_at.asc())
        .limit(limit)
        .offset(offset)
    )
    return ok([_to_response(m) for m in result.scalars().all()])


@router.get("/booking/{booking_id}", response_model=Envelope[list[MessageResponse]])
@limiter.limit("60/minute")
async def get_booking_messages(
    request: Request,
    booking_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Messages attached to a booking, oldest first. Parties only; admins may read for disputes."""
    _, parties = await _get_booking_parties(db, booking_id)
    if user.role != UserRole.ADMIN and user.id not in parties:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a party of this booking")

    result = await db.execute(
        select(Message)
        .where(Message.booking_id == booking_id)
        .options(_with_sender())
        .order_by(Message.created_at.asc())
    )
    return ok([_to_response(m) for m in result.scalars().all()])


@router.post("/{message_id}/read", response_model=Envelope[MessageResponse])
@limiter.limit("60/minute")
async def mark_as_read(
    request: Request,
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    message = await _get_message_or_404(db, message_id)
    if message.receiver_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the receiver can mark a message as read")
    if not message.is_read:
        message.is_read = True
        message.read_at = utcnow()
        await db.flush()
    return ok(_to_response(message))


@router.delete("/{message_id}", response_model=Envelope[StatusResponse])
@limiter.limit("30/minute")
async def delete_message(
    request: Request,
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    message = await _get_message_or_404(db, message_id)
    if user.id not in (message.sender_id, message.receiver_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your message")
    await db.delete(message)
    await db.flush()
    logger.info("message_deleted", message_id=str(message_id), user_id=str(user.id))
    return ok({"status": "deleted"})
