import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.notification import Notification
from app.models.push import NotificationPreferences, PushSubscription
from app.models.user import User
from app.schemas.common import Envelope, StatusResponse, ok
from app.schemas.message import MarkedCountResponse, UnreadCountResponse
from app.schemas.notification import (
    NotificationListResponse,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    NotificationResponse,
    PushSubscribeRequest,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
)
from app.utils.log_mask import mask_endpoint
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


async def _unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
    )
    return result.scalar_one()


async def _get_own_notification(db: AsyncSession, notification_id: uuid.UUID, user: User) -> Notification:
    # Filter by both id and user_id so other users' notifications look nonexistent
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return notification


@router.get("", response_model=Envelope[NotificationListResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_notifications(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0, le=10000),
):
    """List notifications for the current user with unread count."""
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    notifications = result.scalars().all()

    return ok({"notifications": notifications, "unread_count": await _unread_count(db, user.id)})


@router.get("/unread", response_model=Envelope[list[NotificationResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_unread_notifications(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(20, ge=1, le=50),
):
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return ok(result.scalars().all())


@router.get("/unread/count", response_model=Envelope[UnreadCountResponse])
@limiter.limit("60/minute")
async def unread_notification_count(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok({"unread_count": await _unread_count(db, user.id)})


@router.patch("/read-all", response_model=Envelope[MarkedCountResponse])
@limiter.limit("60/minute")
async def mark_all_read(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark all unread notifications as read for the current user."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.flush()

    logger.info("notifications_all_marked_read", user_id=str(user.id), count=result.rowcount)
    return ok({"updated": result.rowcount or 0})


@router.patch("/{notification_id}/read", response_model=Envelope[NotificationResponse])
@limiter.limit("60/minute")
async def mark_notification_read(
    request: Request,
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read."""
    notification = await _get_own_notification(db, notification_id, user)
    notification.is_read = True
    await db.flush()

    logger.info("notification_marked_read", notification_id=str(notification_id))
    return ok(notification)


@router.delete("/{notification_id}", response_model=Envelope[StatusResponse])
@limiter.limit("60/minute")
async def delete_notification(
    request: Request,
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_own_notification(db, notification_id, user)
    await db.delete(notification)
    await db.flush()
    return ok({"status": "deleted"})


# ---------------------------------------------------------------------------
# Push subscriptions
# ---------------------------------------------------------------------------


@router.post("/push/subscribe", response_model=Envelope[PushSubscriptionResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def subscribe_push(
    request: Request,
    body: PushSubscribeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Register a browser push subscription. Re-subscribing the same endpoint refreshes its keys."""
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user.id,
            PushSubscription.endpoint == body.endpoint,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        subscription = PushSubscription(user_id=user.id, endpoint=body.endpoint)
        db.add(subscription)
    subscription.keys_p256dh = body.keys.p256dh
    subscription.keys_auth = body.keys.auth
    subscription.user_agent = body.user_agent
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subscription already exists")

    logger.info("push_subscribed", user_id=str(user.id), endpoint=mask_endpoint(body.endpoint))
    return ok(subscription)


@router.get("/push/subscriptions", response_model=Envelope[list[PushSubscriptionResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_push_subscriptions(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(PushSubscription)
        .where(PushSubscription.user_id == user.id)
        .order_by(PushSubscription.created_at.desc())
    )
    return ok(result.scalars().all())


@router.post("/push/unsubscribe", response_model=Envelope[StatusResponse])
@limiter.limit("20/minute")
async def unsubscribe_push_by_endpoint(
    request: Request,
    body: PushUnsubscribeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user.id,
            PushSubscription.endpoint == body.endpoint,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    await db.delete(subscription)
    await db.flush()
    logger.info("push_unsubscribed", user_id=str(user.id), endpoint=mask_endpoint(body.endpoint))
    return ok({"status": "unsubscribed"})


@router.delete("/push/subscriptions/{subscription_id}", response_model=Envelope[StatusResponse])
@limiter.limit("20/minute")
async def unsubscribe_push(
    request: Request,
    subscription_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.id == subscription_id,
            PushSubscription.user_id == user.id,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    await db.delete(subscription)
    await db.flush()
    logger.info("push_unsubscribed", user_id=str(user.id), subscription_id=str(subscription_id))
    return ok({"status": "unsubscribed"})


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


async def _get_or_create_preferences(db: AsyncSession, user_id: uuid.UUID) -> NotificationPreferences:
    result = await db.execute(
        select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
    )
    prefs = result.scalar_one_or_none()
    if prefs is None:
        prefs = NotificationPreferences(
            user_id=user_id,
            push_enabled=True,
            new_applications=True,
            booking_status=True,
            payment_confirmation=True,
            new_job_matches=True,
            shift_reminders=True,
        )
        db.add(prefs)
        await db.flush()
    return prefs


@router.get("/preferences", response_model=Envelope[NotificationPreferencesResponse])
@limiter.limit("60/minute")
async def get_preferences(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Notification preferences, created with defaults on first access."""
    return ok(await _get_or_create_preferences(db, user.id))


@router.put("/preferences", response_model=Envelope[NotificationPreferencesResponse])
@limiter.limit("30/minute")
async def update_preferences(
    request: Request,
    body: NotificationPreferencesUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prefs = await _get_or_create_preferences(db, user.id)
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(prefs, field, value)
    await db.flush()
    logger.info("notification_preferences_updated", user_id=str(user.id))
    return ok(prefs)
