import asyncio
import uuid
from typing import Set

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session
from app.models.enums import NOTIFICATION_PREFERENCE_FIELD, NotificationType
from app.models.notification import Notification
from app.models.push import NotificationPreferences, PushSubscription
from app.utils.log_mask import mask_endpoint

logger = structlog.get_logger()

# Keep references to background tasks to prevent GC collection
_background_tasks: Set[asyncio.Task] = set()

_push_client: httpx.AsyncClient | None = None


def _get_push_client() -> httpx.AsyncClient:
    global _push_client
    if _push_client is None or _push_client.is_closed:
        timeout = settings.PUSH_WEBHOOK_TIMEOUT_SECONDS
        _push_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=timeout, write=5.0, pool=5.0),
        )
    return _push_client


async def close_push_client() -> None:
    global _push_client
    if _push_client is not None and not _push_client.is_closed:
        await _push_client.aclose()
    _push_client = None


def _preference_allows(prefs: NotificationPreferences | None, notification_type: str | None) -> bool:
    if prefs is None:
        return True
    if not prefs.push_enabled:
        return False
    if notification_type is None:
        return True
    try:
        field = NOTIFICATION_PREFERENCE_FIELD.get(NotificationType(notification_type))
    except ValueError:
        return True
    return field is None or bool(getattr(prefs, field))


async def send_push_notification(
    user_id: uuid.UUID | str,
    title: str,
    body: str,
    link: str | None = None,
    notification_type: str | None = None,
    db: AsyncSession | None = None,
) -> bool:
    """Deliver a push notification through the push webhook.

    Returns True when delivered, or when the user has opted out (nothing to do).
    Returns False when the user has no subscription or delivery failed. Never raises.
    If a ``db`` session is provided it is reused for the lookups; otherwise a new
    session is opened, which is what background tasks do.
    """
    from app.metrics import PUSH_DELIVERIES

    user_uuid = uuid.UUID(str(user_id))

    async def _do_send(session: AsyncSession) -> bool:
        prefs_result = await session.execute(
            select(NotificationPreferences).where(NotificationPreferences.user_id == user_uuid)
        )
        prefs = prefs_result.scalar_one_or_none()
        if not _preference_allows(prefs, notification_type):
            logger.info("push_skip_disabled", user_id=str(user_uuid), notification_type=notification_type)
            PUSH_DELIVERIES.labels(outcome="opted_out").inc()
            return True

        sub_result = await session.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_uuid)
            .order_by(PushSubscription.created_at.desc())
            .limit(1)
        )
        subscription = sub_result.scalar_one_or_none()
        if subscription is None:
            logger.info("push_skip_no_subscription", user_id=str(user_uuid))
            PUSH_DELIVERIES.labels(outcome="no_subscription").inc()
            return False

        if not settings.PUSH_WEBHOOK_URL:
            logger.info("push_send_dev_mode", user_id=str(user_uuid), title=title)
            PUSH_DELIVERIES.labels(outcome="not_configured").inc()
            return False

        payload = {
            "subscription": {
                "endpoint": subscription.endpoint,
                "keys": {
                    "auth": subscription.keys_auth,
                    "p256dh": subscription.keys_p256dh,
                },
            },
            "notification": {
                "title": title,
                "body": body,
                "data": {"url": link} if link else None,
            },
        }
        client = _get_push_client()
        response = await client.post(
            settings.PUSH_WEBHOOK_URL,
            headers={"Authorization": f"Bearer {settings.PUSH_WEBHOOK_TOKEN}"},
            json=payload,
        )
        if not response.is_success:
            logger.warning(
                "push_send_failed",
                user_id=str(user_uuid),
                endpoint=mask_endpoint(subscription.endpoint),
                status_code=response.status_code,
            )
            PUSH_DELIVERIES.labels(outcome="failed").inc()
            return False

        logger.info("push_sent", user_id=str(user_uuid), title=title)
        PUSH_DELIVERIES.labels(outcome="sent").inc()
        return True

    try:
        if db is not None:
            return await _do_send(db)
        async with async_session() as new_db:
            return await _do_send(new_db)
    except Exception as e:
        logger.error("push_error", user_id=str(user_uuid), error=str(e))
        PUSH_DELIVERIES.labels(outcome="error").inc()
        return False


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_type: NotificationType | str,
    title: str,
    body: str,
    link: str | None = None,
    data: dict | None = None,
) -> Notification:
    """Persist an in-app notification and schedule push delivery in the background."""
    type_value = notification_type.value if hasattr(notification_type, "value") else notification_type

    notification = Notification(
        user_id=user_id,
        type=type_value,
        title=title,
        body=body,
        link=link,
        data=dict(data) if data else None,
    )
    db.add(notification)
    await db.flush()

    # Push is skipped entirely when no webhook is configured (dev and tests).
    # The task opens its own session so it is safe after the caller's session commits.
    if settings.PUSH_WEBHOOK_URL:
        task = asyncio.create_task(
            send_push_notification(user_id, title, body, link=link, notification_type=type_value)
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
    return notification


async def notify_safely(db: AsyncSession, **kwargs) -> Notification | None:
    """create_notification for secondary side effects: a failure is logged, never raised.

    The insert runs in a savepoint, so a failed flush rolls back only the
    notification and leaves the caller's pending changes intact.
    """
    try:
        async with db.begin_nested():
            return await create_notification(db, **kwargs)
    except Exception as e:
        logger.warning(
            "notification_create_failed",
            user_id=str(kwargs.get("user_id")),
            notification_type=str(kwargs.get("notification_type")),
            error=str(e),
        )
        return None
