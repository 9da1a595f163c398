import asyncio
from datetime import timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from app.config import settings
from app.database import async_session
from app.metrics import SCHEDULER_JOB_RUNS
from app.models.blacklisted_token import BlacklistedToken
from app.models.booking import Booking
from app.models.enums import BookingStatus, JobPostStatus, PaymentStatus
from app.models.notification import Notification
from app.models.social import JobPost
from app.services.booking_payments import release_booking_payment
from app.services.social import publish_job_post
from app.utils.timeutil import utcnow

logger = structlog.get_logger()

scheduler = AsyncIOScheduler()

SCHEDULER_BATCH_SIZE = 20


async def _acquire_scheduler_lock(job_name: str, ttl: int = 300) -> bool:
    """Try to acquire a distributed Redis lock for a scheduler job.

    Returns True if the lock was acquired (this worker should run the job).
    Returns False if another worker already holds the lock.
    Falls back to True (allow execution) if Redis is unavailable.
    """
    if not settings.REDIS_URL:
        return True
    try:
        import redis.asyncio as aioredis
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        key = f"scheduler_lock:{job_name}"
        acquired = await r.set(key, "1", nx=True, ex=ttl)
        await r.aclose()
        return bool(acquired)
    except Exception:
        # Redis unavailable: run the job anyway (dev / single-worker mode)
        return True


async def release_expired_reviews() -> None:
    """Release held pay for completed bookings whose review window ended without a dispute.

    Processes at most SCHEDULER_BATCH_SIZE bookings per run; the rest are picked
    up by the next run. Each booking commits or rolls back on its own.
    """
    if not await _acquire_scheduler_lock("release_expired_reviews"):
        return
    async with async_session() as db:
        now = utcnow()
        result = await db.execute(
            select(Booking.id)
            .where(
                Booking.status == BookingStatus.COMPLETED,
                Booking.payment_status == PaymentStatus.PENDING_REVIEW,
                Booking.review_deadline < now,
            )
            .order_by(Booking.review_deadline)
            .limit(SCHEDULER_BATCH_SIZE)
        )
        booking_ids = list(result.scalars().all())

        for booking_id in booking_ids:
            try:
                locked = await db.execute(
                    select(Booking)
                    .options(selectinload(Booking.worker))
                    .where(Booking.id == booking_id)
                    .with_for_update(of=Booking, skip_locked=True)
                )
                booking = locked.scalar_one_or_none()
                # Re-check under the lock: a dispute may have been raised meanwhile
                if booking is None or booking.payment_status != PaymentStatus.PENDING_REVIEW:
                    continue
                await release_booking_payment(db, booking, booking.worker)
                await db.commit()
                SCHEDULER_JOB_RUNS.labels(job_name="release_expired_reviews", status="success").inc()
                logger.info("review_window_payment_released", booking_id=str(booking_id))
            except Exception as e:
                await db.rollback()
                SCHEDULER_JOB_RUNS.labels(job_name="release_expired_reviews", status="error").inc()
                logger.exception(
                    "review_window_release_failed",
                    booking_id=str(booking_id),
                    error_type=type(e).__name__,
                )


async def publish_pending_job_posts() -> None:
    """Deliver queued job cross-posts to their platform webhooks."""
    if not await _acquire_scheduler_lock("publish_pending_job_posts"):
        return
    async with async_session() as db:
        result = await db.execute(
            select(JobPost.id)
            .where(JobPost.status == JobPostStatus.PENDING)
            .order_by(JobPost.created_at)
            .limit(SCHEDULER_BATCH_SIZE)
        )
        post_ids = list(result.scalars().all())

        for post_id in post_ids:
            try:
                published = await publish_job_post(db, post_id)
                await db.commit()
                SCHEDULER_JOB_RUNS.labels(
                    job_name="publish_pending_job_posts",
                    status="success" if published else "failed",
                ).inc()
            except Exception as e:
                await db.rollback()
                SCHEDULER_JOB_RUNS.labels(job_name="publish_pending_job_posts", status="error").inc()
                logger.exception(
                    "job_post_publish_crashed",
                    post_id=str(post_id),
                    error_type=type(e).__name__,
                )


async def cleanup_expired_blacklisted_tokens() -> None:
    """Delete blacklisted tokens that have already expired (daily cleanup)."""
    if not await _acquire_scheduler_lock("cleanup_expired_blacklisted_tokens"):
        return
    async with async_session() as db:
        result = await db.execute(
            delete(BlacklistedToken).where(BlacklistedToken.expires_at < utcnow())
        )
        count = result.rowcount
        await db.commit()
        SCHEDULER_JOB_RUNS.labels(job_name="cleanup_expired_blacklisted_tokens", status="success").inc()
        if count:
            logger.info("blacklisted_tokens_cleaned_up", deleted_count=count)


async def cleanup_old_notifications() -> None:
    """Delete read notifications older than the retention period."""
    if not await _acquire_scheduler_lock("cleanup_old_notifications"):
        return
    async with async_session() as db:
        cutoff = utcnow() - timedelta(days=settings.NOTIFICATION_RETENTION_DAYS)
        result = await db.execute(
            delete(Notification).where(
                Notification.is_read == True,  # noqa: E712
                Notification.created_at < cutoff,
            )
        )
        count = result.rowcount
        await db.commit()
        SCHEDULER_JOB_RUNS.labels(job_name="cleanup_old_notifications", status="success").inc()
        if count:
            logger.info("old_notifications_cleaned_up", deleted_count=count)


def start_scheduler() -> None:
    """Start the APScheduler with recurring jobs."""
    scheduler.add_job(
        release_expired_reviews,
        "interval",
        minutes=10,
        id="release_expired_reviews",
        replace_existing=True,
        misfire_grace_time=300,
    )
    scheduler.add_job(
        publish_pending_job_posts,
        "interval",
        minutes=5,
        id="publish_pending_job_posts",
        replace_existing=True,
        misfire_grace_time=300,
    )
    # Daily cleanup of expired blacklisted tokens
    scheduler.add_job(
        cleanup_expired_blacklisted_tokens,
        "cron",
        hour=4,
        minute=0,
        id="cleanup_blacklisted_tokens",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    # Data retention: old read notifications, daily at 3:30
    scheduler.add_job(
        cleanup_old_notifications,
        "cron",
        hour=3,
        minute=30,
        id="cleanup_old_notifications",
        replace_existing=True,
        misfire_grace_time=3600,
    )

    def _job_error_listener(event):
        if event.exception:
            logger.exception(
                "scheduler_job_failed",
                job_id=event.job_id,
                error=str(event.exception),
            )

    from apscheduler.events import EVENT_JOB_ERROR
    scheduler.add_listener(_job_error_listener, EVENT_JOB_ERROR)

    scheduler.start()
    logger.info("scheduler_started")


async def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        # Give in-flight jobs a moment to observe the shutdown
        await asyncio.sleep(0)
        logger.info("scheduler_stopped")
