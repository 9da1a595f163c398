from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from sqlalchemy import select

from app.models.blacklisted_token import BlacklistedToken
from app.models.enums import BookingStatus, JobPostStatus, NotificationType, PaymentStatus
from app.models.notification import Notification
from app.models.social import JobPost, SocialConnection, SocialPlatform
from app.services import scheduler
from app.services import wallet as ledger
from app.services.booking_payments import checkout
from app.utils.timeutil import utcnow
from tests.conftest import make_booking, make_job


@pytest.fixture
def use_test_session(db):
    """Point the scheduler jobs at the test session."""

    @asynccontextmanager
    async def _session():
        yield db

    with patch.object(scheduler, "async_session", new=_session):
        yield


async def _checked_out(db, business, worker, title="Banquet Waiter", deadline_offset=timedelta(hours=-1)):
    job = await make_job(db, business, title=title)
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    await checkout(db, booking, job, worker)
    booking.review_deadline = utcnow() + deadline_offset
    await db.flush()
    return booking


@pytest.mark.asyncio
async def test_release_expired_reviews(db, business, worker, worker_user, use_test_session):
    expired = await _checked_out(db, business, worker)
    still_open = await _checked_out(db, business, worker, title="Barista", deadline_offset=timedelta(hours=5))

    await scheduler.release_expired_reviews()

    assert expired.payment_status == PaymentStatus.RELEASED
    assert still_open.payment_status == PaymentStatus.PENDING_REVIEW
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["available_balance"] == Decimal("250000.00")
    assert balance["pending_balance"] == Decimal("250000.00")

    notification = (
        await db.execute(
            select(Notification).where(Notification.type == NotificationType.PAYMENT_RELEASED)
        )
    ).scalar_one()
    assert notification.body == "IDR 250,000 is now available in your wallet."


@pytest.mark.asyncio
async def test_disputed_bookings_are_not_released(db, business, worker, worker_user, use_test_session):
    booking = await _checked_out(db, business, worker)
    booking.payment_status = PaymentStatus.DISPUTED
    await ledger.mark_hold_disputed(db, booking.id)
    await db.flush()

    await scheduler.release_expired_reviews()

    assert booking.payment_status == PaymentStatus.DISPUTED
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["available_balance"] == Decimal("0.00")


@pytest.mark.asyncio
async def test_release_failure_is_isolated(db, business, worker, use_test_session):
    first = await _checked_out(db, business, worker)
    second = await _checked_out(db, business, worker, title="Barista")
    # The failed booking rolls back on its own; keep the fixtures out of that transaction
    await db.commit()
    real_release = scheduler.release_booking_payment
    calls = []

    async def flaky_release(session, booking, booking_worker):
        calls.append(booking.id)
        if len(calls) == 1:
            raise RuntimeError("ledger unavailable")
        return await real_release(session, booking, booking_worker)

    with patch.object(scheduler, "release_booking_payment", new=flaky_release):
        await scheduler.release_expired_reviews()

    assert len(calls) == 2
    await db.refresh(first)
    await db.refresh(second)
    statuses = sorted(PaymentStatus(b.payment_status).value for b in (first, second))
    assert statuses == ["pending_review", "released"]


@pytest.mark.asyncio
async def test_scheduler_lock_held_elsewhere_skips_run(db, business, worker, use_test_session):
    booking = await _checked_out(db, business, worker)
    with patch.object(scheduler, "_acquire_scheduler_lock", new=AsyncMock(return_value=False)):
        await scheduler.release_expired_reviews()
    assert booking.payment_status == PaymentStatus.PENDING_REVIEW


@pytest.mark.asyncio
async def test_publish_pending_job_posts(db, business, job, use_test_session):
    platform = SocialPlatform(platform_name="Instagram", platform_type="social", webhook_url="https://hooks.example.com/ig")
    db.add(platform)
    await db.flush()
    connection = SocialConnection(business_id=business.id, platform_id=platform.id, access_token="token")
    db.add(connection)
    await db.flush()
    post = JobPost(job_id=job.id, connection_id=connection.id, content="Banquet Waiter", status=JobPostStatus.PENDING)
    db.add(post)
    await db.flush()

    client = MagicMock()
    client.post = AsyncMock(
        return_value=httpx.Response(201, json={"id": "ig-1"}, request=httpx.Request("POST", platform.webhook_url))
    )
    with patch("app.services.social._get_social_client", return_value=client):
        await scheduler.publish_pending_job_posts()

    assert post.status == JobPostStatus.POSTED
    assert post.external_post_id == "ig-1"


@pytest.mark.asyncio
async def test_cleanup_expired_blacklisted_tokens(db, use_test_session):
    db.add(BlacklistedToken(jti="expired-jti", expires_at=utcnow() - timedelta(hours=1)))
    db.add(BlacklistedToken(jti="live-jti", expires_at=utcnow() + timedelta(hours=1)))
    await db.flush()

    await scheduler.cleanup_expired_blacklisted_tokens()

    remaining = (await db.execute(select(BlacklistedToken.jti))).scalars().all()
    assert remaining == ["live-jti"]


@pytest.mark.asyncio
async def test_cleanup_old_notifications(db, worker_user, use_test_session):
    old_read = Notification(user_id=worker_user.id, type="new_message", title="Old", body="b", is_read=True)
    old_unread = Notification(user_id=worker_user.id, type="new_message", title="Unread", body="b", is_read=False)
    fresh_read = Notification(user_id=worker_user.id, type="new_message", title="Fresh", body="b", is_read=True)
    db.add_all([old_read, old_unread, fresh_read])
    await db.flush()
    long_ago = utcnow() - timedelta(days=365)
    old_read.created_at = long_ago
    old_unread.created_at = long_ago
    await db.flush()

    await scheduler.cleanup_old_notifications()

    titles = sorted((await db.execute(select(Notification.title))).scalars().all())
    assert titles == ["Fresh", "Unread"]


def test_start_scheduler_registers_jobs():
    with patch.object(scheduler, "scheduler") as mock_scheduler:
        scheduler.start_scheduler()
    job_ids = {c.kwargs["id"] for c in mock_scheduler.add_job.call_args_list}
    assert job_ids == {
        "release_expired_reviews",
        "publish_pending_job_posts",
        "cleanup_blacklisted_tokens",
        "cleanup_old_notifications",
    }
    mock_scheduler.start.assert_called_once()
