from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.database import get_db
from app.main import app
from app.models.enums import BookingStatus, PaymentStatus
from app.models.wallet import WalletTransaction
from app.services.wallet import LedgerError
from tests.conftest import TestSessionFactory, auth_header, make_booking, token_for


def _mock_session():
    session = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.mark.asyncio
async def test_get_db_commits_on_success():
    session = _mock_session()
    with patch("app.database.async_session", return_value=session):
        gen = get_db()
        assert await gen.__anext__() is session
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()
    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_db_rolls_back_on_http_exception():
    session = _mock_session()
    with patch("app.database.async_session", return_value=session):
        gen = get_db()
        await gen.__anext__()
        with pytest.raises(HTTPException):
            await gen.athrow(HTTPException(status_code=409, detail="Conflict"))
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_db_rolls_back_on_unexpected_error():
    session = _mock_session()
    with patch("app.database.async_session", return_value=session):
        gen = get_db()
        await gen.__anext__()
        with pytest.raises(RuntimeError):
            await gen.athrow(RuntimeError("connection lost"))
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest_asyncio.fixture
async def session_client(db):
    """Client whose requests get their own session through the real get_db."""
    from app.utils.rate_limit import limiter
    limiter.reset()

    with patch("app.database.async_session", TestSessionFactory):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.mark.asyncio
async def test_checkout_commits_status_and_hold(session_client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    await db.commit()

    response = await session_client.post(
        f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user))
    )
    assert response.status_code == 200

    await db.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.payment_status == PaymentStatus.PENDING_REVIEW
    held = await db.execute(select(WalletTransaction).where(WalletTransaction.booking_id == booking.id))
    assert len(held.scalars().all()) == 1


@pytest.mark.asyncio
async def test_ledger_failure_during_checkout_rolls_back_booking(session_client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    await db.commit()

    async def failing_hold(session, **kwargs):
        # The booking changes reach the database before the ledger fails
        await session.flush()
        raise LedgerError("Wallet is locked")

    with patch("app.services.booking_payments.ledger.add_pending_funds", side_effect=failing_hold):
        response = await session_client.post(
            f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user))
        )
    assert response.status_code == 409
    assert response.json()["error"] == "Wallet is locked"

    await db.refresh(booking)
    assert booking.status == BookingStatus.IN_PROGRESS
    assert booking.payment_status is None
    assert booking.checkout_time is None
