import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.enums import DisputeResolution, TransactionStatus, TransactionType
from app.models.wallet import Wallet, WalletTransaction
from app.services import wallet as ledger
from tests.conftest import auth_header, token_for


async def _txn_count(db) -> int:
    return (await db.execute(select(func.count(WalletTransaction.id)))).scalar()


# ---------------------------------------------------------------------------
# Ledger service
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_wallet_twice_fails(db, worker_user):
    wallet = await ledger.create_wallet(db, worker_user.id)
    assert wallet.currency == "IDR"
    assert wallet.pending_balance == Decimal("0.00")

    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.create_wallet(db, worker_user.id)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_get_balance_without_wallet(db, worker_user):
    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.get_balance(db, worker_user.id)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_add_pending_funds_creates_wallet_and_hold(db, worker_user):
    booking_id = uuid.uuid4()
    txn = await ledger.add_pending_funds(db, worker_user.id, Decimal("150000"), booking_id=booking_id)

    assert txn.type == TransactionType.HOLD
    assert txn.status == TransactionStatus.PENDING_REVIEW
    assert txn.amount == Decimal("150000.00")
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["pending_balance"] == Decimal("150000.00")
    assert balance["available_balance"] == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "0.001"])
async def test_non_positive_amounts_rejected(db, worker_user, amount):
    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.add_pending_funds(db, worker_user.id, amount)
    assert exc.value.status_code == 400
    assert await _txn_count(db) == 0


@pytest.mark.asyncio
async def test_release_moves_pending_to_available(db, worker_user):
    booking_id = uuid.uuid4()
    hold = await ledger.add_pending_funds(db, worker_user.id, Decimal("100000"), booking_id=booking_id)

    release = await ledger.release_funds(db, worker_user.id, Decimal("100000"), booking_id=booking_id)

    assert release.type == TransactionType.RELEASE
    assert release.status == TransactionStatus.RELEASED
    await db.refresh(hold)
    assert hold.status == TransactionStatus.RELEASED
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["pending_balance"] == Decimal("0.00")
    assert balance["available_balance"] == Decimal("100000.00")


@pytest.mark.asyncio
async def test_release_more_than_pending_writes_nothing(db, worker_user):
    await ledger.add_pending_funds(db, worker_user.id, Decimal("50000"))
    before = await _txn_count(db)

    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.release_funds(db, worker_user.id, Decimal("50000.01"))
    assert exc.value.message == "Insufficient pending balance"

    assert await _txn_count(db) == before
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["pending_balance"] == Decimal("50000.00")


@pytest.mark.asyncio
async def test_release_without_wallet(db, worker_user):
    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.release_funds(db, worker_user.id, Decimal("10"))
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_deduct_available_funds(db, worker_user):
    await ledger.add_pending_funds(db, worker_user.id, Decimal("80000"))
    await ledger.release_funds(db, worker_user.id, Decimal("80000"))

    payout = await ledger.deduct_available_funds(db, worker_user.id, Decimal("30000"))
    assert payout.type == TransactionType.PAYOUT
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["available_balance"] == Decimal("50000.00")

    with pytest.raises(ledger.LedgerError) as exc:
        await ledger.deduct_available_funds(db, worker_user.id, Decimal("50000.01"))
    assert exc.value.message == "Insufficient available balance"


@pytest.mark.asyncio
async def test_resolve_hold_for_worker(db, worker_user):
    booking_id = uuid.uuid4()
    await ledger.add_pending_funds(db, worker_user.id, Decimal("120000"), booking_id=booking_id)
    hold = await ledger.mark_hold_disputed(db, booking_id)
    assert hold.status == TransactionStatus.DISPUTED

    # Disputing does not move balances
    balance = await ledger.get_balance(db, worker_user.id)
    assert balance["pending_balance"] == Decimal("120000.00")

    wallet = await ledger.resolve_hold(db, hold, DisputeResolution.RESOLVED_WORKER)
    assert wallet.pending_balance == Decimal("0.00")
    assert wallet.available_balance == Decimal("120000.00")
    assert hold.status == TransactionStatus.AVAILABLE


@pytest.mark.asyncio
async def test_resolve_hold_for_business(db, worker_user):
    booking_id = uuid.uuid4()
    await ledger.add_pending_funds(db, worker_user.id, Decimal("120000"), booking_id=booking_id)
    hold = await ledger.mark_hold_disputed(db, booking_id)

    wallet = await ledger.resolve_hold(db, hold, DisputeResolution.RESOLVED_BUSINESS)
    assert wallet.pending_balance == Decimal("0.00")
    assert wallet.available_balance == Decimal("0.00")
    assert hold.status == TransactionStatus.CANCELLED


@pytest.mark.asyncio
async def test_rejected_dispute_returns_hold_to_review(db, worker_user):
    booking_id = uuid.uuid4()
    await ledger.add_pending_funds(db, worker_user.id, Decimal("120000"), booking_id=booking_id)
    hold = await ledger.mark_hold_disputed(db, booking_id)

    await ledger.resolve_hold(db, hold, DisputeResolution.REJECTED)
    assert hold.status == TransactionStatus.PENDING_REVIEW
    assert await ledger.find_hold(db, booking_id, TransactionStatus.PENDING_REVIEW) is not None


@pytest.mark.asyncio
async def test_mark_hold_disputed_without_hold(db):
    assert await ledger.mark_hold_disputed(db, uuid.uuid4()) is None


# ---------------------------------------------------------------------------
# Wallet routes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_wallet_creates_on_first_access(client, db, worker_user):
    response = await client.get("/wallets/me", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["wallet"]["pending_balance"] == "0.00"
    assert data["recent_transactions"] == []

    count = (await db.execute(select(func.count(Wallet.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_create_wallet_route_conflict(client, worker_user):
    headers = auth_header(token_for(worker_user))
    assert (await client.post("/wallets/me", headers=headers)).status_code == 201
    response = await client.post("/wallets/me", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "Wallet already exists"


@pytest.mark.asyncio
async def test_balance_route(client, db, worker_user):
    headers = auth_header(token_for(worker_user))
    response = await client.get("/wallets/me/balance", headers=headers)
    assert response.status_code == 404

    await ledger.add_pending_funds(db, worker_user.id, Decimal("75000"))
    response = await client.get("/wallets/me/balance", headers=headers)
    assert response.json()["data"] == {
        "pending_balance": "75000.00",
        "available_balance": "0.00",
        "currency": "IDR",
    }


@pytest.mark.asyncio
async def test_transactions_route(client, db, worker_user):
    await ledger.add_pending_funds(db, worker_user.id, Decimal("75000"))
    response = await client.get("/wallets/me/transactions", headers=auth_header(token_for(worker_user)))
    transactions = response.json()["data"]
    assert len(transactions) == 1
    assert transactions[0]["type"] == "hold"
    assert transactions[0]["amount"] == "75000.00"


@pytest.mark.asyncio
async def test_payout_route(client, db, worker_user):
    headers = auth_header(token_for(worker_user))
    await ledger.add_pending_funds(db, worker_user.id, Decimal("90000"))
    await ledger.release_funds(db, worker_user.id, Decimal("90000"))

    response = await client.post("/wallets/me/payout", json={"amount": "40000"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["type"] == "payout"

    response = await client.post("/wallets/me/payout", json={"amount": "60000"}, headers=headers)
    assert response.status_code == 409
    assert response.json() == {"success": False, "data": None, "error": "Insufficient available balance"}


@pytest.mark.asyncio
async def test_payout_rejects_zero_amount(client, worker_user):
    response = await client.post(
        "/wallets/me/payout", json={"amount": "0"}, headers=auth_header(token_for(worker_user))
    )
    assert response.status_code == 422
