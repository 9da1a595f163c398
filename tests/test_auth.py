from datetime import timedelta

import pytest
from sqlalchemy import select

from app.auth.lockout import LoginLockout
from app.models.business import Business
from app.models.enums import UserRole
from app.models.user import User
from app.models.wallet import Wallet
from app.models.worker import Worker
from app.utils.timeutil import utcnow
from tests.conftest import auth_header, make_user, token_for


async def _register(client, **overrides):
    body = {
        "email": "wayan@example.com",
        "password": "Secret123",
        "role": "worker",
        "full_name": "I Wayan Sudarta",
        "phone": "+6281100000001",
    }
    body.update(overrides)
    return await client.post("/auth/register", json=body)


@pytest.mark.asyncio
async def test_register_worker_creates_profile_and_wallet(client, db):
    response = await _register(client)
    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["error"] is None
    assert payload["data"]["access_token"]
    assert payload["data"]["refresh_token"]

    worker = (await db.execute(select(Worker).where(Worker.full_name == "I Wayan Sudarta"))).scalar_one()
    wallet = (await db.execute(select(Wallet).where(Wallet.user_id == worker.user_id))).scalar_one()
    assert wallet.pending_balance == 0
    assert wallet.available_balance == 0


@pytest.mark.asyncio
async def test_register_business_creates_profile(client, db):
    response = await _register(
        client, email="villa@example.com", role="business", full_name=None, name="Villa Seminyak"
    )
    assert response.status_code == 201
    business = (await db.execute(select(Business).where(Business.name == "Villa Seminyak"))).scalar_one()
    assert business.email == "villa@example.com"


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    assert (await _register(client)).status_code == 201
    response = await _register(client)
    assert response.status_code == 409
    assert response.json() == {"success": False, "data": None, "error": "Email already registered"}


@pytest.mark.asyncio
async def test_register_worker_requires_full_name(client):
    response = await _register(client, full_name=None)
    assert response.status_code == 422
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "Validation failed"
    assert payload["data"]["errors"]


@pytest.mark.asyncio
async def test_register_rejects_weak_password(client):
    response = await _register(client, password="alllowercase")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_register_rejects_admin_role(client):
    response = await _register(client, role="admin")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success_and_me(client):
    await _register(client, email="login@example.com")
    response = await client.post("/auth/login", json={"email": "login@example.com", "password": "Secret123"})
    assert response.status_code == 200
    token = response.json()["data"]["access_token"]

    me = await client.get("/auth/me", headers=auth_header(token))
    assert me.status_code == 200
    data = me.json()["data"]
    assert data["user"]["email"] == "login@example.com"
    assert data["user"]["role"] == "worker"
    assert data["worker"]["full_name"] == "I Wayan Sudarta"
    assert data["business"] is None


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    await _register(client, email="wrongpass@example.com")
    response = await client.post("/auth/login", json={"email": "wrongpass@example.com", "password": "Nope12345"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_lockout_after_repeated_failures(client):
    await _register(client, email="lockout@example.com")
    for _ in range(5):
        await client.post("/auth/login", json={"email": "lockout@example.com", "password": "Nope12345"})

    response = await client.post("/auth/login", json={"email": "lockout@example.com", "password": "Secret123"})
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_login_deactivated_account(client, db):
    await _register(client, email="inactive@example.com")
    worker = (await db.execute(select(Worker).where(Worker.full_name == "I Wayan Sudarta"))).scalar_one()
    user = await db.get(User, worker.user_id)
    user.is_active = False
    await db.flush()

    response = await client.post("/auth/login", json={"email": "inactive@example.com", "password": "Secret123"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(client):
    tokens = (await _register(client, email="refresh@example.com")).json()["data"]
    response = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200

    # The old refresh token is blacklisted once used
    reused = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(client):
    tokens = (await _register(client, email="wrongtype@example.com")).json()["data"]
    response = await client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_access_token(client):
    tokens = (await _register(client, email="logout@example.com")).json()["data"]
    headers = auth_header(tokens["access_token"])

    response = await client.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "logged_out"

    me = await client.get("/auth/me", headers=headers)
    assert me.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_token(client):
    response = await client.get("/auth/me")
    assert response.status_code in (401, 403)
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_me_admin_has_no_profile(client, admin_user):
    response = await client.get("/auth/me", headers=auth_header(token_for(admin_user)))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["role"] == "admin"
    assert data["worker"] is None
    assert data["business"] is None


@pytest.mark.asyncio
async def test_worker_route_rejects_business(client, db):
    user = await make_user(db, "noprofile@example.com", UserRole.BUSINESS)
    response = await client.get("/jobs/applications/me", headers=auth_header(token_for(user)))
    assert response.status_code == 403


# --- Lockout tracker (in-memory, Redis unset in tests) ---


@pytest.mark.asyncio
async def test_lockout_counts_failures_until_cleared():
    lockout = LoginLockout(max_attempts=3)
    for _ in range(2):
        await lockout.record_failure("made@example.com")
    assert await lockout.is_locked("made@example.com") is False

    await lockout.record_failure("made@example.com")
    assert await lockout.is_locked("made@example.com") is True
    assert await lockout.is_locked("ketut@example.com") is False

    await lockout.clear("made@example.com")
    assert await lockout.is_locked("made@example.com") is False


@pytest.mark.asyncio
async def test_lockout_forgets_failures_outside_window():
    lockout = LoginLockout(max_attempts=2, window=timedelta(minutes=15))
    lockout._failures["nyoman@example.com"] = [utcnow() - timedelta(minutes=20)] * 2
    assert await lockout.is_locked("nyoman@example.com") is False
    assert "nyoman@example.com" not in lockout._failures


@pytest.mark.asyncio
async def test_lockout_evicts_oldest_emails():
    lockout = LoginLockout(max_tracked_emails=2)
    for email in ("a@example.com", "b@example.com", "c@example.com"):
        await lockout.record_failure(email)
    assert set(lockout._failures) == {"b@example.com", "c@example.com"}
