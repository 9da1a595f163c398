import uuid

import pytest
from sqlalchemy import select

from app.badges.routes import slugify
from app.models.audit_log import AuditLog
from app.models.badge import Badge
from app.models.enums import BadgeCategory, NotificationType
from app.models.notification import Notification
from app.models.user import User
from tests.conftest import auth_header, make_business, token_for


def test_slugify():
    assert slugify("Food Safety (HACCP) Level 1") == "food-safety-haccp-level-1"
    assert slugify("  Barista!! ") == "barista"
    assert slugify("***") == ""


async def _create_badge(client, business_user, name="Certified Barista", **extra):
    body = {"name": name, "category": "certification", "is_certified": True, **extra}
    return await client.post("/badges", json=body, headers=auth_header(token_for(business_user)))


async def _request(client, worker_user, badge_id):
    return await client.post(f"/badges/{badge_id}/request", headers=auth_header(token_for(worker_user)))


@pytest.mark.asyncio
async def test_create_and_list_badges(client, business_user):
    response = await _create_badge(client, business_user, description="Espresso and latte art")
    assert response.status_code == 201
    badge = response.json()["data"]
    assert badge["slug"] == "certified-barista"
    assert badge["is_certified"] is True

    await _create_badge(client, business_user, name="Housekeeping Basics", category="training", is_certified=False)

    everything = await client.get("/badges")
    assert [b["name"] for b in everything.json()["data"]] == ["Certified Barista", "Housekeeping Basics"]

    training = await client.get("/badges", params={"category": "training"})
    assert [b["name"] for b in training.json()["data"]] == ["Housekeeping Basics"]

    search = await client.get("/badges", params={"search": "latte"})
    assert [b["name"] for b in search.json()["data"]] == ["Certified Barista"]

    certified = await client.get("/badges", params={"is_certified": "true"})
    assert len(certified.json()["data"]) == 1


@pytest.mark.asyncio
async def test_duplicate_badge_name(client, business_user):
    await _create_badge(client, business_user)
    response = await _create_badge(client, business_user, name="certified  barista")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_only_businesses_define_badges(client, worker_user):
    response = await _create_badge(client, worker_user)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_request_notifies_provider(client, db, worker_user, business_user):
    badge = (await _create_badge(client, business_user)).json()["data"]

    response = await _request(client, worker_user, badge["id"])
    assert response.status_code == 201
    assert response.json()["data"]["verification_status"] == "pending"

    notification = (
        await db.execute(select(Notification).where(Notification.user_id == business_user.id))
    ).scalar_one()
    assert notification.type == NotificationType.BADGE_REQUESTED
    assert notification.body == "Komang Adi requested the 'Certified Barista' badge."

    again = await _request(client, worker_user, badge["id"])
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_request_unknown_badge(client, worker_user):
    response = await _request(client, worker_user, uuid.uuid4())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_flow(client, db, worker, worker_user, business_user):
    badge = (await _create_badge(client, business_user)).json()["data"]
    request_id = (await _request(client, worker_user, badge["id"])).json()["data"]["id"]
    headers = auth_header(token_for(business_user))

    pending = await client.get("/badges/pending-verifications", headers=headers)
    assert len(pending.json()["data"]) == 1
    assert pending.json()["data"][0]["worker"]["full_name"] == "Komang Adi"

    response = await client.post(
        f"/badges/worker-badges/{request_id}/verify",
        json={"status": "verified", "notes": "Checked certificate"},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["verification_status"] == "verified"
    assert data["verified_by"] == str(business_user.id)
    assert data["verified_at"] is not None

    audit = (await db.execute(select(AuditLog).where(AuditLog.action == "verify_badge"))).scalar_one()
    assert audit.target_user_id == worker_user.id

    notification = (
        await db.execute(
            select(Notification).where(
                Notification.user_id == worker_user.id,
                Notification.type == NotificationType.BADGE_VERIFIED,
            )
        )
    ).scalar_one()
    assert notification.link == "/worker/badges"

    holders = await client.get(f"/badges/{badge['id']}/workers")
    assert [w["id"] for w in holders.json()["data"]] == [str(worker.id)]

    mine = await client.get("/badges/me", headers=auth_header(token_for(worker_user)))
    assert mine.json()["data"][0]["badge"]["name"] == "Certified Barista"

    again = await client.post(
        f"/badges/worker-badges/{request_id}/verify", json={"status": "rejected"}, headers=headers
    )
    assert again.status_code == 409
    assert again.json()["error"] == "Badge request already processed"


@pytest.mark.asyncio
async def test_rejected_badge_is_not_listed(client, worker_user, business_user):
    badge = (await _create_badge(client, business_user)).json()["data"]
    request_id = (await _request(client, worker_user, badge["id"])).json()["data"]["id"]

    response = await client.post(
        f"/badges/worker-badges/{request_id}/verify",
        json={"status": "rejected", "notes": "Certificate expired"},
        headers=auth_header(token_for(business_user)),
    )
    assert response.json()["data"]["verification_status"] == "rejected"
    assert response.json()["data"]["verified_at"] is None

    holders = await client.get(f"/badges/{badge['id']}/workers")
    assert holders.json()["data"] == []

    mine = await client.get(
        "/badges/me", params={"status": "rejected"}, headers=auth_header(token_for(worker_user))
    )
    assert len(mine.json()["data"]) == 1


@pytest.mark.asyncio
async def test_only_provider_verifies(client, db, worker_user, business_user):
    badge = (await _create_badge(client, business_user)).json()["data"]
    request_id = (await _request(client, worker_user, badge["id"])).json()["data"]["id"]
    other = await make_business(db, email="other@example.com", name="Other Villa")
    other_user = await db.get(User, other.user_id)

    response = await client.post(
        f"/badges/worker-badges/{request_id}/verify",
        json={"status": "verified"},
        headers=auth_header(token_for(other_user)),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_verifies_platform_badge(client, db, worker_user, admin_user):
    badge = Badge(name="Platform Pro", slug="platform-pro", category=BadgeCategory.SKILL)
    db.add(badge)
    await db.flush()
    request_id = (await _request(client, worker_user, badge.id)).json()["data"]["id"]

    response = await client.post(
        f"/badges/worker-badges/{request_id}/verify",
        json={"status": "verified"},
        headers=auth_header(token_for(admin_user)),
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_verify_rejects_pending_status(client, worker_user, business_user):
    badge = (await _create_badge(client, business_user)).json()["data"]
    request_id = (await _request(client, worker_user, badge["id"])).json()["data"]["id"]
    response = await client.post(
        f"/badges/worker-badges/{request_id}/verify",
        json={"status": "pending"},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 400
