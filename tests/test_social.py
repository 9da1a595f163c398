import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from sqlalchemy import select

from app.config import settings
from app.models.enums import ConnectionStatus, JobPostStatus
from app.models.social import JobPost, SocialConnection, SocialPlatform
from app.models.user import User
from app.services import social
from tests.conftest import auth_header, make_business, make_job, token_for

WEBHOOK = "https://hooks.example.com/instagram"


async def _platform(db, name="Instagram", webhook_url=WEBHOOK, is_available=True):
    platform = SocialPlatform(
        platform_name=name, platform_type="social", webhook_url=webhook_url, is_available=is_available
    )
    db.add(platform)
    await db.flush()
    return platform


async def _connection(db, business, platform, auto_post=True, status=ConnectionStatus.ACTIVE):
    connection = SocialConnection(
        business_id=business.id,
        platform_id=platform.id,
        access_token="page-token",
        platform_account_id="acct-42",
        settings={"autoPostEnabled": auto_post},
        status=status,
    )
    db.add(connection)
    await db.flush()
    return connection


async def _queued_post(db, business, connection):
    job = await make_job(db, business)
    post = JobPost(job_id=job.id, connection_id=connection.id, content="Banquet Waiter", status=JobPostStatus.PENDING)
    db.add(post)
    await db.flush()
    return post


def _mock_client(response=None, side_effect=None):
    client = MagicMock()
    client.post = AsyncMock(return_value=response, side_effect=side_effect)
    return client


def _response(status_code, json=None):
    return httpx.Response(status_code, json=json, request=httpx.Request("POST", WEBHOOK))


# ---------------------------------------------------------------------------
# Post content and queueing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_format_job_post_content(db, business, job):
    content = social.format_job_post_content(job, business)
    lines = content.split("\n")
    assert lines[0] == "Banquet Waiter at Warung Pantai"
    assert "Pay: IDR 150.000 - 250.000" in lines
    assert "Location: Jl. Pantai Kuta, Bali" in lines
    assert "Workers needed: 2" in lines
    assert "Requirements: Black trousers" in lines


@pytest.mark.asyncio
async def test_queue_only_active_auto_post_connections(db, business, job):
    auto = await _connection(db, business, await _platform(db, "Instagram"))
    await _connection(db, business, await _platform(db, "Facebook"), auto_post=False)
    await _connection(db, business, await _platform(db, "TikTok"), status=ConnectionStatus.REVOKED)

    posts = await social.queue_job_posts(db, job, business)
    assert [p.connection_id for p in posts] == [auto.id]
    assert posts[0].status == JobPostStatus.PENDING


@pytest.mark.asyncio
async def test_create_job_reports_queued_posts(client, db, business, business_user):
    await _connection(db, business, await _platform(db))
    response = await client.post(
        "/jobs",
        json={
            "title": "Pool Attendant",
            "description": "Keep the pool area tidy",
            "budget_min": "120000",
            "budget_max": "180000",
            "address": "Seminyak, Bali",
        },
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 201
    assert response.json()["data"]["queued_posts"] == 1


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_publish_success(db, business):
    connection = await _connection(db, business, await _platform(db))
    connection.error_count = 2
    post = await _queued_post(db, business, connection)
    client = _mock_client(_response(200, json={"post_id": "ig-987"}))

    with patch.object(social, "_get_social_client", return_value=client):
        assert await social.publish_job_post(db, post.id) is True

    assert post.status == JobPostStatus.POSTED
    assert post.external_post_id == "ig-987"
    assert post.posted_at is not None
    assert connection.error_count == 0
    assert connection.last_used_at is not None
    kwargs = client.post.call_args.kwargs
    assert kwargs["headers"] == {"Authorization": "Bearer page-token"}
    assert kwargs["json"]["platform_account_id"] == "acct-42"


@pytest.mark.asyncio
async def test_publish_plain_text_acknowledgement(db, business):
    connection = await _connection(db, business, await _platform(db))
    connection.error_count = 1
    post = await _queued_post(db, business, connection)
    plain = httpx.Response(200, text="OK", request=httpx.Request("POST", WEBHOOK))

    with patch.object(social, "_get_social_client", return_value=_mock_client(plain)):
        assert await social.publish_job_post(db, post.id) is True

    assert post.status == JobPostStatus.POSTED
    assert post.external_post_id is None
    assert post.error is None
    assert connection.error_count == 0


@pytest.mark.asyncio
async def test_publish_failure_records_connection_error(db, business):
    connection = await _connection(db, business, await _platform(db))
    post = await _queued_post(db, business, connection)

    with patch.object(social, "_get_social_client", return_value=_mock_client(_response(500))):
        assert await social.publish_job_post(db, post.id) is False

    assert post.status == JobPostStatus.FAILED
    assert "500" in post.error
    assert connection.error_count == 1
    assert connection.status == ConnectionStatus.ACTIVE


@pytest.mark.asyncio
async def test_repeated_errors_disable_connection(db, business, monkeypatch):
    monkeypatch.setattr(settings, "SOCIAL_MAX_ERROR_COUNT", 2)
    connection = await _connection(db, business, await _platform(db))
    client = _mock_client(side_effect=httpx.ConnectTimeout("timed out"))

    with patch.object(social, "_get_social_client", return_value=client):
        for _ in range(2):
            post = await _queued_post(db, business, connection)
            await social.publish_job_post(db, post.id)

    assert connection.error_count == 2
    assert connection.status == ConnectionStatus.ERROR
    assert connection.last_error == "timed out"


@pytest.mark.asyncio
async def test_publish_skips_inactive_connection(db, business):
    connection = await _connection(db, business, await _platform(db), status=ConnectionStatus.REVOKED)
    post = await _queued_post(db, business, connection)

    with patch.object(social, "_get_social_client") as get_client:
        assert await social.publish_job_post(db, post.id) is False
    get_client.assert_not_called()
    assert post.status == JobPostStatus.FAILED
    assert post.error == "Connection is revoked"


@pytest.mark.asyncio
async def test_publish_without_webhook(db, business):
    connection = await _connection(db, business, await _platform(db, webhook_url=None))
    post = await _queued_post(db, business, connection)
    assert await social.publish_job_post(db, post.id) is False
    assert post.error == "Platform is not available for posting"


@pytest.mark.asyncio
async def test_publish_ignores_processed_or_missing_posts(db, business):
    connection = await _connection(db, business, await _platform(db))
    post = await _queued_post(db, business, connection)
    post.status = JobPostStatus.POSTED
    await db.flush()

    assert await social.publish_job_post(db, post.id) is False
    assert await social.publish_job_post(db, uuid.uuid4()) is False


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_platforms_hides_unavailable(client, db):
    await _platform(db, "Instagram")
    await _platform(db, "Twitter", is_available=False)
    response = await client.get("/social/platforms")
    assert [p["platform_name"] for p in response.json()["data"]] == ["Instagram"]


@pytest.mark.asyncio
async def test_connect_and_manage(client, db, business_user):
    platform = await _platform(db)
    headers = auth_header(token_for(business_user))

    response = await client.post(
        "/social/connections",
        json={
            "platform_id": str(platform.id),
            "access_token": "secret-token",
            "platform_account_name": "@warungpantai",
            "settings": {"autoPostEnabled": True},
        },
        headers=headers,
    )
    assert response.status_code == 201
    connection = response.json()["data"]
    assert connection["platform"]["platform_name"] == "Instagram"
    assert "access_token" not in connection

    again = await client.post(
        "/social/connections",
        json={"platform_id": str(platform.id), "access_token": "x"},
        headers=headers,
    )
    assert again.status_code == 409
    assert again.json()["error"] == "Platform already connected"

    response = await client.patch(
        f"/social/connections/{connection['id']}/settings",
        json={"settings": {"hashtags": ["#bali"]}},
        headers=headers,
    )
    assert response.json()["data"]["settings"] == {"autoPostEnabled": True, "hashtags": ["#bali"]}

    settings_response = await client.get(f"/social/connections/{connection['id']}/settings", headers=headers)
    assert settings_response.json()["data"]["hashtags"] == ["#bali"]

    response = await client.post(f"/social/connections/{connection['id']}/disconnect", headers=headers)
    assert response.json()["data"]["status"] == "revoked"

    response = await client.post(f"/social/connections/{connection['id']}/disconnect", headers=headers)
    assert response.status_code == 409

    active = await client.get("/social/connections", params={"status": "active"}, headers=headers)
    assert active.json()["data"] == []


@pytest.mark.asyncio
async def test_reconnect_after_revoke(client, db, business, business_user):
    platform = await _platform(db)
    connection = await _connection(db, business, platform, status=ConnectionStatus.REVOKED)
    connection.error_count = 3

    response = await client.post(
        "/social/connections",
        json={"platform_id": str(platform.id), "access_token": "fresh-token"},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["id"] == str(connection.id)
    assert data["status"] == "active"
    assert data["error_count"] == 0
    rows = (await db.execute(select(SocialConnection))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_connect_unavailable_platform(client, db, business_user):
    platform = await _platform(db, is_available=False)
    response = await client.post(
        "/social/connections",
        json={"platform_id": str(platform.id), "access_token": "token"},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_other_business_connection_is_not_found(client, db, business_user):
    other = await make_business(db, email="other@example.com", name="Other Villa")
    connection = await _connection(db, other, await _platform(db))

    response = await client.get(
        f"/social/connections/{connection.id}", headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 404

    other_user = await db.get(User, other.user_id)
    response = await client.get(f"/social/connections/{connection.id}", headers=auth_header(token_for(other_user)))
    assert response.status_code == 200
