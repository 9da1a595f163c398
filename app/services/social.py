import uuid

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.business import Business
from app.models.enums import ConnectionStatus, JobPostStatus
from app.models.job import Job
from app.models.social import JobPost, SocialConnection
from app.utils.timeutil import utcnow

logger = structlog.get_logger()

_social_client: httpx.AsyncClient | None = None


def _get_social_client() -> httpx.AsyncClient:
    global _social_client
    if _social_client is None or _social_client.is_closed:
        _social_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0),
        )
    return _social_client


async def close_social_client() -> None:
    global _social_client
    if _social_client is not None and not _social_client.is_closed:
        await _social_client.aclose()
    _social_client = None


def _format_amount(value) -> str:
    return f"{int(value):,}".replace(",", ".")


def format_job_post_content(job: Job, business: Business) -> str:
    """Plain-text announcement used when cross-posting a job."""
    lines = [
        f"{job.title} at {business.name}",
        "",
        job.description.strip(),
        "",
        f"Pay: {settings.DEFAULT_CURRENCY} {_format_amount(job.budget_min)} - {_format_amount(job.budget_max)}",
        f"Location: {job.address}",
        f"Workers needed: {job.workers_needed}",
    ]
    if job.start_date:
        lines.append(f"Starts: {job.start_date:%Y-%m-%d}")
    if job.requirements:
        lines.append("Requirements: " + ", ".join(job.requirements))
    return "\n".join(lines)


async def queue_job_posts(db: AsyncSession, job: Job, business: Business) -> list[JobPost]:
    """Queue a pending post for every active connection with auto-posting enabled."""
    result = await db.execute(
        select(SocialConnection).where(
            SocialConnection.business_id == business.id,
            SocialConnection.status == ConnectionStatus.ACTIVE,
        )
    )
    content = format_job_post_content(job, business)
    posts = []
    for connection in result.scalars().all():
        if not (connection.settings or {}).get("autoPostEnabled"):
            continue
        post = JobPost(
            job_id=job.id,
            connection_id=connection.id,
            content=content,
            status=JobPostStatus.PENDING,
        )
        db.add(post)
        posts.append(post)
    if posts:
        await db.flush()
        logger.info("job_posts_queued", job_id=str(job.id), count=len(posts))
    return posts


def record_connection_error(connection: SocialConnection, message: str) -> None:
    connection.error_count = (connection.error_count or 0) + 1
    connection.last_error = message[:1000]
    connection.last_error_at = utcnow()
    if connection.error_count >= settings.SOCIAL_MAX_ERROR_COUNT:
        connection.status = ConnectionStatus.ERROR
        logger.warning(
            "social_connection_disabled",
            connection_id=str(connection.id),
            error_count=connection.error_count,
        )


def mark_connection_used(connection: SocialConnection) -> None:
    connection.last_used_at = utcnow()
    connection.error_count = 0
    connection.last_error = None
    connection.last_error_at = None


async def publish_job_post(db: AsyncSession, post_id: uuid.UUID) -> bool:
    """Deliver one queued post to its platform webhook. Never raises on delivery errors."""
    result = await db.execute(
        select(JobPost)
        .options(selectinload(JobPost.connection).selectinload(SocialConnection.platform))
        .where(JobPost.id == post_id)
        .with_for_update(of=JobPost)
    )
    post = result.scalar_one_or_none()
    if post is None or post.status != JobPostStatus.PENDING:
        return False

    connection = post.connection
    platform = connection.platform
    if connection.status != ConnectionStatus.ACTIVE:
        post.status = JobPostStatus.FAILED
        post.error = f"Connection is {ConnectionStatus(connection.status).value}"
        await db.flush()
        return False
    if not platform.webhook_url or not platform.is_available:
        post.status = JobPostStatus.FAILED
        post.error = "Platform is not available for posting"
        await db.flush()
        return False

    payload = {
        "job_id": str(post.job_id),
        "connection_id": str(connection.id),
        "platform_account_id": connection.platform_account_id,
        "content": post.content,
    }
    try:
        response = await _get_social_client().post(
            platform.webhook_url,
            headers={"Authorization": f"Bearer {connection.access_token}"},
            json=payload,
        )
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"Platform responded with {response.status_code}",
                request=response.request,
                response=response,
            )
    except httpx.HTTPError as e:
        post.status = JobPostStatus.FAILED
        post.error = str(e)[:1000]
        record_connection_error(connection, str(e))
        await db.flush()
        logger.warning(
            "job_post_failed",
            post_id=str(post.id),
            platform=platform.platform_name,
            error=str(e),
        )
        return False

    post.status = JobPostStatus.POSTED
    post.posted_at = utcnow()
    # Platforms that accept the post without a JSON body give no external id
    try:
        body = response.json() if response.content else {}
    except ValueError:
        body = {}
    if isinstance(body, dict):
        external = body.get("post_id") or body.get("id")
        post.external_post_id = str(external) if external else None
    mark_connection_used(connection)
    await db.flush()
    logger.info("job_post_published", post_id=str(post.id), platform=platform.platform_name)
    return True
