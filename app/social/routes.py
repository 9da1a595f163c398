import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_business
from app.models.business import Business
from app.models.enums import ConnectionStatus
from app.models.social import SocialConnection, SocialPlatform
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.social import (
    ConnectionSettingsUpdate,
    ConnectPlatformRequest,
    SocialConnectionDetailResponse,
    SocialConnectionResponse,
    SocialPlatformResponse,
)
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter
from app.utils.timeutil import utcnow

logger = structlog.get_logger()
router = APIRouter()


async def _get_own_connection(
    db: AsyncSession, connection_id: uuid.UUID, business: Business, lock: bool = False
) -> SocialConnection:
    # Other businesses' connections look nonexistent
    stmt = (
        select(SocialConnection)
        .where(SocialConnection.id == connection_id, SocialConnection.business_id == business.id)
        .options(selectinload(SocialConnection.platform))
    )
    if lock:
        stmt = stmt.with_for_update(of=SocialConnection)
    connection = (await db.execute(stmt)).scalar_one_or_none()
    if connection is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    return connection


@router.get("/platforms", response_model=Envelope[list[SocialPlatformResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_platforms(request: Request, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(SocialPlatform)
        .where(SocialPlatform.is_available.is_(True))
        .order_by(SocialPlatform.platform_name)
    )
    return ok(result.scalars().all())


@router.post("/connections", response_model=Envelope[SocialConnectionDetailResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def connect_platform(
    request: Request,
    body: ConnectPlatformRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Connect a platform account, or reactivate a previously revoked or failed connection."""
    _, business = business_ctx
    platform = await db.get(SocialPlatform, body.platform_id)
    if platform is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Platform not found")
    if not platform.is_available:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Platform is not available")

    result = await db.execute(
        select(SocialConnection)
        .where(SocialConnection.business_id == business.id, SocialConnection.platform_id == platform.id)
        .with_for_update()
    )
    connection = result.scalar_one_or_none()
    if connection is not None and connection.status == ConnectionStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Platform already connected")

    reactivated = connection is not None
    if connection is None:
        connection = SocialConnection(business_id=business.id, platform_id=platform.id)
        db.add(connection)

    connection.access_token = body.access_token
    connection.refresh_token = body.refresh_token
    connection.token_expires_at = body.token_expires_at
    connection.platform_account_id = body.platform_account_id
    connection.platform_account_name = body.platform_account_name
    connection.settings = dict(body.settings)
    connection.status = ConnectionStatus.ACTIVE
    connection.error_count = 0
    connection.last_error = None
    connection.last_error_at = None
    connection.last_verified_at = utcnow()
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Platform already connected")

    connection = await _get_own_connection(db, connection.id, business)
    logger.info(
        "social_platform_connected",
        connection_id=str(connection.id),
        business_id=str(business.id),
        platform=platform.platform_name,
        reactivated=reactivated,
    )
    return ok(connection)


@router.get("/connections", response_model=Envelope[list[SocialConnectionDetailResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_connections(
    request: Request,
    platform_id: uuid.UUID | None = Query(None),
    connection_status: ConnectionStatus | None = Query(None, alias="status"),
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    _, business = business_ctx
    query = (
        select(SocialConnection)
        .where(SocialConnection.business_id == business.id)
        .options(selectinload(SocialConnection.platform))
    )
    if platform_id is not None:
        query = query.where(SocialConnection.platform_id == platform_id)
    if connection_status is not None:
        query = query.where(SocialConnection.status == connection_status)
    result = await db.execute(query.order_by(SocialConnection.created_at.desc()))
    return ok(result.scalars().all())


@router.get("/connections/{connection_id}", response_model=Envelope[SocialConnectionDetailResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_connection(
    request: Request,
    connection_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    _, business = business_ctx
    return ok(await _get_own_connection(db, connection_id, business))


@router.post("/connections/{connection_id}/disconnect", response_model=Envelope[SocialConnectionResponse])
@limiter.limit("10/minute")
async def disconnect_platform(
    request: Request,
    connection_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    _, business = business_ctx
    connection = await _get_own_connection(db, connection_id, business, lock=True)
    if connection.status == ConnectionStatus.REVOKED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Connection already disconnected")
    connection.status = ConnectionStatus.REVOKED
    await db.flush()
    logger.info("social_platform_disconnected", connection_id=str(connection.id), business_id=str(business.id))
    return ok(connection)


@router.get("/connections/{connection_id}/settings", response_model=Envelope[dict[str, Any]])
@limiter.limit(LIST_RATE_LIMIT)
async def get_settings(
    request: Request,
    connection_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    _, business = business_ctx
    connection = await _get_own_connection(db, connection_id, business)
    return ok(connection.settings or {})


@router.patch("/connections/{connection_id}/settings", response_model=Envelope[SocialConnectionResponse])
@limiter.limit("20/minute")
async def update_settings(
    request: Request,
    connection_id: uuid.UUID,
    body: ConnectionSettingsUpdate,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Shallow-merge the given keys into the connection settings."""
    _, business = business_ctx
    connection = await _get_own_connection(db, connection_id, business, lock=True)
    # Reassign so the JSON column is marked dirty
    connection.settings = {**(connection.settings or {}), **body.settings}
    await db.flush()
    logger.info(
        "social_settings_updated",
        connection_id=str(connection.id),
        keys=sorted(body.settings.keys()),
    )
    return ok(connection)
