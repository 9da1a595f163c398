import uuid
from datetime import datetime, timezone, timedelta

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.service import decode_token
from app.database import get_db
from app.models.blacklisted_token import BlacklistedToken
from app.models.business import Business
from app.models.enums import UserRole
from app.models.user import User
from app.models.worker import Worker

logger = structlog.get_logger()
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate JWT token, return the authenticated user."""
    token = credentials.credentials
    try:
        payload = decode_token(token)
        # Only accept access tokens, not refresh tokens
        if payload.get("type") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
            )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
            )

        # Tokens without a jti could never be revoked
        jti = payload.get("jti")
        if not jti:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
            )
        blacklisted = await db.execute(
            select(BlacklistedToken).where(BlacklistedToken.jti == jti)
        )
        if blacklisted.scalar_one_or_none():
            logger.warning("blacklisted_token_used", jti=jti, user_id=str(user_id))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has been revoked",
            )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    result = await db.execute(select(User).where(User.id == uuid.UUID(user_id)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated. Contact support for more information.",
        )

    # Reject tokens issued before the last password change
    if user.password_changed_at:
        token_iat = payload.get("iat")
        if token_iat:
            # 500ms tolerance for clock skew between token issuance and DB write
            issued_at = datetime.fromtimestamp(token_iat, tz=timezone.utc)
            changed_at = user.password_changed_at
            if changed_at.tzinfo is None:
                changed_at = changed_at.replace(tzinfo=timezone.utc)
            if issued_at < changed_at - timedelta(milliseconds=500):
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Token invalidated by password change",
                )

    return user


async def get_current_worker(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[User, Worker]:
    """Get current user and verify they are a worker with a profile."""
    if user.role != UserRole.WORKER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only workers can access this resource",
        )

    result = await db.execute(select(Worker).where(Worker.user_id == user.id))
    worker = result.scalar_one_or_none()
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Worker profile not found",
        )
    return user, worker


async def get_current_business(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[User, Business]:
    """Get current user and verify they are a business with a profile."""
    if user.role != UserRole.BUSINESS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only businesses can access this resource",
        )

    result = await db.execute(select(Business).where(Business.user_id == user.id))
    business = result.scalar_one_or_none()
    if business is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business profile not found",
        )
    return user, business


async def get_current_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Get current user and verify they are an admin."""
    if user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


async def get_party_profiles(
    user: User, db: AsyncSession
) -> tuple[Worker | None, Business | None]:
    """Load whichever profile the user has, for endpoints open to both sides."""
    worker = None
    business = None
    if user.role == UserRole.WORKER:
        worker = (await db.execute(select(Worker).where(Worker.user_id == user.id))).scalar_one_or_none()
    elif user.role == UserRole.BUSINESS:
        business = (await db.execute(select(Business).where(Business.user_id == user.id))).scalar_one_or_none()
    return worker, business
