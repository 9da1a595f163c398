import uuid
from datetime import datetime, timezone

import jwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.lockout import login_lockout
from app.auth.service import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    decode_token,
    hash_password_async,
    token_expiry,
    verify_password_async,
)
from app.database import get_db
from app.dependencies import get_current_user, get_party_profiles, security
from app.metrics import USERS_REGISTERED
from app.models.blacklisted_token import BlacklistedToken
from app.models.business import Business
from app.models.enums import UserRole
from app.models.user import User
from app.models.worker import Worker
from app.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    RegistrationRole,
    TokenResponse,
    UserWithProfileResponse,
)
from app.schemas.common import Envelope, StatusResponse, ok
from app.services.wallet import create_wallet
from app.utils.log_mask import mask_email
from app.utils.rate_limit import AUTH_RATE_LIMIT, limiter
from app.utils.timeutil import as_utc

logger = structlog.get_logger()
router = APIRouter()

# Verified against on unknown emails so both failure paths cost one bcrypt check
_DUMMY_HASH = "$2b$12$LJ3m4ys3Lg2UxMHFSKDcOedTqJtFHSfVLO7GRFXlI0Xp9jHQvaFYe"

_INVALID_CREDENTIALS = "Invalid email or password"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _token_pair(user_id: uuid.UUID | str) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user_id)),
        refresh_token=create_refresh_token(str(user_id)),
    )


async def _is_revoked(db: AsyncSession, jti: str) -> bool:
    result = await db.execute(select(BlacklistedToken.id).where(BlacklistedToken.jti == jti))
    return result.first() is not None


async def _revoke(db: AsyncSession, payload: dict) -> bool:
    """Blacklist the token's jti until it would have expired anyway. False if already revoked."""
    jti = payload["jti"]
    if await _is_revoked(db, jti):
        return False
    db.add(BlacklistedToken(jti=jti, expires_at=token_expiry(payload)))
    await db.flush()
    return True


@router.post("/register", response_model=Envelope[TokenResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, response: Response, body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a worker or a business.

    The user, its profile and its wallet are created in the request transaction,
    so a failure on any of them leaves nothing behind.
    """
    response.headers["Cache-Control"] = "no-store"

    taken = await db.execute(select(User.id).where(User.email == body.email))
    if taken.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        email=body.email,
        password_hash=await hash_password_async(body.password),
        role=UserRole(body.role.value),
        is_active=True,
    )
    try:
        db.add(user)
        await db.flush()
        if body.role == RegistrationRole.WORKER:
            profile = Worker(user_id=user.id, full_name=body.full_name, phone=body.phone, skills=[])
        else:
            profile = Business(user_id=user.id, name=body.name, phone=body.phone, email=body.email)
        db.add(profile)
        await db.flush()
        await create_wallet(db, user.id)
    except IntegrityError:
        # Lost a race with a concurrent registration of the same email
        await db.rollback()
        logger.info("registration_email_conflict", email=mask_email(body.email))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    USERS_REGISTERED.labels(role=body.role.value).inc()
    logger.info("user_registered", user_id=str(user.id), role=body.role.value)
    return ok(_token_pair(user.id))


@router.post("/login", response_model=Envelope[TokenResponse])
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, response: Response, body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange email and password for an access/refresh token pair.

    Five failures within fifteen minutes lock the email out with a 429.
    """
    response.headers["Cache-Control"] = "no-store"
    email = body.email
    if await login_lockout.is_locked(email):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed login attempts. Please try again later.",
        )

    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    password_ok = await verify_password_async(body.password, user.password_hash if user else _DUMMY_HASH)
    if user is None or not password_ok:
        await login_lockout.record_failure(email)
        raise _unauthorized(_INVALID_CREDENTIALS)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated. Contact support for more information.",
        )

    await login_lockout.clear(email)
    logger.info("user_login", user_id=str(user.id), role=UserRole(user.role).value)
    return ok(_token_pair(user.id))


@router.post("/refresh", response_model=Envelope[TokenResponse])
@limiter.limit(AUTH_RATE_LIMIT)
async def refresh_tokens(request: Request, response: Response, body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Rotate a refresh token: the presented one is revoked and a new pair is issued."""
    response.headers["Cache-Control"] = "no-store"
    payload = decode_refresh_token(body.refresh_token)
    if not payload or not payload.get("sub"):
        raise _unauthorized("Invalid or expired refresh token")

    jti = payload.get("jti")
    if jti and await _is_revoked(db, jti):
        logger.warning("revoked_refresh_token_used", jti=jti)
        raise _unauthorized("Token revoked")

    user = await db.get(User, uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        raise _unauthorized("User not found")

    issued_at = payload.get("iat")
    changed_at = as_utc(user.password_changed_at)
    if changed_at and issued_at and datetime.fromtimestamp(issued_at, tz=timezone.utc) < changed_at:
        raise _unauthorized("Refresh token invalidated by password change")

    if jti:
        await _revoke(db, payload)

    logger.info("token_refreshed", user_id=str(user.id))
    return ok(_token_pair(user.id))


@router.get("/me", response_model=Envelope[UserWithProfileResponse])
@limiter.limit(AUTH_RATE_LIMIT)
async def get_me(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The authenticated user with its worker or business profile."""
    worker, business = await get_party_profiles(user, db)
    return ok({"user": user, "worker": worker, "business": business})


@router.post("/logout", response_model=Envelope[StatusResponse])
@limiter.limit("10/minute")
async def logout(
    request: Request,
    body: LogoutRequest = LogoutRequest(),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    """Revoke the bearer access token and, when given, the matching refresh token."""
    try:
        payload = decode_token(credentials.credentials)
    except jwt.PyJWTError:
        raise _unauthorized("Invalid authentication token")

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only access tokens can be used for logout",
        )
    if not payload.get("jti"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token does not contain a jti claim",
        )

    if not await _revoke(db, payload):
        return ok({"status": "already_logged_out"})

    if body.refresh_token:
        refresh_payload = decode_refresh_token(body.refresh_token)
        if refresh_payload and refresh_payload.get("jti"):
            if await _revoke(db, refresh_payload):
                logger.info("refresh_token_blacklisted", jti=refresh_payload["jti"])
        else:
            # Logout already succeeded for the access token
            logger.warning("invalid_refresh_token_on_logout")

    logger.info("user_logged_out", jti=payload["jti"])
    return ok({"status": "logged_out"})
