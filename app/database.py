from collections.abc import AsyncGenerator

import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = structlog.get_logger()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# SSL is required for hosted PostgreSQL in production/staging.
_connect_args: dict = {}
if settings.is_production and not _is_sqlite:
    _connect_args["ssl"] = "require"

# SQLite uses a static pool that rejects the sizing arguments.
_pool_kwargs: dict = {}
if not _is_sqlite:
    _pool_kwargs = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.APP_DEBUG,
    pool_pre_ping=True,
    connect_args=_connect_args,
    **_pool_kwargs,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    # Fetch server-generated created_at/updated_at during flush; lazy loads are not possible under asyncio
    __mapper_args__ = {"eager_defaults": True}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request: commit when the handler returns, roll back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except HTTPException:
            # Guard failures (4xx) roll back whatever the handler flushed
            await session.rollback()
            raise
        except Exception:
            await session.rollback()
            logger.exception("db_session_failed")
            raise
