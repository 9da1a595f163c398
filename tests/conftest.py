import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ["PUSH_WEBHOOK_URL"] = ""  # Push delivery is only logged in tests
os.environ["REDIS_URL"] = ""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.service import create_access_token, hash_password
from app.database import Base, get_db
from app.main import app
from app.models.booking import Booking
from app.models.business import Business
from app.models.cancellation import CancellationReason
from app.models.enums import BookingStatus, CancellationReasonCategory, JobStatus, UserRole
from app.models.job import Job
from app.models.user import User
from app.models.worker import Worker

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
TestSessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# bcrypt is slow; every fixture user shares one hash
_PASSWORD = "Password123"
_PASSWORD_HASH = hash_password(_PASSWORD)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from app.utils.rate_limit import limiter
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def make_user(db: AsyncSession, email: str, role: UserRole) -> User:
    user = User(id=uuid.uuid4(), email=email, password_hash=_PASSWORD_HASH, role=role, is_active=True)
    db.add(user)
    await db.flush()
    return user


async def make_worker(db: AsyncSession, email: str = "worker@example.com", full_name: str = "Komang Adi") -> Worker:
    user = await make_user(db, email, UserRole.WORKER)
    worker = Worker(id=uuid.uuid4(), user_id=user.id, full_name=full_name, phone="+6281234567890", skills=["waiter"])
    db.add(worker)
    await db.flush()
    return worker


async def make_business(db: AsyncSession, email: str = "business@example.com", name: str = "Warung Pantai") -> Business:
    user = await make_user(db, email, UserRole.BUSINESS)
    business = Business(id=uuid.uuid4(), user_id=user.id, name=name, email=email, phone="+6281234567891")
    db.add(business)
    await db.flush()
    return business


async def make_job(
    db: AsyncSession,
    business: Business,
    title: str = "Banquet Waiter",
    budget_max: Decimal = Decimal("250000.00"),
    status: JobStatus = JobStatus.OPEN,
    start_date: datetime | None = None,
) -> Job:
    start = start_date or datetime.now(timezone.utc) + timedelta(days=1)
    job = Job(
        id=uuid.uuid4(),
        business_id=business.id,
        title=title,
        description="Serve guests at an evening wedding reception.",
        requirements=["Black trousers"],
        position_type="waiter",
        budget_min=min(Decimal("150000.00"), budget_max),
        budget_max=budget_max,
        workers_needed=2,
        start_date=start,
        end_date=start + timedelta(hours=8),
        address="Jl. Pantai Kuta, Bali",
        status=status,
        platform_settings={},
    )
    db.add(job)
    await db.flush()
    return job


async def make_booking(
    db: AsyncSession,
    job: Job,
    worker: Worker,
    status: BookingStatus = BookingStatus.PENDING,
    start_date: datetime | None = None,
    **fields,
) -> Booking:
    start = start_date or job.start_date
    booking = Booking(
        id=uuid.uuid4(),
        job_id=job.id,
        worker_id=worker.id,
        business_id=job.business_id,
        status=status,
        start_date=start,
        end_date=start + timedelta(hours=8),
        final_price=fields.pop("final_price", Decimal("0.00")),
        **fields,
    )
    db.add(booking)
    await db.flush()
    return booking


@pytest_asyncio.fixture
async def worker(db: AsyncSession) -> Worker:
    return await make_worker(db)


@pytest_asyncio.fixture
async def worker_user(db: AsyncSession, worker: Worker) -> User:
    return await db.get(User, worker.user_id)


@pytest_asyncio.fixture
async def business(db: AsyncSession) -> Business:
    return await make_business(db)


@pytest_asyncio.fixture
async def business_user(db: AsyncSession, business: Business) -> User:
    return await db.get(User, business.user_id)


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await make_user(db, "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def job(db: AsyncSession, business: Business) -> Job:
    return await make_job(db, business)


@pytest_asyncio.fixture
async def pending_booking(db: AsyncSession, job: Job, worker: Worker) -> Booking:
    return await make_booking(db, job, worker)


@pytest_asyncio.fixture
async def cancellation_reason(db: AsyncSession) -> CancellationReason:
    reason = CancellationReason(
        id=uuid.uuid4(),
        category=CancellationReasonCategory.EMERGENCY,
        name="Family Emergency",
        requires_verification=False,
        penalty_percentage=0,
        is_active=True,
        sort_order=1,
    )
    db.add(reason)
    await db.flush()
    return reason


def token_for(user: User) -> str:
    return create_access_token(str(user.id))


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
