"""Seed script for the Daily Worker Hub backend.

Creates baseline data for local development:
- 1 admin user
- 2 workers and 2 businesses, each with a wallet
- the standard cancellation reasons
- the Instagram and Facebook social platforms
- a few platform-issued badges

Idempotent: existing rows are skipped.
Run with: python seed.py

Passwords are read from SEED_ADMIN_PASSWORD / SEED_USER_PASSWORD with dev-only fallbacks.
"""

import asyncio
import os
import sys

from app.config import settings

if settings.APP_ENV == "production":
    print("ERROR: Cannot seed production database.")
    sys.exit(1)

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.service import hash_password
from app.database import async_session
from app.models.badge import Badge
from app.models.business import Business
from app.models.cancellation import CancellationReason
from app.models.enums import BadgeCategory, CancellationReasonCategory, UserRole
from app.models.social import SocialPlatform
from app.models.user import User
from app.models.worker import Worker
from app.services.wallet import get_or_create_wallet

SEED_ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD", "Admin123!")
SEED_USER_PASSWORD = os.environ.get("SEED_USER_PASSWORD", "Test1234!")

SEED_USERS = [
    {"email": "admin@dailyworker.id", "password": SEED_ADMIN_PASSWORD, "role": UserRole.ADMIN},
    {
        "email": "wayan@dailyworker.id",
        "password": SEED_USER_PASSWORD,
        "role": UserRole.WORKER,
        "full_name": "I Wayan Sudarta",
        "phone": "+6281100000001",
        "skills": ["housekeeping", "laundry"],
    },
    {
        "email": "made@dailyworker.id",
        "password": SEED_USER_PASSWORD,
        "role": UserRole.WORKER,
        "full_name": "Ni Made Ayu",
        "phone": "+6281100000002",
        "skills": ["waiter", "barista"],
    },
    {
        "email": "villa@dailyworker.id",
        "password": SEED_USER_PASSWORD,
        "role": UserRole.BUSINESS,
        "name": "Villa Seminyak Indah",
        "phone": "+6281100000003",
        "address": "Jl. Kayu Aya, Seminyak, Bali",
    },
    {
        "email": "cafe@dailyworker.id",
        "password": SEED_USER_PASSWORD,
        "role": UserRole.BUSINESS,
        "name": "Canggu Coffee House",
        "phone": "+6281100000004",
        "address": "Jl. Batu Bolong, Canggu, Bali",
    },
]

CANCELLATION_REASONS = [
    (CancellationReasonCategory.EMERGENCY, "Sick - Medical Condition", "Unable to work due to illness", True, 0),
    (CancellationReasonCategory.EMERGENCY, "Family Emergency", "Family member requires immediate assistance", False, 0),
    (CancellationReasonCategory.EMERGENCY, "Severe Weather", "Severe weather prevents safe travel", False, 0),
    (CancellationReasonCategory.WORKER, "Vehicle Breakdown", "Vehicle breakdown on the way to the job site", True, 10),
    (CancellationReasonCategory.WORKER, "Double Booked", "Accidentally accepted another job", False, 25),
    (CancellationReasonCategory.BUSINESS, "Shift No Longer Needed", "The business no longer needs the shift", False, 0),
    (CancellationReasonCategory.BUSINESS, "Venue Closed", "The venue is closed on the booked date", False, 0),
    (CancellationReasonCategory.OTHER, "Other", "Any other reason, reviewed case by case", False, 0),
]

SOCIAL_PLATFORMS = [
    {"platform_name": "Instagram", "platform_type": "instagram"},
    {"platform_name": "Facebook", "platform_type": "facebook"},
]

PLATFORM_BADGES = [
    ("Food Handling Certified", "food-handling-certified", BadgeCategory.CERTIFICATION, "hospitality", True),
    ("Housekeeping Basics", "housekeeping-basics", BadgeCategory.TRAINING, "hospitality", False),
    ("English Conversation", "english-conversation", BadgeCategory.SKILL, None, False),
]


async def _seed_users(db: AsyncSession) -> None:
    for data in SEED_USERS:
        result = await db.execute(select(User).where(User.email == data["email"]))
        if result.scalar_one_or_none():
            print(f"  [skip] User {data['email']} already exists")
            continue

        user = User(email=data["email"], password_hash=hash_password(data["password"]), role=data["role"])
        db.add(user)
        await db.flush()
        if data["role"] == UserRole.WORKER:
            db.add(Worker(user_id=user.id, full_name=data["full_name"], phone=data["phone"], skills=data["skills"]))
        elif data["role"] == UserRole.BUSINESS:
            db.add(Business(
                user_id=user.id,
                name=data["name"],
                phone=data["phone"],
                email=data["email"],
                address=data["address"],
                is_verified=True,
            ))
        await get_or_create_wallet(db, user.id)
        await db.flush()
        print(f"  [created] User {data['email']} ({data['role'].value})")


async def _seed_reasons(db: AsyncSession) -> None:
    for sort_order, (category, name, description, requires_verification, penalty) in enumerate(
        CANCELLATION_REASONS, start=1
    ):
        result = await db.execute(select(CancellationReason).where(CancellationReason.name == name))
        if result.scalar_one_or_none():
            continue
        db.add(CancellationReason(
            category=category,
            name=name,
            description=description,
            requires_verification=requires_verification,
            penalty_percentage=penalty,
            is_active=True,
            sort_order=sort_order,
        ))
        print(f"  [created] Cancellation reason '{name}'")


async def _seed_platforms(db: AsyncSession) -> None:
    for data in SOCIAL_PLATFORMS:
        result = await db.execute(
            select(SocialPlatform).where(SocialPlatform.platform_name == data["platform_name"])
        )
        if result.scalar_one_or_none():
            continue
        db.add(SocialPlatform(**data, is_available=True))
        print(f"  [created] Social platform {data['platform_name']}")


async def _seed_badges(db: AsyncSession) -> None:
    for name, slug, category, industry, is_certified in PLATFORM_BADGES:
        result = await db.execute(select(Badge).where(Badge.slug == slug))
        if result.scalar_one_or_none():
            continue
        db.add(Badge(name=name, slug=slug, category=category, industry=industry, is_certified=is_certified))
        print(f"  [created] Badge '{name}'")


async def seed() -> None:
    async with async_session() as db:
        await _seed_users(db)
        await _seed_reasons(db)
        await _seed_platforms(db)
        await _seed_badges(db)
        await db.commit()
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(seed())
