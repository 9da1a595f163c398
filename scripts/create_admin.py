"""Create an admin user in the Daily Worker Hub database.

Usage:
    python scripts/create_admin.py admin@dailyworker.id password123
"""

import asyncio
import sys

from sqlalchemy import select

from app.auth.service import hash_password
from app.database import async_session
from app.models.enums import UserRole
from app.models.user import User
from app.services.wallet import create_wallet


async def create_admin(email: str, password: str) -> None:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email.lower()))
        if result.scalar_one_or_none():
            print(f"Error: User with email '{email}' already exists.")
            sys.exit(1)

        user = User(
            email=email.lower(),
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            is_active=True,
        )
        db.add(user)
        await db.flush()
        await create_wallet(db, user.id)
        await db.commit()

        print(f"Admin user created successfully: {email} (id={user.id})")


def main() -> None:
    if len(sys.argv) != 3:
        print("Usage: python scripts/create_admin.py <email> <password>")
        sys.exit(1)
    if len(sys.argv[2]) < 8:
        print("Error: password must be at least 8 characters.")
        sys.exit(1)

    asyncio.run(create_admin(sys.argv[1], sys.argv[2]))


if __name__ == "__main__":
    main()
