import asyncio
import os
import sys
from pathlib import Path

"""
Seed reference data (payment methods, categories, branches) and an initial
administrator. Safe to re-run: existing rows are left as they are.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`

The administrator comes from SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD
(and optionally SEED_ADMIN_NAME).
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.config import settings
from core.logging_config import configure_logging
from core.policy import Role
from db.branch import Branch
from db.category import Category
from db.database import Database
from db.payment_method import PaymentMethod
from db.users import User

from fastapi_users.password import PasswordHelper


password_helper = PasswordHelper()

PAYMENT_METHODS = [
    ("CASH", "Cash"),
    ("MOMO", "Mobile Money"),
    ("POS", "Pos"),
]

CATEGORIES = [
    ("General", "Everyday stock", "#3B82F6"),
    ("Electronics", "Devices and parts", "#10B981"),
    ("Accessories", "Add-ons and small items", "#F59E0B"),
]

BRANCHES = ["Main"]


async def get_or_create_payment_method(session, code: str, name: str) -> PaymentMethod:
    result = await session.execute(select(PaymentMethod).where(PaymentMethod.name == name))
    pm = result.scalar_one_or_none()
    if pm:
        return pm

    pm = PaymentMethod(code=code, name=name)
    session.add(pm)
    await session.flush()
    return pm


async def get_or_create_category(session, name: str, description: str, color_code: str) -> Category:
    result = await session.execute(
        select(Category).where(func.lower(Category.name) == name.strip().lower())
    )
    category = result.scalar_one_or_none()
    if category:
        return category

    category = Category(name=name.strip(), description=description, color_code=color_code)
    session.add(category)
    await session.flush()
    return category


async def get_or_create_branch(session, name: str) -> Branch:
    result = await session.execute(select(Branch).where(func.lower(Branch.name) == name.lower()))
    branch = result.scalar_one_or_none()
    if branch:
        return branch

    branch = Branch(name=name)
    session.add(branch)
    await session.flush()
    return branch


async def get_or_create_admin(session, email: str, password: str, name: str = "admin") -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        name=name,
        role=Role.ADMINISTRATOR.value,
        hashed_password=password_helper.hash(password),
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def seed_reference_data(session) -> None:
    for code, name in PAYMENT_METHODS:
        await get_or_create_payment_method(session, code, name)
    for name, description, color in CATEGORIES:
        await get_or_create_category(session, name, description, color)
    for name in BRANCHES:
        await get_or_create_branch(session, name)


async def seed(database: Database) -> None:
    async with database.session() as session:
        async with session.begin():
            await seed_reference_data(session)

            email = os.getenv("SEED_ADMIN_EMAIL")
            password = os.getenv("SEED_ADMIN_PASSWORD")
            if email and password:
                await get_or_create_admin(session, email, password, os.getenv("SEED_ADMIN_NAME", "admin"))
            else:
                print("SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD not set; skipping administrator")


async def main() -> None:
    configure_logging(settings.log_level)
    database = Database(settings.database_url, echo=settings.database_echo)
    await database.open()
    try:
        await database.create_all()
        await seed(database)
    finally:
        await database.close()
    print("Seed complete")


if __name__ == "__main__":
    asyncio.run(main())
