"""
Pytest configuration and shared fixtures.

Every test gets its own temporary SQLite file (through aiosqlite), seeded with
the reference data the seed script installs, and an app wired to it.
"""
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from decimal import Decimal

import pytest
from fastapi_users.password import PasswordHelper
from httpx import ASGITransport, AsyncClient

from core.config import Settings
from core.policy import Role
from db.database import Database
from db.users import User
from main import create_app
from scripts.seed_demo_data import seed_reference_data
from services import stock

API = "/api/v1"
PASSWORD = "secret123"

password_helper = PasswordHelper()


@pytest.fixture
async def database():
    db_fd, db_path = tempfile.mkstemp(suffix=".sqlite3")
    database = Database(f"sqlite+aiosqlite:///{db_path}")
    await database.open()
    await database.create_all()
    async with database.session() as session:
        async with session.begin():
            await seed_reference_data(session)

    yield database

    await database.close()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
async def session(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def settings(database):
    return Settings(
        database_url=database.url,
        jwt_secret="test-secret-key",
        frontend_url="http://testserver",
        lock_timeout_ms=2000,
        rate_limit="10000/minute",
        log_level="WARNING",
    )


@pytest.fixture
def app(database, settings):
    app = create_app(settings)
    # The lifespan does not run under ASGITransport; hand the app the open database.
    app.state.database = database
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


async def create_user(database, name, role=Role.STAFF, email=None, password=PASSWORD, is_superuser=False, is_active=True):
    async with database.session() as session:
        user = User(
            email=email or f"{name}@example.com",
            name=name,
            role=role.value if isinstance(role, Role) else role,
            hashed_password=password_helper.hash(password),
            is_active=is_active,
            is_superuser=is_superuser,
            is_verified=True,
        )
        session.add(user)
        await session.commit()
        return user


async def login(client, username, password=PASSWORD):
    res = await client.post(f"{API}/auth/jwt/login", data={"username": username, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@contextmanager
def hold_write_lock(database):
    """Keep the SQLite file write-locked from a second connection."""
    conn = sqlite3.connect(database.url.split(":///", 1)[1], isolation_level=None)
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
    finally:
        conn.execute("ROLLBACK")
        conn.close()


async def make_item(session, name, quantity, category="General", selling_price="10.00", actor_id=None, **kwargs):
    return await stock.create_item(
        session,
        name=name,
        category_name=category,
        initial_quantity=quantity,
        actor_id=actor_id,
        selling_price=Decimal(str(selling_price)),
        **kwargs,
    )


@pytest.fixture
async def admin(database):
    return await create_user(database, "admin", Role.ADMINISTRATOR)


@pytest.fixture
async def staff(database):
    return await create_user(database, "staff", Role.STAFF)


@pytest.fixture
async def admin_headers(client, admin):
    return await login(client, admin.email)


@pytest.fixture
async def staff_headers(client, staff):
    return await login(client, staff.email)


@pytest.fixture
async def manager_headers(client, database):
    user = await create_user(database, "manager", Role.SALE_MANAGER)
    return await login(client, user.email)


@pytest.fixture
async def auditor_headers(client, database):
    user = await create_user(database, "auditor", Role.AUDITOR)
    return await login(client, user.email)
