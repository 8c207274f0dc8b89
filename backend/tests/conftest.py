"""
conftest.py — shared fixtures for all API tests.

Strategy:
- Every test gets its own SQLite database file (aiosqlite) under tmp_path,
  created from Base.metadata and seeded with roles, permissions, features
  and salary types. The app's get_db dependency is overridden to use it.
- User fixtures create a user directly in the database and log in through
  /api/auth/login. Each returns a dict with id, email, password and the
  Authorization headers for that user.
- The `business` fixture creates a business owned by `owner`, with `manager`
  (business role manager) and `employee` as active members. `outsider` is a
  registered user with no membership.
"""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"

import uuid  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bizportal.core.security import hash_password  # noqa: E402
from bizportal.db.models import Base, Business, BusinessUser, User  # noqa: E402
from bizportal.db.seed import seed_features, seed_roles, seed_salary_types  # noqa: E402
from bizportal.db.session import get_db  # noqa: E402
from bizportal.main import app  # noqa: E402
from bizportal.services.hours import local_today  # noqa: E402

DEFAULT_PASSWORD = "Secret123!"


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(autouse=True)
async def session_factory(tmp_path) -> async_sessionmaker:
    """Fresh schema per test, bound to the app through get_db."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        async with session.begin():
            await seed_roles(session)
            await seed_features(session)
            await seed_salary_types(session)

    async def _override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    """Raw DB session for direct queries in tests."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncClient:
    """Fresh HTTPX async client per test function (maintains cookie jar)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def _login(email: str, password: str) -> str:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        return resp.json()["access_token"]


async def _make_user(factory, label: str, role: str, **extra) -> dict:
    uid_short = uuid.uuid4().hex[:8]
    email = f"{label}_{uid_short}@example.com"
    async with factory() as session:
        user = User(
            name=f"{label.title()} {uid_short}",
            email=email,
            password_hash=hash_password(DEFAULT_PASSWORD),
            role=role,
            status="active",
            email_verified_at=datetime.now(timezone.utc),
            **extra,
        )
        session.add(user)
        await session.commit()
        user_id = user.id

    token = await _login(email, DEFAULT_PASSWORD)
    return {
        "id": user_id,
        "email": email,
        "name": f"{label.title()} {uid_short}",
        "password": DEFAULT_PASSWORD,
        "headers": {"Authorization": f"Bearer {token}"},
    }


@pytest_asyncio.fixture
async def superadmin(session_factory) -> dict:
    return await _make_user(session_factory, "superadmin", "superadmin")


@pytest_asyncio.fixture
async def owner(session_factory) -> dict:
    """Global business_admin who owns `business`."""
    return await _make_user(session_factory, "owner", "business_admin")


@pytest_asyncio.fixture
async def manager(session_factory) -> dict:
    """Global employee holding the manager role inside `business`."""
    return await _make_user(session_factory, "manager", "employee")


@pytest_asyncio.fixture
async def employee(session_factory) -> dict:
    return await _make_user(session_factory, "employee", "employee")


@pytest_asyncio.fixture
async def outsider(session_factory) -> dict:
    return await _make_user(session_factory, "outsider", "employee")


@pytest_asyncio.fixture
async def viewer(session_factory) -> dict:
    """Global viewer with no membership in any business."""
    return await _make_user(session_factory, "viewer", "viewer")


# ---------------------------------------------------------------------------
# Business with members
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def business(session_factory, owner, manager, employee) -> dict:
    async with session_factory() as session:
        biz = Business(
            name="Acme Trading",
            slug=f"acme-trading-{uuid.uuid4().hex[:6]}",
            industry="Retail",
            created_by=owner["id"],
        )
        session.add(biz)
        await session.flush()
        for member, role in ((owner, "owner"), (manager, "manager"), (employee, "employee")):
            session.add(
                BusinessUser(
                    business_id=biz.id,
                    user_id=member["id"],
                    business_role=role,
                    employment_status="active",
                    joined_date=local_today(),
                )
            )
        await session.commit()
        business_id = biz.id

    return {"id": business_id, "url": f"/api/businesses/{business_id}"}
