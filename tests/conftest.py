# tests/conftest.py
"""
Shared fixtures: a throwaway in-memory SQLite store per test, the wired engine
components, a recording messaging gateway, and a few principals.

Nothing here needs Postgres or network access; row locks compile away on
SQLite and the partial unique indexes are created with ``sqlite_where``.
"""
from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from PACE.api.deps import build_services
from PACE.core.config import Settings
from PACE.db.base import Base
from PACE.db.models import Group, User
from PACE.db.session import build_sessionmaker
from PACE.services.scope import Principal, Role

from tests.helpers import FakeGateway, seed_catalog


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(h)
    root.setLevel(os.getenv("TEST_LOG_LEVEL", "INFO").upper())


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


# ==============================================================
# Store
# ==============================================================
@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


# ==============================================================
# Engine components
# ==============================================================
@pytest.fixture
def cfg() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        TESTING=True,
        ATTENDANCE_GOAL=20,
        CATALOG_CACHE_SECONDS=300,
        RECONCILE_BATCH_SIZE=2,
        SMS_API_KEY=None,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(cfg, gateway):
    return build_services(cfg, gateway)


# ==============================================================
# People and groups
# ==============================================================
@pytest.fixture
def superadmin() -> Principal:
    return Principal(id=uuid.uuid4(), role=Role.SUPERADMIN)


@pytest.fixture
def leadpastor() -> Principal:
    return Principal(id=uuid.uuid4(), role=Role.LEADPASTOR)


@pytest.fixture
async def group_a(session) -> Group:
    g = Group(name="March", year=2024, description="March intake")
    session.add(g)
    await session.commit()
    return g


@pytest.fixture
async def group_b(session) -> Group:
    g = Group(name="April", year=2024)
    session.add(g)
    await session.commit()
    return g


@pytest.fixture
def leader_a(group_a) -> Principal:
    return Principal(id=uuid.uuid4(), role=Role.LEADER, group_id=group_a.id, group_name=group_a.name)


@pytest.fixture
def admin_a(group_a) -> Principal:
    return Principal(id=uuid.uuid4(), role=Role.ADMIN, group_id=group_a.id, group_name=group_a.name)


@pytest.fixture
def leader_b(group_b) -> Principal:
    return Principal(id=uuid.uuid4(), role=Role.LEADER, group_id=group_b.id, group_name=group_b.name)


@pytest.fixture
async def leader_user(session) -> User:
    u = User(username="u1", full_name="Group Leader", role="leader")
    session.add(u)
    await session.commit()
    return u


@pytest.fixture
async def catalog(session, services, superadmin):
    """Stages 1-3 operator-set, stage 18 derived from attendance."""
    await seed_catalog(session, services.catalog, superadmin)
    return services.catalog


@pytest.fixture
def fixed_today() -> date:
    return date(2025, 3, 2)
