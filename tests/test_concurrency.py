# tests/test_concurrency.py
"""
Two writers for the same person at once, each on its own connection to a
file-backed store. SQLite serializes the writers on its database lock; the
unique keys decide who wins.
"""
from __future__ import annotations

import asyncio
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from PACE.db.base import Base
from PACE.db.models import Group
from PACE.db.session import build_sessionmaker
from PACE.errors import Conflict

from tests.helpers import add_bare_person, progress_stages, seed_catalog

pytestmark = pytest.mark.anyio


@pytest.fixture
async def file_maker(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pace.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(eng)
    await eng.dispose()


@pytest.fixture
async def person_id(file_maker, services, superadmin):
    async with file_maker() as s:
        await seed_catalog(s, services.catalog, superadmin)
        g = Group(name="May", year=2025)
        s.add(g)
        await s.commit()
        p = await add_bare_person(s, g)
        return p.id


async def test_parallel_ensure_complete_keeps_one_row_per_stage(file_maker, services, person_id):
    async def repair():
        async with file_maker() as s:
            return await services.ledger.ensure_complete(s, person_id)

    results = await asyncio.gather(repair(), repair())
    assert all(n >= 0 for n in results)
    assert max(results) == 4

    async with file_maker() as s:
        assert await progress_stages(s, person_id) == [1, 2, 3, 18]


async def test_parallel_recording_of_one_date_conflicts_once(file_maker, services, person_id, superadmin):
    async def mark():
        async with file_maker() as s:
            return await services.counter.record(s, superadmin, person_id, date(2025, 2, 23))

    results = await asyncio.gather(mark(), mark(), return_exceptions=True)
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len(conflicts) == 1
    assert [r.total_count for r in results if not isinstance(r, Exception)] == [1]

    async with file_maker() as s:
        assert await services.counter.count(s, person_id) == 1
