# tests/test_ledger.py
from __future__ import annotations

import uuid
from datetime import date

import pytest

from PACE.api.deps import build_services
from PACE.errors import Forbidden, NotFound, ValidationFailed
from PACE.services.ledger import ProgressLedger
from PACE.services.scope import Principal, Role

from tests.helpers import add_bare_person, progress_row, progress_stages, register

pytestmark = pytest.mark.anyio


@pytest.fixture
def ledger(services, fixed_today) -> ProgressLedger:
    return ProgressLedger(services.catalog, services.notifier, today=lambda: fixed_today)


@pytest.fixture
async def person(session, services, catalog, superadmin, group_a):
    return await register(services.people, session, superadmin, group_a, first_name="Esi")


async def test_get_lists_every_active_milestone(session, ledger, person, superadmin):
    entries = await ledger.get(session, superadmin, person.id)
    assert [e.stage_number for e in entries] == [1, 2, 3, 18]
    assert [e.auto_derived for e in entries] == [False, False, False, True]
    assert not any(e.is_completed for e in entries)


async def test_completion_stamps_the_processing_date(session, ledger, person, superadmin, fixed_today):
    rec = await ledger.upsert(session, superadmin, person.id, 1, True)
    assert rec.is_completed and rec.date_completed == fixed_today
    assert rec.updated_by == superadmin.id

    rate = await ledger.completion_rate(session, superadmin, person.id)
    assert (rate.completed, rate.total) == (1, 4)
    assert rate.ratio == 0.25


async def test_recompleting_keeps_the_original_date(session, services, person, superadmin, fixed_today):
    first = ProgressLedger(services.catalog, today=lambda: fixed_today)
    later = ProgressLedger(services.catalog, today=lambda: date(2025, 6, 1))

    await first.upsert(session, superadmin, person.id, 2, True)
    rec = await later.upsert(session, superadmin, person.id, 2, True)
    assert rec.date_completed == fixed_today

    rec = await later.upsert(session, superadmin, person.id, 2, False)
    assert not rec.is_completed and rec.date_completed is None

    rec = await later.upsert(session, superadmin, person.id, 2, True)
    assert rec.date_completed == date(2025, 6, 1)


@pytest.mark.parametrize("completed", [True, False])
async def test_attendance_milestone_cannot_be_set_directly(session, ledger, person, superadmin, completed):
    with pytest.raises(ValidationFailed) as exc:
        await ledger.upsert(session, superadmin, person.id, 18, completed)
    assert "attendance" in exc.value.message
    row = await progress_row(session, person.id, 18)
    assert row is not None and not row.is_completed


async def test_unknown_and_inactive_milestones(session, ledger, catalog, person, superadmin):
    with pytest.raises(NotFound):
        await ledger.upsert(session, superadmin, person.id, 99, True)

    m = await catalog.get_by_stage_number(session, 3)
    await catalog.deactivate(session, superadmin, m.id)
    with pytest.raises(NotFound):
        await ledger.upsert(session, superadmin, person.id, 3, True)


async def test_unknown_person(session, ledger, catalog, superadmin):
    with pytest.raises(NotFound):
        await ledger.upsert(session, superadmin, uuid.uuid4(), 1, True)


async def test_leaders_are_contained_to_their_group(session, ledger, person, leader_a, leader_b):
    pid = person.id
    await ledger.upsert(session, leader_a, pid, 1, True)

    with pytest.raises(Forbidden):
        await ledger.upsert(session, leader_b, pid, 1, False)
    with pytest.raises(Forbidden):
        await ledger.get(session, leader_b, pid)

    row = await progress_row(session, pid, 1)
    assert row.is_completed


async def test_principal_without_group(session, ledger, person):
    orphan = Principal(id=uuid.uuid4(), role=Role.LEADER)
    assert await ledger.get(session, orphan, person.id) == []
    with pytest.raises(Forbidden):
        await ledger.upsert(session, orphan, person.id, 1, True)


async def test_archived_group_is_read_only(session, services, ledger, person, superadmin, group_a):
    pid = person.id
    await services.groups.set_archived(session, superadmin, group_a.id, True)
    with pytest.raises(Forbidden):
        await ledger.upsert(session, superadmin, pid, 1, True)
    # reads still work
    assert len(await ledger.get(session, superadmin, pid)) == 4


async def test_stage_completion_notifies_once(session, ledger, person, superadmin, gateway):
    gateway.sent.clear()
    await ledger.upsert(session, superadmin, person.id, 1, True)
    await ledger.upsert(session, superadmin, person.id, 1, True)
    assert len(gateway.matching("Stage 1")) == 1
    assert gateway.sent[0][0] == person.phone_number


async def test_insert_missing_is_idempotent(session, ledger, catalog, group_a, superadmin):
    p = await add_bare_person(session, group_a)
    assert await progress_stages(session, p.id) == []

    assert await ledger.ensure_complete(session, p.id, superadmin) == 4
    assert await ledger.ensure_complete(session, p.id, superadmin) == 0
    assert await progress_stages(session, p.id) == [1, 2, 3, 18]


async def test_rows_follow_the_store_not_a_stale_catalog_cache(session, cfg, gateway, catalog, group_a, superadmin):
    # a second wiring stands in for another worker process with its own cache
    other = build_services(cfg, gateway)
    assert [m.stage_number for m in await other.catalog.list_active(session)] == [1, 2, 3, 18]

    await catalog.create(session, superadmin, {"stage_number": 4, "name": "Stage 4"})
    assert [m.stage_number for m in await other.catalog.list_active(session)] == [1, 2, 3, 18]

    p = await register(other.people, session, superadmin, group_a)
    assert await progress_stages(session, p.id) == [1, 2, 3, 4, 18]

    bare = await add_bare_person(session, group_a)
    assert await other.ledger.ensure_complete(session, bare.id) == 5
    assert await progress_stages(session, bare.id) == [1, 2, 3, 4, 18]
