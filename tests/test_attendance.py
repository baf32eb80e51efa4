# tests/test_attendance.py
from __future__ import annotations

import uuid
from datetime import date

import pytest

from PACE.api.deps import build_services
from PACE.errors import Conflict, Forbidden, NotFound, ValidationFailed
from PACE.services.attendance import AttendanceCounter
from PACE.services.scope import Principal, Role

from tests.helpers import FakeGateway, add_raw_attendance, progress_row, register, seed_catalog

pytestmark = pytest.mark.anyio

GOAL_TEXT = "church attendances"


def make_counter(services, today: date, **kw) -> AttendanceCounter:
    return AttendanceCounter(
        services.ledger,
        services.catalog,
        goal=kw.pop("goal", 20),
        notifier=services.notifier,
        today=lambda: today,
        **kw,
    )


@pytest.fixture
def counter(services, fixed_today) -> AttendanceCounter:
    return make_counter(services, fixed_today)


@pytest.fixture
async def person(session, services, catalog, superadmin, group_a):
    return await register(services.people, session, superadmin, group_a, first_name="Yaw")


async def test_goal_is_reached_on_the_twentieth_record(session, counter, person, superadmin, gateway):
    pid = person.id
    await add_raw_attendance(session, pid, 18)

    out = await counter.record(session, superadmin, pid, date(2025, 2, 16))
    assert out.total_count == 19
    assert out.derived.stage_number == 18
    assert not out.derived.completed
    assert not (await progress_row(session, pid, 18)).is_completed

    out = await counter.record(session, superadmin, pid, date(2025, 2, 23))
    assert out.total_count == 20
    assert out.derived.completed and out.derived.changed
    row = await progress_row(session, pid, 18)
    assert row.is_completed and row.date_completed is not None

    out = await counter.record(session, superadmin, pid, date(2025, 3, 2))
    assert out.total_count == 21
    assert out.derived.completed and not out.derived.changed

    sent = gateway.matching(GOAL_TEXT)
    assert len(sent) == 1
    assert "Yaw" in sent[0][1] and "20" in sent[0][1]


async def test_duplicate_date_conflicts(session, counter, person, superadmin):
    pid = person.id
    await counter.record(session, superadmin, pid, date(2025, 2, 23))
    with pytest.raises(Conflict):
        await counter.record(session, superadmin, pid, date(2025, 2, 23))
    assert await counter.count(session, pid) == 1


async def test_future_dates_are_rejected(session, counter, person, superadmin):
    with pytest.raises(ValidationFailed):
        await counter.record(session, superadmin, person.id, date(2025, 3, 3))
    assert await counter.count(session, person.id) == 0


async def test_delete_recomputes_the_derived_milestone(session, counter, person, superadmin, gateway):
    pid = person.id
    await add_raw_attendance(session, pid, 19)
    out = await counter.record(session, superadmin, pid, date(2025, 3, 2))
    assert out.derived.completed

    after = await counter.delete(session, superadmin, pid, out.record.id)
    assert after.total_count == 19
    assert not after.derived.completed and after.derived.changed
    assert not (await progress_row(session, pid, 18)).is_completed

    with pytest.raises(NotFound):
        await counter.delete(session, superadmin, pid, uuid.uuid4())

    # crossing the goal again notifies again
    await counter.record(session, superadmin, pid, date(2025, 3, 2))
    assert len(gateway.matching(GOAL_TEXT)) == 2


async def test_only_admins_may_delete_attendance(session, counter, person, leader_a, leadpastor, admin_a, group_b):
    pid = person.id
    admin_b = Principal(id=uuid.uuid4(), role=Role.ADMIN, group_id=group_b.id)
    out = await counter.record(session, leader_a, pid, date(2025, 2, 23))
    rid = out.record.id

    for who in (leader_a, leadpastor, admin_b):
        with pytest.raises(Forbidden):
            await counter.delete(session, who, pid, rid)
    assert await counter.count(session, pid) == 1

    after = await counter.delete(session, admin_a, pid, rid)
    assert after.total_count == 0


async def test_recompute_repairs_a_stale_derived_milestone(session, counter, person, superadmin, leader_b, gateway):
    pid = person.id
    await add_raw_attendance(session, pid, 20)
    assert not (await progress_row(session, pid, 18)).is_completed

    with pytest.raises(Forbidden):
        await counter.recompute(session, leader_b, pid)

    derived = await counter.recompute(session, superadmin, pid)
    assert (derived.count, derived.completed, derived.changed) == (20, True, True)
    assert (await progress_row(session, pid, 18)).is_completed
    assert len(gateway.matching(GOAL_TEXT)) == 1

    again = await counter.recompute(session, superadmin, pid)
    assert again.completed and not again.changed
    assert len(gateway.matching(GOAL_TEXT)) == 1


async def test_history_is_newest_first(session, counter, person, superadmin):
    for d in (date(2025, 2, 9), date(2025, 2, 23), date(2025, 2, 16)):
        await counter.record(session, superadmin, person.id, d)
    rows = await counter.history(session, superadmin, person.id)
    assert [r.date_attended for r in rows] == [date(2025, 2, 23), date(2025, 2, 16), date(2025, 2, 9)]


async def test_failing_gateway_does_not_fail_the_write(session, cfg, superadmin, group_a, fixed_today):
    broken = FakeGateway(exc=RuntimeError("gateway down"))
    svc = build_services(cfg, broken)
    await seed_catalog(session, svc.catalog, superadmin)
    p = await register(svc.people, session, superadmin, group_a)
    pid = p.id
    await add_raw_attendance(session, pid, 19)

    out = await make_counter(svc, fixed_today).record(session, superadmin, pid, fixed_today)
    assert out.derived.completed
    assert (await progress_row(session, pid, 18)).is_completed
    # welcome and goal messages were both attempted
    assert len(broken.sent) == 2


async def test_service_weekday_and_backdate_policies(session, services, person, superadmin, fixed_today):
    strict = make_counter(services, fixed_today, service_weekday=6, max_backdate_days=7)
    pid = person.id

    with pytest.raises(ValidationFailed) as exc:
        await strict.record(session, superadmin, pid, date(2025, 3, 1))
    assert "Sunday" in exc.value.message
    with pytest.raises(ValidationFailed):
        await strict.record(session, superadmin, pid, date(2025, 2, 16))

    out = await strict.record(session, superadmin, pid, date(2025, 2, 23))
    assert out.total_count == 1


async def test_without_a_derived_milestone_only_counts(session, counter, catalog, person, superadmin):
    pid = person.id
    auto = await catalog.auto_derived(session)
    await catalog.deactivate(session, superadmin, auto.id)

    out = await counter.record(session, superadmin, pid, date(2025, 3, 2))
    assert out.total_count == 1
    assert out.derived.stage_number is None
    assert not out.derived.changed


async def test_attendance_is_scoped_to_the_group(session, services, counter, person, leader_a, leader_b, superadmin, group_a):
    pid, gid = person.id, group_a.id
    await counter.record(session, leader_a, pid, date(2025, 2, 23))

    with pytest.raises(Forbidden):
        await counter.record(session, leader_b, pid, date(2025, 3, 2))
    with pytest.raises(Forbidden):
        await counter.history(session, leader_b, pid)

    no_group = Principal(id=uuid.uuid4(), role=Role.ADMIN)
    assert await counter.history(session, no_group, pid) == []

    await services.groups.set_archived(session, superadmin, gid, True)
    with pytest.raises(Forbidden):
        await counter.record(session, superadmin, pid, date(2025, 3, 2))
    assert await counter.count(session, pid) == 1


def test_goal_must_be_positive(services):
    with pytest.raises(ValueError):
        AttendanceCounter(services.ledger, services.catalog, goal=0)
