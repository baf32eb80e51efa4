# tests/test_reconciliation.py
from __future__ import annotations

from collections import namedtuple
from datetime import datetime, timezone

import pytest
import sqlalchemy as sa

from PACE.db.models import ActivityLog, Group, Person, ProgressRecord
from PACE.errors import Forbidden, ValidationFailed
from PACE.services.reconciliation import resolve_legacy_group, strip_group_prefix

from tests.helpers import add_bare_person, add_raw_attendance, progress_row, progress_stages, register

pytestmark = pytest.mark.anyio


async def test_backfill_fills_gaps_and_is_idempotent(session, services, catalog, superadmin, group_a):
    full = (await register(services.people, session, superadmin, group_a)).id
    bare = [(await add_bare_person(session, group_a)).id for _ in range(2)]

    report = await services.reconciler.backfill(session, superadmin)
    assert report.processed == 3
    assert report.repaired == 2
    assert report.inserted == 8
    assert report.already_complete == 1
    assert report.failed == 0
    for pid in (full, *bare):
        assert await progress_stages(session, pid) == [1, 2, 3, 18]

    again = await services.reconciler.backfill(session, superadmin)
    assert (again.repaired, again.inserted, again.already_complete) == (0, 0, 3)

    jobs = await session.scalar(
        sa.select(sa.func.count()).select_from(ActivityLog).where(ActivityLog.action == "RECONCILE_BACKFILL")
    )
    assert jobs == 2


async def test_backfill_inserts_incomplete_rows(session, services, catalog, superadmin, group_a):
    pid = (await add_bare_person(session, group_a)).id
    await add_raw_attendance(session, pid, 25)

    await services.reconciler.backfill(session, superadmin)
    # the derived row appears but is only set by attendance sync
    assert not (await progress_row(session, pid, 18)).is_completed


async def test_jobs_need_superadmin(session, services, leadpastor, admin_a):
    for principal in (leadpastor, admin_a):
        with pytest.raises(Forbidden):
            await services.reconciler.backfill(session, principal)
        with pytest.raises(Forbidden):
            await services.reconciler.attendance_sync(session, principal)
        with pytest.raises(Forbidden):
            await services.reconciler.group_rollover(session, principal, 2024, 2025)
        with pytest.raises(Forbidden):
            await services.reconciler.orphan_repair(session, principal)


async def test_attendance_sync(session, services, catalog, superadmin, group_a, gateway):
    behind = (await register(services.people, session, superadmin, group_a)).id
    await add_raw_attendance(session, behind, 20)
    correct = (await register(services.people, session, superadmin, group_a)).id
    await add_raw_attendance(session, correct, 3)
    ahead = (await register(services.people, session, superadmin, group_a)).id
    await session.execute(
        sa.update(ProgressRecord)
        .where(ProgressRecord.person_id == ahead, ProgressRecord.stage_number == 18)
        .values(is_completed=True)
    )
    await session.commit()
    missing = (await add_bare_person(session, group_a)).id
    await add_raw_attendance(session, missing, 22)
    gateway.sent.clear()

    report = await services.reconciler.attendance_sync(session, superadmin)
    assert report.processed == 4
    assert report.updated == 2
    assert report.already_correct == 1
    assert report.missing_record == [str(missing)]
    assert report.skipped == 1 and report.succeeded == 3

    assert (await progress_row(session, behind, 18)).is_completed
    assert not (await progress_row(session, ahead, 18)).is_completed
    assert await progress_row(session, missing, 18) is None
    # repairs are silent
    assert gateway.sent == []

    again = await services.reconciler.attendance_sync(session, superadmin)
    assert (again.updated, again.already_correct) == (0, 3)


async def test_attendance_sync_without_derived_milestone(session, services, superadmin, group_a):
    await add_bare_person(session, group_a)
    report = await services.reconciler.attendance_sync(session, superadmin)
    assert report.processed == 0


async def test_group_rollover(session, services, superadmin, group_a, group_b, leader_user):
    uid = leader_user.id
    await services.groups.update(session, superadmin, group_a.id, {"leader_id": uid})
    old = await services.groups.create(session, superadmin, {"name": "Closed", "year": 2024})
    await services.groups.set_archived(session, superadmin, old.id, True)

    report = await services.reconciler.group_rollover(session, superadmin, 2024, 2025)
    assert report.cloned_count == 2
    assert report.skipped_count == 0
    assert sorted(g["name"] for g in report.groups) == ["April", "March"]

    cloned = {
        g.name: g
        for g in (await session.scalars(sa.select(Group).where(Group.year == 2025))).all()
    }
    assert set(cloned) == {"April", "March"}
    assert cloned["March"].leader_id == uid
    assert cloned["March"].description == "March intake"
    assert not cloned["March"].archived

    again = await services.reconciler.group_rollover(session, superadmin, 2024, 2025)
    assert (again.cloned_count, again.skipped_count) == (0, 2)

    with pytest.raises(ValidationFailed):
        await services.reconciler.group_rollover(session, superadmin, 2025, 2025)


async def test_orphan_repair(session, services, superadmin, group_a, group_b):
    march_2025 = (await services.groups.create(session, superadmin, {"name": "March", "year": 2025})).id
    march_2024, april = group_a.id, group_b.id

    prefixed = (await add_bare_person(
        session, None, group_name="HGE-March", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)
    )).id
    plain = (await add_bare_person(
        session, None, group_name="March", created_at=datetime(2025, 2, 1, tzinfo=timezone.utc)
    )).id
    lost = (await add_bare_person(session, None, group_name="Nowhere")).id
    drifted = (await add_bare_person(session, group_b, group_name="Old April")).id
    fine = (await add_bare_person(session, group_a)).id

    report = await services.reconciler.orphan_repair(session, superadmin)
    assert report.processed == 5
    assert report.repaired == 2
    assert report.renamed == 1
    assert report.already_consistent == 1
    assert report.unresolved == [str(lost)]

    rows = dict(
        (pid, (gid, name))
        for pid, gid, name in (
            await session.execute(sa.select(Person.id, Person.group_id, Person.group_name))
        ).all()
    )
    assert rows[prefixed] == (march_2024, "March")
    assert rows[plain] == (march_2025, "March")
    assert rows[lost] == (None, "Nowhere")
    assert rows[drifted] == (april, "April")
    assert rows[fine] == (march_2024, "March")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("HGE-March", "March"),
        ("eXp - March", "March"),
        ("March", "March"),
        ("  March ", "March"),
        ("", ""),
    ],
)
def test_strip_group_prefix(raw, expected):
    assert strip_group_prefix(raw) == expected


def test_resolve_legacy_group_prefers_year_then_live_groups():
    G = namedtuple("G", "id name year archived")
    old = G(1, "March", 2023, False)
    newest_archived = G(2, "March", 2025, True)
    live = G(3, "March", 2024, False)
    by_name = {"march": [old, newest_archived, live]}

    assert resolve_legacy_group("HGE-March", 2023, by_name) is old
    assert resolve_legacy_group("March", None, by_name) is live
    assert resolve_legacy_group("march", 2030, by_name) is live
    assert resolve_legacy_group("Nowhere", None, by_name) is None
    assert resolve_legacy_group(None, None, by_name) is None
