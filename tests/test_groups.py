# tests/test_groups.py
from __future__ import annotations

import uuid

import pytest
import sqlalchemy as sa

from PACE.db.models import Group, Person, User
from PACE.errors import Conflict, Forbidden, InUse, ValidationFailed
from PACE.services.scope import ScopeRequest

from tests.helpers import add_bare_person

pytestmark = pytest.mark.anyio


async def test_create_and_validate(session, services, superadmin, leadpastor, leader_user):
    groups = services.groups
    g = await groups.create(session, superadmin, {"name": " May ", "year": 2025, "leader_id": str(leader_user.id)})
    assert (g.name, g.year, g.archived) == ("May", 2025, False)
    assert g.leader_id == leader_user.id

    with pytest.raises(Conflict):
        await groups.create(session, superadmin, {"name": "May", "year": 2025})
    # same name in another year is fine
    await groups.create(session, superadmin, {"name": "May", "year": 2026})

    with pytest.raises(ValidationFailed):
        await groups.create(session, superadmin, {"name": "June", "year": "soon"})
    with pytest.raises(ValidationFailed):
        await groups.create(session, superadmin, {"name": "June", "year": 2025, "leader_id": str(uuid.uuid4())})
    with pytest.raises(Forbidden):
        await groups.create(session, leadpastor, {"name": "June", "year": 2025})


async def test_list_is_scoped_with_member_counts(session, services, superadmin, leader_a, group_a, group_b):
    ga, gb = group_a.id, group_b.id
    for _ in range(2):
        await add_bare_person(session, group_a)

    everything = await services.groups.list(session, superadmin)
    assert {s.group.name: s.member_count for s in everything} == {"March": 2, "April": 0}

    mine = await services.groups.list(session, leader_a)
    assert [s.group.id for s in mine] == [ga]

    await services.groups.set_archived(session, superadmin, gb, True)
    live = await services.groups.list(session, superadmin, include_archived=False)
    assert [s.group.id for s in live] == [ga]

    found = await services.groups.list(session, superadmin, ScopeRequest(search="apr"))
    assert [s.group.id for s in found] == [gb]
    assert await services.groups.list(session, superadmin, ScopeRequest(year=2025)) == []


async def test_rename_keeps_member_copies_in_step(session, services, superadmin, group_a, leader_user):
    gid, uid = group_a.id, leader_user.id
    pid = (await add_bare_person(session, group_a)).id
    leader_user.group_id = gid
    leader_user.group_name = "March"
    await session.commit()

    await services.groups.update(session, superadmin, gid, {"name": "Mar"})
    names = (await session.execute(
        sa.select(Person.group_name).where(Person.id == pid)
        .union_all(sa.select(User.group_name).where(User.id == uid))
    )).scalars().all()
    assert names == ["Mar", "Mar"]

    with pytest.raises(ValidationFailed):
        await services.groups.update(session, superadmin, gid, {"colour": "red"})


async def test_rename_onto_existing_group_conflicts(session, services, superadmin, group_a, group_b):
    with pytest.raises(Conflict):
        await services.groups.update(session, superadmin, group_b.id, {"name": "March"})


async def test_archive_and_unarchive(session, services, superadmin, group_a):
    gid = group_a.id
    assert (await services.groups.set_archived(session, superadmin, gid, True)).archived
    assert not (await services.groups.set_archived(session, superadmin, gid, False)).archived


async def test_delete(session, services, superadmin, group_a, group_b, leader_user):
    ga, gb, uid = group_a.id, group_b.id, leader_user.id
    await add_bare_person(session, group_a)
    leader_user.group_id = gb
    await session.commit()

    with pytest.raises(InUse) as exc:
        await services.groups.delete(session, superadmin, ga)
    assert exc.value.count == 1

    await services.groups.delete(session, superadmin, gb)
    assert await session.scalar(sa.select(Group.id).where(Group.id == gb)) is None
    assert await session.scalar(sa.select(User.group_id).where(User.id == uid)) is None
    assert await session.scalar(sa.select(Group.id).where(Group.id == ga)) == ga
