# src/PACE/services/lookups.py
from __future__ import annotations

import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.db.models import Group, Person
from PACE.errors import Forbidden, NotFound


async def get_person(session: AsyncSession, person_id: uuid.UUID, *, for_update: bool = False) -> Person:
    """Load a person, optionally taking a row lock that serializes per-person writers."""
    stmt = sa.select(Person).where(Person.id == person_id)
    if for_update:
        # NO KEY UPDATE: foreign-key checks from other writers (catalog row fills) do not wait on it
        stmt = stmt.with_for_update(of=Person, key_share=True)
    person = (await session.execute(stmt)).unique().scalar_one_or_none()
    if person is None:
        raise NotFound("Person not found")
    return person


async def get_group(session: AsyncSession, group_id: uuid.UUID) -> Group:
    group = await session.scalar(
        sa.select(Group).where(Group.id == group_id, Group.deleted_at.is_(None))
    )
    if group is None:
        raise NotFound("Group not found")
    return group


def ensure_writable(group: Optional[Group], what: str) -> None:
    """Archived groups are frozen: no registrations, progress or attendance changes."""
    if group is not None and group.archived:
        raise Forbidden(f"Cannot {what} in an archived group")
