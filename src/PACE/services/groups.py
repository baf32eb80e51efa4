# src/PACE/services/groups.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import Group, Person, User
from PACE.db.session import atomic
from PACE.errors import Conflict, InUse, ValidationFailed
from PACE.services.audit import record_activity
from PACE.services.lookups import get_group
from PACE.services.scope import Action, Principal, ScopeRequest, resolve

log = get_logger("groups")

PATCHABLE = frozenset({"name", "description", "year", "leader_id"})


@dataclass(frozen=True)
class GroupSummary:
    group: Group
    member_count: int


def _year(value: Any) -> int:
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("year must be an integer") from None
    if not 1900 <= year <= 9999:
        raise ValidationFailed("year is out of range")
    return year


def _uuid_or_none(value: Any) -> Optional[uuid.UUID]:
    if value in (None, ""):
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationFailed("leader_id must be a UUID") from None


class GroupService:
    """Yearly groups: scoped listing and superadmin administration."""

    async def list(
        self,
        session: AsyncSession,
        principal: Principal,
        requested: ScopeRequest | None = None,
        *,
        include_archived: bool = True,
    ) -> list[GroupSummary]:
        eff = resolve(principal, requested, Action.READ)
        if eff.is_empty:
            return []

        members = (
            sa.select(Person.group_id, sa.func.count().label("n"))
            .group_by(Person.group_id)
            .subquery()
        )
        stmt = (
            sa.select(Group, sa.func.coalesce(members.c.n, 0))
            .join(members, members.c.group_id == Group.id, isouter=True)
            .where(
                Group.deleted_at.is_(None),
                eff.where(Group.id, year_col=Group.year, search_cols=(Group.name,)),
            )
            .order_by(Group.year.desc(), Group.name)
        )
        if not include_archived:
            stmt = stmt.where(Group.archived.is_(False))
        rows = (await session.execute(stmt)).all()
        return [GroupSummary(group=g, member_count=int(n)) for g, n in rows]

    async def create(self, session: AsyncSession, principal: Principal, data: dict[str, Any]) -> Group:
        resolve(principal, action=Action.CATALOG)
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Group name is required")
        year = _year(data.get("year"))
        leader_id = _uuid_or_none(data.get("leader_id"))

        async with atomic(session):
            await self._ensure_name_free(session, name, year)
            if leader_id is not None:
                await self._ensure_leader(session, leader_id)
            group = Group(
                name=name,
                description=data.get("description"),
                year=year,
                leader_id=leader_id,
                archived=False,
            )
            session.add(group)
            await session.flush()
            record_activity(
                session,
                user_id=principal.id,
                action="CREATE_GROUP",
                entity_type="group",
                entity_id=group.id,
                new_values={"name": name, "year": year, "leader_id": leader_id},
            )
        log.info("group %s/%s created", name, year)
        return group

    async def update(
        self, session: AsyncSession, principal: Principal, group_id: uuid.UUID, patch: dict[str, Any]
    ) -> Group:
        resolve(principal, action=Action.CATALOG)
        unknown = set(patch) - PATCHABLE
        if unknown:
            raise ValidationFailed(f"Unknown group fields: {', '.join(sorted(unknown))}")

        async with atomic(session):
            group = await get_group(session, group_id)
            old = {k: getattr(group, k) for k in patch}

            name = (patch["name"] or "").strip() if "name" in patch else group.name
            if not name:
                raise ValidationFailed("Group name is required")
            year = _year(patch["year"]) if "year" in patch else group.year
            if (name, year) != (group.name, group.year):
                await self._ensure_name_free(session, name, year, exclude_id=group.id)

            renamed = name != group.name
            group.name = name
            group.year = year
            if "description" in patch:
                group.description = patch["description"]
            if "leader_id" in patch:
                leader_id = _uuid_or_none(patch["leader_id"])
                if leader_id is not None:
                    await self._ensure_leader(session, leader_id)
                group.leader_id = leader_id

            if renamed:
                # keep the legacy name copy on members in step
                await session.execute(
                    sa.update(Person).where(Person.group_id == group.id).values(group_name=name)
                )
                await session.execute(
                    sa.update(User).where(User.group_id == group.id).values(group_name=name)
                )

            record_activity(
                session,
                user_id=principal.id,
                action="UPDATE_GROUP",
                entity_type="group",
                entity_id=group.id,
                old_values=old,
                new_values={k: getattr(group, k) for k in patch},
            )
        return group

    async def set_archived(
        self, session: AsyncSession, principal: Principal, group_id: uuid.UUID, archived: bool = True
    ) -> Group:
        resolve(principal, action=Action.CATALOG)
        async with atomic(session):
            group = await get_group(session, group_id)
            if group.archived != archived:
                group.archived = archived
                record_activity(
                    session,
                    user_id=principal.id,
                    action="ARCHIVE_GROUP" if archived else "UNARCHIVE_GROUP",
                    entity_type="group",
                    entity_id=group.id,
                    new_values={"archived": archived},
                )
        log.info("group %s/%s archived=%s", group.name, group.year, archived)
        return group

    async def delete(self, session: AsyncSession, principal: Principal, group_id: uuid.UUID) -> None:
        resolve(principal, action=Action.CATALOG)
        async with atomic(session):
            group = await get_group(session, group_id)
            members = await session.scalar(
                sa.select(sa.func.count()).select_from(Person).where(Person.group_id == group.id)
            )
            if members:
                raise InUse(
                    f"Cannot delete group {group.name} ({group.year}): it still has {members} member(s)",
                    count=int(members),
                )
            await session.execute(sa.update(User).where(User.group_id == group.id).values(group_id=None))
            old = {"name": group.name, "year": group.year}
            await session.delete(group)
            record_activity(
                session,
                user_id=principal.id,
                action="DELETE_GROUP",
                entity_type="group",
                entity_id=group_id,
                old_values=old,
            )

    async def _ensure_name_free(
        self, session: AsyncSession, name: str, year: int, exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        stmt = sa.select(Group.id).where(Group.name == name, Group.year == year, Group.deleted_at.is_(None))
        if exclude_id is not None:
            stmt = stmt.where(Group.id != exclude_id)
        if await session.scalar(stmt) is not None:
            raise Conflict(f"Group {name} already exists for {year}")

    async def _ensure_leader(self, session: AsyncSession, leader_id: uuid.UUID) -> None:
        if await session.get(User, leader_id) is None:
            raise ValidationFailed("Leader not found")
