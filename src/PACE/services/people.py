# src/PACE/services/people.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import AttendanceRecord, Group, Person, ProgressRecord
from PACE.db.session import atomic
from PACE.errors import Conflict, Forbidden, NotFound, ValidationFailed
from PACE.services.audit import record_activity
from PACE.services.catalog import MilestoneCatalog
from PACE.services.ledger import ProgressLedger, progress_counts
from PACE.services.lookups import ensure_writable, get_group, get_person
from PACE.services.notifications import Notifier, welcome_message
from PACE.services.scope import Action, Principal, ScopeRequest, authorize_target, resolve

log = get_logger("people")

GENDERS = ("Male", "Female")
OCCUPATION_TYPES = ("Worker", "Student", "Unemployed")
CONTACT_FIELDS = (
    "first_name",
    "last_name",
    "phone_number",
    "date_of_birth",
    "gender",
    "residential_location",
    "school_residential_location",
    "occupation_type",
)


@dataclass(frozen=True)
class PersonSummary:
    person: Person
    group_name: Optional[str]
    group_year: Optional[int]
    completed: int
    total: int
    attendance_count: int


def _clean(data: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for k in CONTACT_FIELDS:
        if k in data:
            v = data[k]
            out[k] = v.strip() if isinstance(v, str) else v
            if out[k] == "":
                out[k] = None
    return out


def _validate_contact(values: dict[str, Any], *, creating: bool) -> None:
    if creating:
        missing = [k for k in ("first_name", "last_name", "phone_number") if not values.get(k)]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
    for k in ("first_name", "last_name", "phone_number"):
        if k in values and not values[k]:
            raise ValidationFailed(f"{k} cannot be empty")
    if values.get("gender") and values["gender"] not in GENDERS:
        raise ValidationFailed('Gender must be either "Male" or "Female"')
    if values.get("occupation_type") and values["occupation_type"] not in OCCUPATION_TYPES:
        raise ValidationFailed('Occupation type must be "Worker", "Student", or "Unemployed"')


class PeopleService:
    def __init__(self, ledger: ProgressLedger, catalog: MilestoneCatalog, notifier: Optional[Notifier] = None) -> None:
        self.ledger = ledger
        self.catalog = catalog
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    async def register(self, session: AsyncSession, principal: Principal, data: dict[str, Any]) -> Person:
        resolve(principal, action=Action.WRITE)
        values = _clean(data)
        _validate_contact(values, creating=True)

        group = await self._resolve_group(session, data.get("group_id"), data.get("group_name"))
        authorize_target(principal, group.id, Action.WRITE)
        ensure_writable(group, "add people")

        async with atomic(session) as hooks:
            clash = await session.scalar(
                sa.select(Person).where(
                    Person.phone_number == values["phone_number"],
                )
            )
            if clash is not None:
                raise Conflict(
                    f"A person with phone number {values['phone_number']} is already registered ({clash.full_name})"
                )

            person = Person(
                **values,
                full_name=f"{values['first_name']} {values['last_name']}",
                group_id=group.id,
                group_name=group.name,
                registered_by=principal.id,
            )
            session.add(person)
            await session.flush()
            inserted = await self.ledger.insert_missing(session, person.id)

            record_activity(
                session,
                user_id=principal.id,
                action="CREATE_CONVERT",
                entity_type="new_convert",
                entity_id=person.id,
                new_values={"full_name": person.full_name, "group_id": group.id},
            )
            if self.notifier is not None:
                self.notifier.queue(hooks, person.phone_number, welcome_message(person.first_name), trigger="registration")

        log.info("registered %s in %s/%s with %d progress rows", person.id, group.name, group.year, inserted)
        return person

    async def _resolve_group(self, session: AsyncSession, group_id: Any, group_name: Optional[str]) -> Group:
        if group_id:
            try:
                return await get_group(session, uuid.UUID(str(group_id)))
            except (ValueError, NotFound):
                raise ValidationFailed("Invalid group specified") from None
        if group_name:
            # legacy clients send only the name; take the newest live group of that name
            group = await session.scalar(
                sa.select(Group)
                .where(Group.name == group_name.strip(), Group.deleted_at.is_(None))
                .order_by(Group.archived, Group.year.desc())
                .limit(1)
            )
            if group is None:
                raise ValidationFailed("Invalid group specified")
            return group
        raise ValidationFailed("Either group_id or group_name must be provided")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list(
        self,
        session: AsyncSession,
        principal: Principal,
        requested: ScopeRequest | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[PersonSummary]:
        eff = resolve(principal, requested, Action.READ)
        if eff.is_empty:
            return []

        stmt = (
            sa.select(Person, Group.name, Group.year)
            .join(Group, Person.group_id == Group.id, isouter=True)
            .where(
                eff.where(
                    Person.group_id,
                    year_col=Group.year,
                    search_cols=(Person.full_name, Person.phone_number),
                ),
            )
            .order_by(Person.last_name, Person.first_name, Person.id)
            .limit(limit)
            .offset(offset)
        )
        rows = (await session.execute(stmt)).unique().all()
        if not rows:
            return []

        ids = [r[0].id for r in rows]
        stages = [m.stage_number for m in await self.catalog.list_active(session)]
        completed = await progress_counts(session, ids, stages)
        attendance = dict(
            (
                await session.execute(
                    sa.select(AttendanceRecord.person_id, sa.func.count())
                    .where(AttendanceRecord.person_id.in_(ids))
                    .group_by(AttendanceRecord.person_id)
                )
            ).all()
        )
        return [
            PersonSummary(
                person=p,
                group_name=gname,
                group_year=gyear,
                completed=completed.get(p.id, 0),
                total=len(stages),
                attendance_count=int(attendance.get(p.id, 0)),
            )
            for p, gname, gyear in rows
        ]

    async def get(self, session: AsyncSession, principal: Principal, person_id: uuid.UUID) -> Person:
        eff = resolve(principal, action=Action.READ)
        if eff.is_empty:
            raise NotFound("Person not found")
        person = await get_person(session, person_id)
        authorize_target(principal, person.group_id, Action.READ)
        return person

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    async def update(
        self, session: AsyncSession, principal: Principal, person_id: uuid.UUID, patch: dict[str, Any]
    ) -> Person:
        """Edit contact details; moving a person to another group is an administrative edit."""
        resolve(principal, action=Action.WRITE)
        values = _clean(patch)
        _validate_contact(values, creating=False)
        new_group_id = patch.get("group_id")

        async with atomic(session):
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            ensure_writable(person.group, "edit people")

            if "phone_number" in values and values["phone_number"] != person.phone_number:
                clash = await session.scalar(
                    sa.select(Person.id).where(
                        Person.phone_number == values["phone_number"],
                        Person.id != person.id,
                    )
                )
                if clash is not None:
                    raise Conflict(f"Phone number {values['phone_number']} is already registered")

            old = {k: getattr(person, k) for k in values}
            for k, v in values.items():
                setattr(person, k, v)
            if "first_name" in values or "last_name" in values:
                person.full_name = f"{person.first_name} {person.last_name}"

            if new_group_id and uuid.UUID(str(new_group_id)) != person.group_id:
                resolve(principal, action=Action.CATALOG)
                group = await get_group(session, uuid.UUID(str(new_group_id)))
                ensure_writable(group, "move people")
                old["group_id"] = person.group_id
                person.group_id = group.id
                person.group_name = group.name
                values["group_id"] = group.id

            record_activity(
                session,
                user_id=principal.id,
                action="UPDATE_CONVERT",
                entity_type="new_convert",
                entity_id=person.id,
                old_values=old,
                new_values=values,
            )
        return person

    async def delete(self, session: AsyncSession, principal: Principal, person_id: uuid.UUID) -> None:
        resolve(principal, action=Action.WRITE)
        async with atomic(session):
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            old = {"full_name": person.full_name, "group_id": person.group_id}
            await self._purge(session, [person.id])
            record_activity(
                session,
                user_id=principal.id,
                action="DELETE_CONVERT",
                entity_type="new_convert",
                entity_id=person_id,
                old_values=old,
            )

    async def bulk_delete(self, session: AsyncSession, principal: Principal, person_ids: list[uuid.UUID]) -> int:
        eff = resolve(principal, action=Action.BULK)
        if not person_ids:
            raise ValidationFailed("No person IDs provided")

        async with atomic(session):
            rows = (
                await session.execute(
                    sa.select(Person.id, Person.group_id)
                    .where(Person.id.in_(person_ids))
                    .with_for_update()
                )
            ).all()
            outside = [str(pid) for pid, gid in rows if not eff.allows_group(gid)]
            if outside:
                raise Forbidden("You can only delete people in your group")
            ids = [pid for pid, _ in rows]
            if ids:
                await self._purge(session, ids)
            record_activity(
                session,
                user_id=principal.id,
                action="DELETE_CONVERT",
                entity_type="new_convert",
                new_values={"bulk": True, "deleted": [str(i) for i in ids]},
            )
        log.info("bulk delete removed %d of %d requested people", len(ids), len(person_ids))
        return len(ids)

    async def _purge(self, session: AsyncSession, ids: list[uuid.UUID]) -> None:
        # explicit children-first deletes; SQLite does not enforce ON DELETE CASCADE by default
        await session.execute(sa.delete(AttendanceRecord).where(AttendanceRecord.person_id.in_(ids)))
        await session.execute(sa.delete(ProgressRecord).where(ProgressRecord.person_id.in_(ids)))
        await session.execute(sa.delete(Person).where(Person.id.in_(ids)))
