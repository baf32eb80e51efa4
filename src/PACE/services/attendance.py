# src/PACE/services/attendance.py
"""
Attendance Counter: append-mostly attendance log and the milestone derived from it.

Every attendance change and the recomputation of the derived milestone share
one transaction, with the person row locked for its duration, so no reader
ever sees a count that disagrees with the milestone.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import AttendanceRecord, Person
from PACE.db.session import PostCommitHooks, atomic
from PACE.errors import Conflict, NotFound, ValidationFailed
from PACE.services.audit import record_activity
from PACE.services.catalog import MilestoneCatalog
from PACE.services.ledger import ProgressLedger
from PACE.services.lookups import ensure_writable, get_person
from PACE.services.notifications import Notifier, attendance_goal_message
from PACE.services.scope import Action, Principal, authorize_target, resolve

log = get_logger("attendance")

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class Recomputed:
    count: int
    goal: int
    stage_number: Optional[int]
    completed: bool
    changed: bool

    @property
    def reached_goal(self) -> bool:
        return self.changed and self.completed


@dataclass(frozen=True)
class AttendanceOutcome:
    record: Optional[AttendanceRecord]
    total_count: int
    derived: Recomputed


class AttendanceCounter:
    def __init__(
        self,
        ledger: ProgressLedger,
        catalog: MilestoneCatalog,
        goal: int,
        notifier: Optional[Notifier] = None,
        *,
        service_weekday: Optional[int] = None,
        max_backdate_days: Optional[int] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        if goal < 1:
            raise ValueError("attendance goal must be a positive integer")
        self.ledger = ledger
        self.catalog = catalog
        self.goal = goal
        self.notifier = notifier
        self.service_weekday = service_weekday
        self.max_backdate_days = max_backdate_days
        self.today = today

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def count(self, session: AsyncSession, person_id: uuid.UUID) -> int:
        n = await session.scalar(
            sa.select(sa.func.count()).select_from(AttendanceRecord).where(AttendanceRecord.person_id == person_id)
        )
        return int(n or 0)

    async def history(self, session: AsyncSession, principal: Principal, person_id: uuid.UUID) -> list[AttendanceRecord]:
        eff = resolve(principal, action=Action.READ)
        if eff.is_empty:
            return []
        person = await get_person(session, person_id)
        authorize_target(principal, person.group_id, Action.READ)
        rows = await session.scalars(
            sa.select(AttendanceRecord)
            .where(AttendanceRecord.person_id == person_id)
            .order_by(AttendanceRecord.date_attended.desc())
        )
        return list(rows.all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def record(
        self,
        session: AsyncSession,
        principal: Principal,
        person_id: uuid.UUID,
        date_attended: date,
    ) -> AttendanceOutcome:
        resolve(principal, action=Action.WRITE)
        self._validate_date(date_attended)

        async with atomic(session) as hooks:
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            ensure_writable(person.group, "record attendance")

            existing = await session.scalar(
                sa.select(AttendanceRecord.id).where(
                    AttendanceRecord.person_id == person_id,
                    AttendanceRecord.date_attended == date_attended,
                )
            )
            if existing is not None:
                raise Conflict(f"Attendance already recorded for {date_attended.isoformat()}")

            row = AttendanceRecord(person_id=person_id, date_attended=date_attended, recorded_by=principal.id)
            session.add(row)
            try:
                await session.flush()
            except IntegrityError:
                raise Conflict(f"Attendance already recorded for {date_attended.isoformat()}") from None

            derived = await self.recompute_in(session, hooks, person, principal.id)
            record_activity(
                session,
                user_id=principal.id,
                action="MARK_ATTENDANCE",
                entity_type="attendance_record",
                entity_id=row.id,
                new_values={"person_id": person_id, "date_attended": date_attended, "total": derived.count},
            )

        log.info(
            "attendance %s recorded for %s (total=%d, derived=%s)",
            date_attended, person_id, derived.count, "completed" if derived.completed else "pending",
        )
        return AttendanceOutcome(record=row, total_count=derived.count, derived=derived)

    async def delete(
        self,
        session: AsyncSession,
        principal: Principal,
        person_id: uuid.UUID,
        attendance_id: uuid.UUID,
    ) -> AttendanceOutcome:
        resolve(principal, action=Action.ATTENDANCE_DELETE)
        async with atomic(session) as hooks:
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.ATTENDANCE_DELETE)
            ensure_writable(person.group, "delete attendance")

            row = await session.scalar(
                sa.select(AttendanceRecord).where(
                    AttendanceRecord.id == attendance_id,
                    AttendanceRecord.person_id == person_id,
                )
            )
            if row is None:
                raise NotFound("Attendance record not found")
            attended = row.date_attended
            await session.delete(row)
            await session.flush()

            derived = await self.recompute_in(session, hooks, person, principal.id)
            record_activity(
                session,
                user_id=principal.id,
                action="DELETE_ATTENDANCE",
                entity_type="attendance_record",
                entity_id=attendance_id,
                old_values={"person_id": person_id, "date_attended": attended},
                new_values={"total": derived.count},
            )
        return AttendanceOutcome(record=None, total_count=derived.count, derived=derived)

    async def recompute(self, session: AsyncSession, principal: Principal, person_id: uuid.UUID) -> Recomputed:
        """Re-derive one person's attendance milestone in its own transaction."""
        resolve(principal, action=Action.WRITE)
        async with atomic(session) as hooks:
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            return await self.recompute_in(session, hooks, person, principal.id)

    async def recompute_in(
        self,
        session: AsyncSession,
        hooks: Optional[PostCommitHooks],
        person: Person,
        actor_id: Optional[uuid.UUID],
    ) -> Recomputed:
        """
        Recompute inside the caller's transaction.

        The caller must already hold the person's row lock. Crossing the goal
        queues one notification on ``hooks``; pass ``None`` to stay silent.
        """
        n = await self.count(session, person.id)
        completed = n >= self.goal
        milestone = await self.catalog.auto_derived(session)
        if milestone is None:
            log.debug("no attendance-derived milestone configured; skipping recompute")
            return Recomputed(count=n, goal=self.goal, stage_number=None, completed=completed, changed=False)

        result = await self.ledger.set_derived(session, person.id, milestone, completed, actor_id)
        derived = Recomputed(
            count=n,
            goal=self.goal,
            stage_number=milestone.stage_number,
            completed=completed,
            changed=result.changed,
        )
        if derived.reached_goal and hooks is not None and self.notifier is not None:
            self.notifier.queue(
                hooks,
                person.phone_number,
                attendance_goal_message(person.first_name, self.goal),
                trigger="attendance_completion",
            )
        return derived

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _validate_date(self, attended: date) -> None:
        today = self.today()
        if attended > today:
            raise ValidationFailed("Attendance cannot be recorded for future dates")
        if self.service_weekday is not None and attended.weekday() != self.service_weekday:
            raise ValidationFailed(f"Attendance can only be recorded for {WEEKDAYS[self.service_weekday]}s")
        if self.max_backdate_days is not None and today - attended > timedelta(days=self.max_backdate_days):
            raise ValidationFailed(
                f"Attendance cannot be recorded more than {self.max_backdate_days} day(s) after the service date"
            )
