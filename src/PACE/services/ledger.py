# src/PACE/services/ledger.py
"""
Progress Ledger: per-person milestone completion records.

Operators toggle ordinary milestones through ``upsert``. The attendance
milestone is never set by an operator; the Attendance Counter writes it
through ``set_derived`` inside its own transaction.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import MilestoneDefinition, ProgressRecord
from PACE.db.session import atomic, insert_ignore, share_lock
from PACE.errors import NotFound, ValidationFailed
from PACE.services.audit import record_activity
from PACE.services.catalog import Milestone, MilestoneCatalog
from PACE.services.lookups import ensure_writable, get_person
from PACE.services.notifications import Notifier, stage_completion_message
from PACE.services.scope import Action, Principal, authorize_target, resolve

log = get_logger("ledger")


@dataclass(frozen=True)
class ProgressEntry:
    person_id: uuid.UUID
    stage_number: int
    stage_name: str
    short_name: Optional[str]
    auto_derived: bool
    is_completed: bool
    date_completed: Optional[date]
    updated_by: Optional[uuid.UUID]
    last_updated: Optional[datetime]


@dataclass(frozen=True)
class CompletionRate:
    completed: int
    total: int

    @property
    def ratio(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass(frozen=True)
class WriteResult:
    record: ProgressRecord
    changed: bool

    @property
    def became_complete(self) -> bool:
        return self.changed and self.record.is_completed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressLedger:
    def __init__(
        self,
        catalog: MilestoneCatalog,
        notifier: Optional[Notifier] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.catalog = catalog
        self.notifier = notifier
        self.today = today

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get(self, session: AsyncSession, principal: Principal, person_id: uuid.UUID) -> list[ProgressEntry]:
        eff = resolve(principal, action=Action.READ)
        if eff.is_empty:
            return []
        person = await get_person(session, person_id)
        authorize_target(principal, person.group_id, Action.READ)

        milestones = await self.catalog.list_active(session)
        rows = (
            await session.scalars(sa.select(ProgressRecord).where(ProgressRecord.person_id == person_id))
        ).all()
        by_stage = {r.stage_number: r for r in rows}

        out: list[ProgressEntry] = []
        for m in milestones:
            r = by_stage.get(m.stage_number)
            out.append(
                ProgressEntry(
                    person_id=person_id,
                    stage_number=m.stage_number,
                    stage_name=m.name,
                    short_name=m.short_name,
                    auto_derived=m.auto_derived,
                    is_completed=bool(r and r.is_completed),
                    date_completed=r.date_completed if r else None,
                    updated_by=r.updated_by if r else None,
                    last_updated=r.last_updated if r else None,
                )
            )
        return out

    async def completion_rate(
        self, session: AsyncSession, principal: Principal, person_id: uuid.UUID
    ) -> CompletionRate:
        entries = await self.get(session, principal, person_id)
        return CompletionRate(completed=sum(1 for e in entries if e.is_completed), total=len(entries))

    # ------------------------------------------------------------------
    # Operator writes
    # ------------------------------------------------------------------
    async def upsert(
        self,
        session: AsyncSession,
        principal: Principal,
        person_id: uuid.UUID,
        stage_number: int,
        completed: bool,
    ) -> ProgressRecord:
        resolve(principal, action=Action.WRITE)
        milestone = await self.catalog.get_by_stage_number(session, stage_number)
        if not milestone.is_active:
            raise NotFound(f"Milestone {stage_number} is not active")
        if milestone.auto_derived:
            raise ValidationFailed(
                f"Milestone {stage_number} ({milestone.name}) is computed automatically "
                "from attendance records and cannot be set directly"
            )

        async with atomic(session) as hooks:
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            ensure_writable(person.group, "update progress")

            result = await self._write(session, person_id, stage_number, completed, principal.id)
            record_activity(
                session,
                user_id=principal.id,
                action="UPDATE_PROGRESS",
                entity_type="progress_record",
                entity_id=f"{person_id}:{stage_number}",
                new_values={"stage_number": stage_number, "is_completed": completed},
            )
            if result.became_complete and self.notifier is not None:
                self.notifier.queue(
                    hooks,
                    person.phone_number,
                    stage_completion_message(person.first_name, milestone.name),
                    trigger="stage_completion",
                )
        return result.record

    # ------------------------------------------------------------------
    # Internal writes (run inside the caller's transaction)
    # ------------------------------------------------------------------
    async def set_derived(
        self,
        session: AsyncSession,
        person_id: uuid.UUID,
        milestone: Milestone,
        completed: bool,
        actor_id: Optional[uuid.UUID],
    ) -> WriteResult:
        """Write the attendance milestone without the operator guard."""
        return await self._write(session, person_id, milestone.stage_number, completed, actor_id)

    async def insert_missing(self, session: AsyncSession, person_id: uuid.UUID) -> int:
        """
        Insert a blank row for every active milestone the person lacks.

        Insert-if-absent: concurrent callers for the same person both succeed
        and the composite primary key keeps exactly one row per stage. Active
        stages come from the store under a SHARE lock, never from the catalog
        cache, so a milestone created by another process is never missed.
        """
        await share_lock(session, MilestoneDefinition.__table__)
        stages = await self.catalog.active_stage_numbers(session)
        existing = set(
            (
                await session.scalars(
                    sa.select(ProgressRecord.stage_number).where(ProgressRecord.person_id == person_id)
                )
            ).all()
        )
        missing = [n for n in stages if n not in existing]
        if not missing:
            return 0

        now = _utcnow()
        stmt = insert_ignore(session, ProgressRecord.__table__, ["person_id", "stage_number"])
        await session.execute(
            stmt,
            [
                {"person_id": person_id, "stage_number": n, "is_completed": False, "last_updated": now}
                for n in missing
            ],
        )
        log.debug("person %s: inserted %d missing progress rows", person_id, len(missing))
        return len(missing)

    async def ensure_complete(
        self,
        session: AsyncSession,
        person_id: uuid.UUID,
        principal: Optional[Principal] = None,
    ) -> int:
        """Repair one person's rows in its own transaction; returns the number inserted."""
        principal = principal or Principal.system()
        resolve(principal, action=Action.WRITE)
        async with atomic(session):
            person = await get_person(session, person_id, for_update=True)
            authorize_target(principal, person.group_id, Action.WRITE)
            return await self.insert_missing(session, person_id)

    async def _write(
        self,
        session: AsyncSession,
        person_id: uuid.UUID,
        stage_number: int,
        completed: bool,
        actor_id: Optional[uuid.UUID],
    ) -> WriteResult:
        now = _utcnow()
        record = await session.get(
            ProgressRecord, (person_id, stage_number), with_for_update=True, populate_existing=True
        )
        if record is None:
            record = ProgressRecord(person_id=person_id, stage_number=stage_number, is_completed=False)
            session.add(record)
            previous = False
        else:
            previous = bool(record.is_completed)

        if completed:
            # re-setting a complete stage keeps its original completion date
            if not previous or record.date_completed is None:
                record.date_completed = self.today()
        else:
            record.date_completed = None
        record.is_completed = completed
        record.updated_by = actor_id
        record.last_updated = now
        await session.flush()
        return WriteResult(record=record, changed=previous != completed)


async def progress_counts(session: AsyncSession, person_ids: list[uuid.UUID], stages: list[int]) -> dict[uuid.UUID, int]:
    """Completed-row counts over the given stages, one query for a page of people."""
    if not person_ids or not stages:
        return {}
    rows = await session.execute(
        sa.select(ProgressRecord.person_id, sa.func.count())
        .where(
            ProgressRecord.person_id.in_(person_ids),
            ProgressRecord.stage_number.in_(stages),
            ProgressRecord.is_completed.is_(True),
        )
        .group_by(ProgressRecord.person_id)
    )
    return {pid: int(n) for pid, n in rows.all()}


__all__ = ["ProgressLedger", "ProgressEntry", "CompletionRate", "WriteResult", "progress_counts"]
