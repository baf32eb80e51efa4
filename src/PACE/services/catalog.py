# src/PACE/services/catalog.py
"""
Milestone Catalog: registry of milestone definitions.

Active definitions are read on nearly every request, so ``list_active`` is
served from a short TTL cache. Every mutation drops the cache once its
transaction has committed.

Mutations keep the one-record-per-(person, active milestone) invariant
eagerly: creating or re-activating a milestone inserts the missing progress
rows for every person in the same transaction, and renumbering a stage
re-keys its progress rows.

The cache may lag behind other processes, so nothing that writes progress
rows for that invariant reads it. Registration takes a SHARE lock on the
milestones table (see ``ProgressLedger.insert_missing``) and the catalog's
own INSERT/UPDATE conflicts with it, so a new milestone and a new person
cannot both commit without one seeing the other.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import MilestoneDefinition, Person, ProgressRecord
from PACE.db.session import atomic, insert_ignore
from PACE.errors import Conflict, InUse, NotFound, ValidationFailed
from PACE.services.audit import record_activity
from PACE.services.scope import Action, Principal, resolve

log = get_logger("catalog")

PATCHABLE = frozenset({"stage_number", "name", "short_name", "description", "is_active", "auto_derived"})


@dataclass(frozen=True)
class Milestone:
    """Detached, cache-safe view of a MilestoneDefinition."""
    id: uuid.UUID
    stage_number: int
    name: str
    short_name: Optional[str]
    description: Optional[str]
    is_active: bool
    auto_derived: bool

    @classmethod
    def from_row(cls, row: MilestoneDefinition) -> "Milestone":
        return cls(
            id=row.id,
            stage_number=row.stage_number,
            name=row.name,
            short_name=row.short_name,
            description=row.description,
            is_active=row.is_active,
            auto_derived=row.auto_derived,
        )


class MilestoneCatalog:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._active: Optional[tuple[Milestone, ...]] = None
        self._expires_at: float = 0.0

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def invalidate(self) -> None:
        self._active = None
        self._expires_at = 0.0

    async def _invalidate_hook(self) -> None:
        self.invalidate()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_active(self, session: AsyncSession) -> list[Milestone]:
        now = self._clock()
        if self._active is not None and now < self._expires_at:
            return list(self._active)

        rows = (
            await session.scalars(
                sa.select(MilestoneDefinition)
                .where(MilestoneDefinition.deleted_at.is_(None), MilestoneDefinition.is_active.is_(True))
                .order_by(MilestoneDefinition.stage_number)
            )
        ).all()
        self._active = tuple(Milestone.from_row(r) for r in rows)
        self._expires_at = now + self.ttl_seconds
        log.debug("catalog refreshed (%d active)", len(self._active))
        return list(self._active)

    async def active_stage_numbers(self, session: AsyncSession) -> list[int]:
        """Active stage numbers read from the store, bypassing the cache."""
        rows = await session.scalars(
            sa.select(MilestoneDefinition.stage_number)
            .where(MilestoneDefinition.deleted_at.is_(None), MilestoneDefinition.is_active.is_(True))
            .order_by(MilestoneDefinition.stage_number)
        )
        return list(rows.all())

    async def list_all(self, session: AsyncSession) -> list[Milestone]:
        rows = (
            await session.scalars(
                sa.select(MilestoneDefinition)
                .where(MilestoneDefinition.deleted_at.is_(None))
                .order_by(MilestoneDefinition.stage_number)
            )
        ).all()
        return [Milestone.from_row(r) for r in rows]

    async def get_by_stage_number(self, session: AsyncSession, stage_number: int) -> Milestone:
        for m in await self.list_active(session):
            if m.stage_number == stage_number:
                return m
        row = await self._live_by_stage(session, stage_number)
        if row is None:
            raise NotFound(f"Milestone {stage_number} not found")
        return Milestone.from_row(row)

    async def auto_derived(self, session: AsyncSession) -> Optional[Milestone]:
        for m in await self.list_active(session):
            if m.auto_derived:
                return m
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def create(self, session: AsyncSession, principal: Principal, data: dict[str, Any]) -> Milestone:
        resolve(principal, action=Action.CATALOG)
        stage_number = _stage_number(data.get("stage_number"))
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Milestone name is required")

        async with atomic(session) as hooks:
            if await self._live_by_stage(session, stage_number) is not None:
                raise Conflict(f"Stage number {stage_number} already exists")
            auto = bool(data.get("auto_derived", False))
            if auto:
                await self._ensure_no_other_auto(session, exclude_id=None)

            row = MilestoneDefinition(
                stage_number=stage_number,
                name=name,
                short_name=data.get("short_name"),
                description=data.get("description"),
                is_active=bool(data.get("is_active", True)),
                auto_derived=auto,
            )
            session.add(row)
            await session.flush()

            inserted = 0
            if row.is_active:
                inserted = await self._insert_missing_rows(session, stage_number)
            record_activity(
                session,
                user_id=principal.id,
                action="CREATE_MILESTONE",
                entity_type="milestone",
                entity_id=row.id,
                new_values={"stage_number": stage_number, "name": name, "auto_derived": auto},
            )
            hooks.add(self._invalidate_hook, name="catalog:invalidate")

        log.info("milestone %s created (%d progress rows added)", stage_number, inserted)
        return Milestone.from_row(row)

    async def update(
        self, session: AsyncSession, principal: Principal, milestone_id: uuid.UUID, patch: dict[str, Any]
    ) -> Milestone:
        resolve(principal, action=Action.CATALOG)
        unknown = set(patch) - PATCHABLE
        if unknown:
            raise ValidationFailed(f"Unknown milestone fields: {', '.join(sorted(unknown))}")

        async with atomic(session) as hooks:
            row = await self._live_by_id(session, milestone_id)
            old = Milestone.from_row(row)

            new_stage = _stage_number(patch["stage_number"]) if "stage_number" in patch else row.stage_number
            if new_stage != row.stage_number:
                clash = await self._live_by_stage(session, new_stage)
                if clash is not None and clash.id != row.id:
                    raise Conflict(f"Stage number {new_stage} already exists")
                # progress rows are keyed by stage number, move them along
                await session.execute(
                    sa.update(ProgressRecord)
                    .where(ProgressRecord.stage_number == row.stage_number)
                    .values(stage_number=new_stage)
                    .execution_options(synchronize_session=False)
                )
                row.stage_number = new_stage

            became_auto = bool(patch.get("auto_derived")) and not row.auto_derived
            if became_auto:
                await self._ensure_no_other_auto(session, exclude_id=row.id)
            if "auto_derived" in patch:
                row.auto_derived = bool(patch["auto_derived"])

            if "name" in patch:
                name = (patch["name"] or "").strip()
                if not name:
                    raise ValidationFailed("Milestone name is required")
                row.name = name
            for key in ("short_name", "description"):
                if key in patch:
                    setattr(row, key, patch[key])

            if "is_active" in patch:
                want = bool(patch["is_active"])
                if row.is_active and not want:
                    await self._ensure_unused(session, row.stage_number, verb="deactivate")
                row.is_active = want

            await session.flush()
            if row.is_active:
                # re-activation (or a renumber onto a fresh stage) must leave no person without a row
                await self._insert_missing_rows(session, row.stage_number)

            record_activity(
                session,
                user_id=principal.id,
                action="UPDATE_MILESTONE",
                entity_type="milestone",
                entity_id=row.id,
                old_values={k: getattr(old, k) for k in patch if k in PATCHABLE},
                new_values={k: getattr(row, k) for k in patch if k in PATCHABLE},
            )
            hooks.add(self._invalidate_hook, name="catalog:invalidate")

        if became_auto:
            # existing completions were operator-set; only attendance sync re-derives them
            log.warning(
                "milestone %s is now derived from attendance; run `pace attendance-sync` to re-derive existing progress",
                row.stage_number,
            )
        return Milestone.from_row(row)

    async def deactivate(self, session: AsyncSession, principal: Principal, milestone_id: uuid.UUID) -> Milestone:
        return await self.update(session, principal, milestone_id, {"is_active": False})

    async def delete(self, session: AsyncSession, principal: Principal, milestone_id: uuid.UUID) -> None:
        resolve(principal, action=Action.CATALOG)
        async with atomic(session) as hooks:
            row = await self._live_by_id(session, milestone_id)
            await self._ensure_unused(session, row.stage_number, verb="delete")

            # only incomplete rows can remain at this point
            await session.execute(sa.delete(ProgressRecord).where(ProgressRecord.stage_number == row.stage_number))
            row.deleted_at = datetime.now(timezone.utc)
            row.is_active = False
            row.auto_derived = False

            record_activity(
                session,
                user_id=principal.id,
                action="DELETE_MILESTONE",
                entity_type="milestone",
                entity_id=row.id,
                old_values={"stage_number": row.stage_number, "name": row.name},
            )
            hooks.add(self._invalidate_hook, name="catalog:invalidate")
        log.info("milestone %s deleted", row.stage_number)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _live_by_stage(self, session: AsyncSession, stage_number: int) -> Optional[MilestoneDefinition]:
        return await session.scalar(
            sa.select(MilestoneDefinition).where(
                MilestoneDefinition.stage_number == stage_number,
                MilestoneDefinition.deleted_at.is_(None),
            )
        )

    async def _live_by_id(self, session: AsyncSession, milestone_id: uuid.UUID) -> MilestoneDefinition:
        row = await session.scalar(
            sa.select(MilestoneDefinition).where(
                MilestoneDefinition.id == milestone_id,
                MilestoneDefinition.deleted_at.is_(None),
            )
        )
        if row is None:
            raise NotFound("Milestone not found")
        return row

    async def _ensure_no_other_auto(self, session: AsyncSession, exclude_id: Optional[uuid.UUID]) -> None:
        stmt = sa.select(MilestoneDefinition.stage_number).where(
            MilestoneDefinition.auto_derived.is_(True),
            MilestoneDefinition.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(MilestoneDefinition.id != exclude_id)
        other = await session.scalar(stmt)
        if other is not None:
            raise Conflict(f"Milestone {other} is already derived from attendance")

    async def _ensure_unused(self, session: AsyncSession, stage_number: int, verb: str) -> None:
        count = await session.scalar(
            sa.select(sa.func.count())
            .select_from(ProgressRecord)
            .where(ProgressRecord.stage_number == stage_number, ProgressRecord.is_completed.is_(True))
        )
        if count:
            raise InUse(
                f"Cannot {verb} milestone {stage_number}: {count} completed progress record(s) reference it",
                count=int(count),
            )

    async def _insert_missing_rows(self, session: AsyncSession, stage_number: int) -> int:
        select_people = sa.select(
            Person.id,
            sa.literal(stage_number, sa.Integer),
            sa.false(),
            sa.func.now(),
        )
        stmt = insert_ignore(session, ProgressRecord.__table__, ["person_id", "stage_number"]).from_select(
            ["person_id", "stage_number", "is_completed", "last_updated"],
            select_people,
        )
        result = await session.execute(stmt)
        return max(result.rowcount or 0, 0)


def _stage_number(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("stage_number must be an integer") from None
    if n < 1:
        raise ValidationFailed("stage_number must be positive")
    return n
