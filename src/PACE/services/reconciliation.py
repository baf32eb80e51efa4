# src/PACE/services/reconciliation.py
"""
Reconciliation jobs: idempotent batch repairs run with full scope.

Each job walks its entity set in keyset-paginated chunks and commits one
person (or one group) at a time, so an interrupted run never leaves a half
repaired entity behind and simply resumes on the next invocation. Per-entity
failures are logged and counted; they never abort the run.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import Group, Person, ProgressRecord
from PACE.db.session import atomic
from PACE.errors import Conflict, ValidationFailed
from PACE.services.attendance import AttendanceCounter
from PACE.services.audit import record_activity
from PACE.services.catalog import MilestoneCatalog
from PACE.services.ledger import ProgressLedger
from PACE.services.lookups import get_person
from PACE.services.scope import Action, Principal, resolve

log = get_logger("reconciliation")

# "HGE-March", "eXp - March" -> "March"
_PREFIX_RE = re.compile(r"^\s*[^-]+?\s*-\s*(?P<rest>.+?)\s*$")


@dataclass
class JobReport:
    job: str = ""
    processed: int = 0
    failed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.processed - self.failed - self.skipped

    @property
    def skipped(self) -> int:
        return 0

    def fail(self, entity_id: Any, exc: BaseException) -> None:
        self.failed += 1
        self.failures.append({"id": str(entity_id), "error": f"{type(exc).__name__}: {exc}"})

    def summary(self) -> dict[str, int]:
        return {"succeeded": self.succeeded, "skipped": self.skipped, "failed": self.failed}

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out.update(self.summary())
        return out


@dataclass
class BackfillReport(JobReport):
    job: str = "backfill"
    already_complete: int = 0
    repaired: int = 0
    inserted: int = 0


@dataclass
class AttendanceSyncReport(JobReport):
    job: str = "attendance_sync"
    already_correct: int = 0
    updated: int = 0
    # people without the derived row; run Backfill first
    missing_record: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.missing_record)


@dataclass
class RolloverReport(JobReport):
    job: str = "group_rollover"
    source_year: int = 0
    target_year: int = 0
    cloned_count: int = 0
    skipped_count: int = 0
    groups: list[dict[str, Any]] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_count


@dataclass
class OrphanRepairReport(JobReport):
    job: str = "orphan_repair"
    repaired: int = 0
    renamed: int = 0
    already_consistent: int = 0
    unresolved: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.unresolved)


class Reconciler:
    def __init__(
        self,
        ledger: ProgressLedger,
        counter: AttendanceCounter,
        catalog: MilestoneCatalog,
        batch_size: int = 200,
    ) -> None:
        self.ledger = ledger
        self.counter = counter
        self.catalog = catalog
        self.batch_size = max(1, batch_size)

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------
    async def backfill(self, session: AsyncSession, principal: Principal) -> BackfillReport:
        """Give every person exactly one progress row per active milestone."""
        resolve(principal, action=Action.RECONCILE)
        report = BackfillReport()
        # always start from a fresh view of the catalog
        self.catalog.invalidate()
        log.info("backfill: starting (batch=%d)", self.batch_size)

        async for person_id in self._person_ids(session):
            report.processed += 1
            try:
                inserted = await self.ledger.ensure_complete(session, person_id, principal)
            except Exception as exc:
                log.exception("backfill: person %s failed", person_id)
                report.fail(person_id, exc)
                continue
            if inserted:
                report.repaired += 1
                report.inserted += inserted
            else:
                report.already_complete += 1

        await self._audit(session, principal, "RECONCILE_BACKFILL", report)
        log.info(
            "backfill: done processed=%d repaired=%d inserted=%d failed=%d",
            report.processed, report.repaired, report.inserted, report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Attendance sync
    # ------------------------------------------------------------------
    async def attendance_sync(self, session: AsyncSession, principal: Principal) -> AttendanceSyncReport:
        """Re-derive the attendance milestone for everyone who already has its row."""
        resolve(principal, action=Action.RECONCILE)
        report = AttendanceSyncReport()
        self.catalog.invalidate()
        milestone = await self.catalog.auto_derived(session)
        if milestone is None:
            log.warning("attendance sync: no attendance-derived milestone is configured")
            await session.rollback()
            return report

        log.info("attendance sync: stage=%s goal=%d", milestone.stage_number, self.counter.goal)
        async for person_id in self._person_ids(session):
            report.processed += 1
            try:
                outcome = await self._sync_one(session, person_id, milestone.stage_number)
            except Exception as exc:
                log.exception("attendance sync: person %s failed", person_id)
                report.fail(person_id, exc)
                continue
            if outcome is None:
                log.warning("attendance sync: person %s has no stage %s row; run backfill first",
                            person_id, milestone.stage_number)
                report.missing_record.append(str(person_id))
            elif outcome:
                report.updated += 1
            else:
                report.already_correct += 1

        await self._audit(session, principal, "RECONCILE_ATTENDANCE_SYNC", report)
        log.info(
            "attendance sync: done updated=%d already_correct=%d missing=%d failed=%d",
            report.updated, report.already_correct, len(report.missing_record), report.failed,
        )
        return report

    async def _sync_one(self, session: AsyncSession, person_id: uuid.UUID, stage_number: int) -> Optional[bool]:
        """None when the row is missing, else whether it had to change."""
        async with atomic(session):
            person = await get_person(session, person_id, for_update=True)
            present = await session.scalar(
                sa.select(ProgressRecord.is_completed).where(
                    ProgressRecord.person_id == person_id,
                    ProgressRecord.stage_number == stage_number,
                )
            )
            if present is None:
                return None
            if bool(present) == (await self.counter.count(session, person_id) >= self.counter.goal):
                return False
            # repairs stay silent: no hooks, no goal notifications
            derived = await self.counter.recompute_in(session, None, person, actor_id=None)
            return derived.changed

    # ------------------------------------------------------------------
    # Group year rollover
    # ------------------------------------------------------------------
    async def group_rollover(
        self,
        session: AsyncSession,
        principal: Principal,
        source_year: int,
        target_year: int,
    ) -> RolloverReport:
        """Clone every live, non-archived group of ``source_year`` into ``target_year``."""
        resolve(principal, action=Action.RECONCILE)
        if source_year == target_year:
            raise ValidationFailed("source and target year must differ")
        report = RolloverReport(source_year=source_year, target_year=target_year)

        sources = (
            await session.execute(
                sa.select(Group.id, Group.name, Group.description, Group.leader_id)
                .where(
                    Group.year == source_year,
                    Group.archived.is_(False),
                    Group.deleted_at.is_(None),
                )
                .order_by(Group.name)
            )
        ).all()
        await session.rollback()
        log.info("rollover %d -> %d: %d candidate group(s)", source_year, target_year, len(sources))

        for src in sources:
            report.processed += 1
            try:
                created = await self._clone_group(session, principal, src, source_year, target_year)
            except Conflict:
                # a concurrent run created it between our check and insert
                report.skipped_count += 1
                continue
            except Exception as exc:
                log.exception("rollover: group %s (%s) failed", src.name, src.id)
                report.fail(src.id, exc)
                continue
            if created is None:
                report.skipped_count += 1
            else:
                report.cloned_count += 1
                report.groups.append(created)

        await self._audit(session, principal, "RECONCILE_GROUP_ROLLOVER", report)
        log.info(
            "rollover %d -> %d: cloned=%d skipped=%d failed=%d",
            source_year, target_year, report.cloned_count, report.skipped_count, report.failed,
        )
        return report

    async def _clone_group(
        self, session: AsyncSession, principal: Principal, src, source_year: int, target_year: int
    ) -> Optional[dict[str, Any]]:
        async with atomic(session):
            exists = await session.scalar(
                sa.select(Group.id).where(
                    Group.name == src.name,
                    Group.year == target_year,
                    Group.deleted_at.is_(None),
                )
            )
            if exists is not None:
                return None
            clone = Group(
                name=src.name,
                description=src.description,
                year=target_year,
                leader_id=src.leader_id,
                archived=False,
            )
            session.add(clone)
            await session.flush()
            record_activity(
                session,
                user_id=principal.id,
                action="CLONE_GROUP",
                entity_type="group",
                entity_id=clone.id,
                new_values={
                    "sourceYear": source_year,
                    "targetYear": target_year,
                    "groupName": src.name,
                    "leaderId": src.leader_id,
                },
            )
        return {"id": str(clone.id), "name": clone.name, "year": clone.year,
                "leader_id": str(clone.leader_id) if clone.leader_id else None}

    # ------------------------------------------------------------------
    # Orphan repair
    # ------------------------------------------------------------------
    async def orphan_repair(self, session: AsyncSession, principal: Principal) -> OrphanRepairReport:
        """
        Bring the legacy ``group_name`` column in line with ``group_id``.

        People with no ``group_id`` get one resolved from their (possibly
        prefixed) ``group_name``; people whose ``group_name`` drifted from
        their group's actual name get it rewritten.
        """
        resolve(principal, action=Action.RECONCILE)
        report = OrphanRepairReport()
        groups = (
            await session.execute(
                sa.select(Group.id, Group.name, Group.year, Group.archived).where(Group.deleted_at.is_(None))
            )
        ).all()
        await session.rollback()
        by_name: dict[str, list] = {}
        names_by_id: dict[uuid.UUID, str] = {}
        for g in groups:
            by_name.setdefault(g.name.strip().lower(), []).append(g)
            names_by_id[g.id] = g.name

        async for person_id in self._person_ids(session):
            report.processed += 1
            try:
                outcome = await self._repair_one(session, person_id, by_name, names_by_id)
            except Exception as exc:
                log.exception("orphan repair: person %s failed", person_id)
                report.fail(person_id, exc)
                continue
            if outcome == "repaired":
                report.repaired += 1
            elif outcome == "renamed":
                report.renamed += 1
            elif outcome == "unresolved":
                report.unresolved.append(str(person_id))
            else:
                report.already_consistent += 1

        await self._audit(session, principal, "RECONCILE_ORPHAN_REPAIR", report)
        log.info(
            "orphan repair: repaired=%d renamed=%d unresolved=%d failed=%d",
            report.repaired, report.renamed, len(report.unresolved), report.failed,
        )
        return report

    async def _repair_one(
        self,
        session: AsyncSession,
        person_id: uuid.UUID,
        by_name: dict[str, list],
        names_by_id: dict[uuid.UUID, str],
    ) -> str:
        async with atomic(session):
            person = await get_person(session, person_id, for_update=True)
            if person.group_id is not None:
                canonical = names_by_id.get(person.group_id)
                if canonical is None or person.group_name == canonical:
                    return "ok"
                person.group_name = canonical
                return "renamed"

            match = resolve_legacy_group(person.group_name, person.created_at.year if person.created_at else None, by_name)
            if match is None:
                return "unresolved"
            person.group_id = match.id
            person.group_name = match.name
            return "repaired"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _person_ids(self, session: AsyncSession) -> AsyncIterator[uuid.UUID]:
        """Keyset-paginate person ids; each chunk read ends its own transaction."""
        last: Optional[uuid.UUID] = None
        while True:
            stmt = sa.select(Person.id).order_by(Person.id).limit(self.batch_size)
            if last is not None:
                stmt = stmt.where(Person.id > last)
            chunk = list((await session.scalars(stmt)).all())
            await session.rollback()
            if not chunk:
                return
            for pid in chunk:
                yield pid
            last = chunk[-1]
            session.expunge_all()

    async def _audit(self, session: AsyncSession, principal: Principal, action: str, report: JobReport) -> None:
        async with atomic(session):
            record_activity(
                session,
                user_id=principal.id,
                action=action,
                entity_type="job",
                new_values={k: v for k, v in report.as_dict().items() if not isinstance(v, list)},
            )


def strip_group_prefix(name: str) -> str:
    m = _PREFIX_RE.match(name or "")
    return m.group("rest") if m else (name or "").strip()


def resolve_legacy_group(raw_name: Optional[str], preferred_year: Optional[int], by_name: dict[str, list]):
    """
    Pick the canonical group for a legacy name string.

    Tries the name as-is, then with its prefix stripped. Among groups with that
    name, prefers the person's registration year, then the latest live
    (non-archived) year, then the latest year.
    """
    if not raw_name:
        return None
    for candidate in (raw_name.strip(), strip_group_prefix(raw_name)):
        options = by_name.get(candidate.lower())
        if not options:
            continue
        if preferred_year is not None:
            for g in options:
                if g.year == preferred_year:
                    return g
        live = [g for g in options if not g.archived]
        pool = live or options
        return max(pool, key=lambda g: g.year)
    return None


__all__ = [
    "Reconciler",
    "JobReport",
    "BackfillReport",
    "AttendanceSyncReport",
    "RolloverReport",
    "OrphanRepairReport",
    "strip_group_prefix",
    "resolve_legacy_group",
]
