#!/usr/bin/env python3
# src/PACE/cli.py
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import click
import sqlalchemy as sa
from rich.console import Console
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import build_services
from PACE.app_logger import configure_logging
from PACE.core.config import settings
from PACE.db.models import MilestoneDefinition
from PACE.db.session import build_engine, build_sessionmaker
from PACE.errors import PaceError
from PACE.services.reconciliation import JobReport
from PACE.services.scope import Principal

console = Console()

# stage number, name, short name, description
DEFAULT_CURRICULUM: list[tuple[int, str, str, str]] = [
    (1, "Registered as Church Member", "Member", "Has registered as a church member."),
    (2, "Visited (First Quarter)", "Visit Q1", "Visited within the first quarter of the sheep seeking year."),
    (3, "Visited (Second Quarter)", "Visit Q2", "Visited within the second quarter of the sheep seeking year."),
    (4, "Visited (Third Quarter)", "Visit Q3", "Visited within the third quarter of the sheep seeking year."),
    (5, "Completed New Believers School", "NBS", "Has completed new believers school."),
    (6, "Baptized in Water", "Water", "Has been baptized in water."),
    (7, "Baptized in the Holy Ghost", "Holy Ghost", "Has been baptized in the Holy Ghost."),
    (8, "Completed Soul-Winning School", "SWS", "Has completed Soul-Winning School."),
    (9, "Invited Friend to Church", "Invite", "Has invited at least one friend to church."),
    (10, "Joined Basonta or Creative Arts", "Ministry", "Planted in a Basonta or a Creative Arts ministry."),
    (11, "Introduced to Lead Pastor", "Lead Pastor", "Has been introduced to the Lead Pastor."),
    (12, "Introduced to First Love Mother", "FL Mother", "Has been introduced to a First Love Mother."),
    (13, "Attended All-Night Prayer", "All-Night", "Attended an all-night prayer meeting at least once."),
    (14, "Attended Meeting God", "Meeting God", "Attended Meeting God service at least once."),
    (15, "Attended Federal Event", "Federal", "Attended a Federal Outreach, Conference, or Camp Meeting."),
    (16, "Completed Seeing & Hearing Education", "S&H", "Taken through Seeing and Hearing education."),
    (17, "Interceded For (3+ Hours)", "Intercession", "Interceded for by a sheep-seeker for at least three hours."),
    (18, "Attended Sunday Services", "Attendance", "Reached the Sunday service attendance goal."),
]

# ------------------------------
# Helpers
# ------------------------------
def _run(job: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
    async def _main():
        engine = build_engine(settings.DATABASE_URL)
        maker = build_sessionmaker(engine)
        try:
            async with maker() as session:
                return await job(session)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_main())
    except PaceError as e:
        console.print(f"[red]{e.code}[/]: {e.message}")
        raise click.Abort()


def show_report(report: JobReport) -> None:
    t = Table(title=report.job, show_lines=False)
    t.add_column("metric")
    t.add_column("value", justify="right")
    for k, v in report.as_dict().items():
        if k in ("job", "failures", "groups"):
            continue
        t.add_row(k, str(len(v)) if isinstance(v, list) else str(v))
    console.print(t)
    for f in report.failures:
        console.print(f"[yellow]failed[/] {f['id']}: {f['error']}")


# ------------------------------
# Root CLI
# ------------------------------
@click.group(help="PACE administration")
@click.option("--log-level", default=None, help="Level of the PACE loggers (default: $PACE_LOG_LEVEL or INFO)")
def cli(log_level: str | None) -> None:
    """Top-level command group."""
    configure_logging(log_level, console=True)


@cli.command("backfill", help="Give every person one progress row per active milestone")
def backfill_cmd() -> None:
    svc = build_services()
    show_report(_run(lambda s: svc.reconciler.backfill(s, Principal.system())))


@cli.command("attendance-sync", help="Re-derive the attendance milestone from attendance counts")
def attendance_sync_cmd() -> None:
    svc = build_services()
    report = _run(lambda s: svc.reconciler.attendance_sync(s, Principal.system()))
    show_report(report)
    if report.missing_record:
        console.print(f"[yellow]{len(report.missing_record)} person(s) lack the derived row; run backfill[/]")


@cli.command("rollover", help="Clone a year's groups into another year")
@click.option("--source", "source_year", type=int, required=True, help="Year to copy groups from")
@click.option("--target", "target_year", type=int, required=True, help="Year to create groups in")
def rollover_cmd(source_year: int, target_year: int) -> None:
    svc = build_services()
    report = _run(lambda s: svc.reconciler.group_rollover(s, Principal.system(), source_year, target_year))
    show_report(report)
    for g in report.groups:
        console.print(f"[green]cloned[/] {g['name']} ({g['year']})")


@cli.command("orphan-repair", help="Resolve group ids from legacy group names")
def orphan_repair_cmd() -> None:
    svc = build_services()
    show_report(_run(lambda s: svc.reconciler.orphan_repair(s, Principal.system())))


@cli.command("seed-milestones", help="Load the default curriculum (idempotent)")
@click.option(
    "--attendance-stage",
    type=int,
    default=18,
    show_default=True,
    help="Stage number derived from attendance; 0 for none",
)
def seed_milestones_cmd(attendance_stage: int) -> None:
    svc = build_services()

    async def _seed(session: AsyncSession) -> list[int]:
        existing = set((await session.scalars(
            sa.select(MilestoneDefinition.stage_number).where(MilestoneDefinition.deleted_at.is_(None))
        )).all())
        await session.rollback()
        created = []
        for number, name, short, description in DEFAULT_CURRICULUM:
            if number in existing:
                continue
            await svc.catalog.create(
                session,
                Principal.system(),
                {
                    "stage_number": number,
                    "name": name,
                    "short_name": short,
                    "description": description,
                    "auto_derived": number == attendance_stage,
                },
            )
            created.append(number)
        return created

    created = _run(_seed)
    if created:
        console.print(f"[green]created[/] stages {', '.join(map(str, created))}")
    else:
        console.print("catalog already seeded")


def _main():
    cli()


if __name__ == "__main__":
    _main()
