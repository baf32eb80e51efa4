# tests/helpers.py
from __future__ import annotations

import itertools
from datetime import date, timedelta
from typing import Optional

import sqlalchemy as sa

from PACE.db.models import AttendanceRecord, Person, ProgressRecord

_phones = itertools.count(200000000)


class FakeGateway:
    """Records every dispatch; can be told to fail or raise."""

    def __init__(self, ok: bool = True, exc: Optional[Exception] = None) -> None:
        self.ok = ok
        self.exc = exc
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, message: str) -> bool:
        self.sent.append((recipient, message))
        if self.exc is not None:
            raise self.exc
        return self.ok

    def matching(self, needle: str) -> list[tuple[str, str]]:
        return [s for s in self.sent if needle in s[1]]


async def seed_catalog(session, catalog, principal, auto_stage: int = 18):
    for n in (1, 2, 3):
        await catalog.create(session, principal, {"stage_number": n, "name": f"Stage {n}"})
    await catalog.create(
        session, principal, {"stage_number": auto_stage, "name": "Attended Sunday Services", "auto_derived": True}
    )


def next_phone() -> str:
    return f"0{next(_phones)}"


async def register(people, session, principal, group, **extra) -> Person:
    data = {
        "first_name": extra.pop("first_name", "Ama"),
        "last_name": extra.pop("last_name", "Mensah"),
        "phone_number": extra.pop("phone_number", None) or next_phone(),
        "group_id": group.id,
    }
    data.update(extra)
    return await people.register(session, principal, data)


async def add_bare_person(session, group=None, **extra) -> Person:
    """Insert a person directly, bypassing registration (no progress rows)."""
    p = Person(
        first_name=extra.pop("first_name", "Kofi"),
        last_name=extra.pop("last_name", "Owusu"),
        full_name=extra.pop("full_name", "Kofi Owusu"),
        phone_number=extra.pop("phone_number", None) or next_phone(),
        group_id=group.id if group is not None else None,
        group_name=extra.pop("group_name", group.name if group is not None else None),
        **extra,
    )
    session.add(p)
    await session.commit()
    return p


async def add_raw_attendance(session, person_id, n: int, start: date = date(2024, 1, 7)) -> None:
    """Insert ``n`` weekly attendance rows without touching the derived milestone."""
    session.add_all(
        AttendanceRecord(person_id=person_id, date_attended=start + timedelta(weeks=i)) for i in range(n)
    )
    await session.commit()


async def progress_row(session, person_id, stage_number) -> Optional[ProgressRecord]:
    return (
        await session.execute(
            sa.select(ProgressRecord)
            .where(ProgressRecord.person_id == person_id, ProgressRecord.stage_number == stage_number)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def progress_stages(session, person_id) -> list[int]:
    rows = await session.scalars(
        sa.select(ProgressRecord.stage_number)
        .where(ProgressRecord.person_id == person_id)
        .order_by(ProgressRecord.stage_number)
    )
    return list(rows.all())


def weekly(n: int, start: date = date(2024, 1, 7)) -> list[date]:
    return [start + timedelta(weeks=i) for i in range(n)]
