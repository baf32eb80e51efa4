from __future__ import annotations
import uuid
from datetime import date, datetime
from typing import Optional

from .base import APIModel, StrictInput


class AttendanceIn(StrictInput):
    date_attended: date


class AttendanceRecordOut(APIModel):
    id: uuid.UUID
    person_id: uuid.UUID
    date_attended: date
    recorded_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None


class DerivedOut(APIModel):
    count: int
    goal: int
    stage_number: Optional[int] = None
    completed: bool
    changed: bool


class AttendanceOutcomeOut(APIModel):
    record: Optional[AttendanceRecordOut] = None
    total_count: int
    derived: DerivedOut
