from __future__ import annotations
import uuid
from datetime import date, datetime
from typing import Optional
from pydantic import Field

from .base import APIModel, StrictInput


class ProgressUpdate(StrictInput):
    stage_number: int = Field(ge=1)
    completed: bool


class ProgressEntryOut(APIModel):
    person_id: uuid.UUID
    stage_number: int
    stage_name: str
    short_name: Optional[str] = None
    auto_derived: bool
    is_completed: bool
    date_completed: Optional[date] = None
    updated_by: Optional[uuid.UUID] = None
    last_updated: Optional[datetime] = None


class ProgressRecordOut(APIModel):
    person_id: uuid.UUID
    stage_number: int
    is_completed: bool
    date_completed: Optional[date] = None
    updated_by: Optional[uuid.UUID] = None
    last_updated: Optional[datetime] = None


class CompletionRateOut(APIModel):
    completed: int
    total: int
    ratio: float
