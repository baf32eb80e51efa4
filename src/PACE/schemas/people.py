from __future__ import annotations
import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import Field

from .base import APIModel, StrictInput

Gender = Literal["Male", "Female"]
OccupationType = Literal["Worker", "Student", "Unemployed"]


class PersonIn(StrictInput):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone_number: str = Field(min_length=3, max_length=32)
    date_of_birth: Optional[str] = Field(default=None, pattern=r"^\d{2}-\d{2}$")
    gender: Optional[Gender] = None
    residential_location: Optional[str] = None
    school_residential_location: Optional[str] = None
    occupation_type: Optional[OccupationType] = None
    group_id: Optional[uuid.UUID] = None
    # legacy clients identify the group by name only
    group_name: Optional[str] = None


class PersonPatch(StrictInput):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(default=None, min_length=3, max_length=32)
    date_of_birth: Optional[str] = Field(default=None, pattern=r"^\d{2}-\d{2}$")
    gender: Optional[Gender] = None
    residential_location: Optional[str] = None
    school_residential_location: Optional[str] = None
    occupation_type: Optional[OccupationType] = None
    group_id: Optional[uuid.UUID] = None


class PersonOut(APIModel):
    id: uuid.UUID
    first_name: str
    last_name: str
    full_name: str
    phone_number: str
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    residential_location: Optional[str] = None
    school_residential_location: Optional[str] = None
    occupation_type: Optional[str] = None
    group_id: Optional[uuid.UUID] = None
    group_name: Optional[str] = None
    registered_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None


class PersonSummaryOut(APIModel):
    person: PersonOut
    group_name: Optional[str] = None
    group_year: Optional[int] = None
    completed: int
    total: int
    attendance_count: int


class BulkDeleteIn(StrictInput):
    person_ids: list[uuid.UUID] = Field(min_length=1)


class BulkDeleteOut(APIModel):
    deleted: int
