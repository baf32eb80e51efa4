from __future__ import annotations
import uuid
from typing import Optional
from pydantic import Field

from .base import APIModel, StrictInput


class GroupIn(StrictInput):
    name: str = Field(min_length=1, max_length=100)
    year: int = Field(ge=1900, le=9999)
    description: Optional[str] = None
    leader_id: Optional[uuid.UUID] = None


class GroupPatch(StrictInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    year: Optional[int] = Field(default=None, ge=1900, le=9999)
    description: Optional[str] = None
    leader_id: Optional[uuid.UUID] = None


class GroupOut(APIModel):
    id: uuid.UUID
    name: str
    year: int
    description: Optional[str] = None
    leader_id: Optional[uuid.UUID] = None
    archived: bool


class GroupSummaryOut(APIModel):
    group: GroupOut
    member_count: int
