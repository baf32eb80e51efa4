from __future__ import annotations
import uuid
from typing import Optional
from pydantic import Field

from .base import APIModel, StrictInput


class MilestoneIn(StrictInput):
    stage_number: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=200)
    short_name: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    is_active: bool = True
    auto_derived: bool = False


class MilestonePatch(StrictInput):
    stage_number: Optional[int] = Field(default=None, ge=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    short_name: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    auto_derived: Optional[bool] = None


class MilestoneOut(APIModel):
    id: uuid.UUID
    stage_number: int
    name: str
    short_name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    auto_derived: bool
