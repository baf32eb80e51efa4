# src/PACE/db/models/progress_records.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from PACE.db.base import Base, GUID


class ProgressRecord(Base):
    __tablename__ = "progress_records"
    __table_args__ = (
        sa.Index("ix_progress_records_stage_completed", "stage_number", "is_completed"),
        {"comment": "Exactly one row per (person, active milestone)."},
    )

    person_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("persons.id", ondelete="CASCADE"), primary_key=True
    )
    stage_number: Mapped[int] = mapped_column(sa.Integer, primary_key=True)
    is_completed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
    date_completed: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
