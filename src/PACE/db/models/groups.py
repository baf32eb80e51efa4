# src/PACE/db/models/groups.py
from __future__ import annotations

import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from PACE.db.base import Base, UUIDMixin, SoftDeleteMixin, GUID


class Group(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "groups"
    __table_args__ = (
        # (name, year) is unique among live groups; the rollover job relies on it
        sa.Index(
            "uq_groups_name_year_live",
            "name",
            "year",
            unique=True,
            postgresql_where=sa.text("deleted_at IS NULL"),
            sqlite_where=sa.text("deleted_at IS NULL"),
        ),
        {"comment": "Yearly cohorts that own tracked people. Archived groups are read-only."},
    )

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    leader_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    archived: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
