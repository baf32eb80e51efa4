# src/PACE/db/models/milestones.py
from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from PACE.db.base import Base, UUIDMixin, SoftDeleteMixin


class MilestoneDefinition(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "milestones"
    __table_args__ = (
        sa.Index(
            "uq_milestones_stage_number_live",
            "stage_number",
            unique=True,
            postgresql_where=sa.text("deleted_at IS NULL"),
            sqlite_where=sa.text("deleted_at IS NULL"),
        ),
        # at most one live definition may be derived from attendance
        sa.Index(
            "uq_milestones_single_auto_derived",
            "auto_derived",
            unique=True,
            postgresql_where=sa.text("auto_derived AND deleted_at IS NULL"),
            sqlite_where=sa.text("auto_derived = 1 AND deleted_at IS NULL"),
        ),
        {"comment": "Ordered curriculum steps. The auto_derived step is computed from attendance."},
    )

    stage_number: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    short_name: Mapped[Optional[str]] = mapped_column(sa.String(50))
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True, server_default=sa.true())
    auto_derived: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
