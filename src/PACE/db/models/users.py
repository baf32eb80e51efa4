# src/PACE/db/models/users.py
from __future__ import annotations

import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from PACE.db.base import Base, UUIDMixin, GUID


class User(UUIDMixin, Base):
    """Operator account; only referenced here as group leader and audit actor."""
    __tablename__ = "users"
    __table_args__ = {
        "comment": "Operator accounts. Authentication lives elsewhere; role and group drive scope.",
    }

    username: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    phone_number: Mapped[Optional[str]] = mapped_column(sa.String(32))
    role: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=sa.text("'leader'"))
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("groups.id", ondelete="SET NULL", use_alter=True), nullable=True, index=True
    )
    # legacy denormalized copy, repaired by the orphan-repair job
    group_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
