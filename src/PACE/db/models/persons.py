# src/PACE/db/models/persons.py
from __future__ import annotations

import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from PACE.db.base import Base, UUIDMixin, GUID
from PACE.db.models.groups import Group


class Person(UUIDMixin, Base):
    __tablename__ = "persons"
    __table_args__ = (
        sa.UniqueConstraint("phone_number", name="uq_persons_phone_number"),
        {"comment": "Tracked individuals (hard-deleted). group_id is canonical; group_name is a legacy copy."},
    )

    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    phone_number: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    # stored as DD-MM, the year is never collected
    date_of_birth: Mapped[Optional[str]] = mapped_column(sa.String(10))
    gender: Mapped[Optional[str]] = mapped_column(sa.String(16))
    residential_location: Mapped[Optional[str]] = mapped_column(sa.String(200))
    school_residential_location: Mapped[Optional[str]] = mapped_column(sa.String(200))
    occupation_type: Mapped[Optional[str]] = mapped_column(sa.String(32))

    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("groups.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    group_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    registered_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    group: Mapped[Optional[Group]] = relationship(Group, lazy="joined")
