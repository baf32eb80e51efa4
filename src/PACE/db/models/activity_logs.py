# src/PACE/db/models/activity_logs.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from PACE.db.base import Base, GUID, JSONB, utcnow


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    __table_args__ = {"comment": "Append-only audit trail of operator and job actions."}

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True, index=True)
    action: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(sa.String(64))
    entity_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    old_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB())
    new_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB())
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now(), nullable=False
    )
