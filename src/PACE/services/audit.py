# src/PACE/services/audit.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from PACE.app_logger import get_logger
from PACE.db.models import ActivityLog

log = get_logger("audit")


def _jsonable(values: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if values is None:
        return None
    out: dict[str, Any] = {}
    for k, v in values.items():
        if isinstance(v, uuid.UUID):
            out[k] = str(v)
        elif isinstance(v, (date, datetime)):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


def record_activity(
    session: AsyncSession,
    *,
    user_id: Optional[uuid.UUID],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> ActivityLog:
    """Stage an audit row in the caller's transaction; it commits or rolls back with the change."""
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=_jsonable(old_values),
        new_values=_jsonable(new_values),
    )
    session.add(entry)
    log.debug("audit %s %s:%s by %s", action, entity_type, entity_id, user_id)
    return entry
