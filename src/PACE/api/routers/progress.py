# src/PACE/api/routers/progress.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.progress import CompletionRateOut, ProgressEntryOut, ProgressRecordOut, ProgressUpdate
from PACE.services.scope import Principal

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("/{person_id}", response_model=list[ProgressEntryOut])
async def get_progress(
    person_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    entries = await svc.ledger.get(session, principal, person_id)
    return [ProgressEntryOut.model_validate(e) for e in entries]


@router.get("/{person_id}/rate", response_model=CompletionRateOut)
async def get_completion_rate(
    person_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    rate = await svc.ledger.completion_rate(session, principal, person_id)
    return CompletionRateOut.model_validate(rate)


@router.patch("/{person_id}", response_model=ProgressRecordOut)
async def update_progress(
    person_id: uuid.UUID,
    payload: ProgressUpdate,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    record = await svc.ledger.upsert(session, principal, person_id, payload.stage_number, payload.completed)
    return ProgressRecordOut.model_validate(record)
