# src/PACE/api/routers/attendance.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.attendance import AttendanceIn, AttendanceOutcomeOut, AttendanceRecordOut
from PACE.services.scope import Principal

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.get("/{person_id}", response_model=list[AttendanceRecordOut])
async def list_attendance(
    person_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    rows = await svc.counter.history(session, principal, person_id)
    return [AttendanceRecordOut.model_validate(r) for r in rows]


@router.post("/{person_id}", response_model=AttendanceOutcomeOut, status_code=201)
async def record_attendance(
    person_id: uuid.UUID,
    payload: AttendanceIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    outcome = await svc.counter.record(session, principal, person_id, payload.date_attended)
    return AttendanceOutcomeOut.model_validate(outcome)


@router.delete("/{person_id}/{attendance_id}", response_model=AttendanceOutcomeOut)
async def delete_attendance(
    person_id: uuid.UUID,
    attendance_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    outcome = await svc.counter.delete(session, principal, person_id, attendance_id)
    return AttendanceOutcomeOut.model_validate(outcome)
