# src/PACE/api/routers/admin.py
"""Reconciliation jobs over HTTP; superadmin only (enforced by the jobs themselves)."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.reconcile import JobReportOut, RolloverIn, RolloverOut
from PACE.services.scope import Principal

router = APIRouter(prefix="/api/admin/reconcile", tags=["admin"])


@router.post("/backfill", response_model=JobReportOut)
async def run_backfill(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return JobReportOut.from_report(await svc.reconciler.backfill(session, principal))


@router.post("/attendance-sync", response_model=JobReportOut)
async def run_attendance_sync(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return JobReportOut.from_report(await svc.reconciler.attendance_sync(session, principal))


@router.post("/group-rollover", response_model=RolloverOut)
async def run_group_rollover(
    payload: RolloverIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    report = await svc.reconciler.group_rollover(session, principal, payload.source_year, payload.target_year)
    return RolloverOut.from_report(report)


@router.post("/orphan-repair", response_model=JobReportOut)
async def run_orphan_repair(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return JobReportOut.from_report(await svc.reconciler.orphan_repair(session, principal))
