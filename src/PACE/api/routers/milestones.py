# src/PACE/api/routers/milestones.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.milestones import MilestoneIn, MilestoneOut, MilestonePatch
from PACE.services.scope import Principal

router = APIRouter(prefix="/api/milestones", tags=["milestones"])


@router.get("", response_model=list[MilestoneOut])
async def list_milestones(
    include_inactive: bool = Query(False),
    _principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    if include_inactive:
        rows = await svc.catalog.list_all(session)
    else:
        rows = await svc.catalog.list_active(session)
    return [MilestoneOut.model_validate(m) for m in rows]


@router.post("", response_model=MilestoneOut, status_code=201)
async def create_milestone(
    payload: MilestoneIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    m = await svc.catalog.create(session, principal, payload.model_dump())
    return MilestoneOut.model_validate(m)


@router.patch("/{milestone_id}", response_model=MilestoneOut)
async def update_milestone(
    milestone_id: uuid.UUID,
    payload: MilestonePatch,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    m = await svc.catalog.update(session, principal, milestone_id, payload.model_dump(exclude_unset=True))
    return MilestoneOut.model_validate(m)


@router.post("/{milestone_id}/deactivate", response_model=MilestoneOut)
async def deactivate_milestone(
    milestone_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    m = await svc.catalog.deactivate(session, principal, milestone_id)
    return MilestoneOut.model_validate(m)


@router.delete("/{milestone_id}", status_code=204)
async def delete_milestone(
    milestone_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    await svc.catalog.delete(session, principal, milestone_id)
