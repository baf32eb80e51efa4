# src/PACE/api/routers/groups.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.groups import GroupIn, GroupOut, GroupPatch, GroupSummaryOut
from PACE.services.scope import Principal, ScopeRequest

router = APIRouter(prefix="/api/groups", tags=["groups"])


@router.get("", response_model=list[GroupSummaryOut])
async def list_groups(
    year: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    include_archived: bool = Query(True),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    rows = await svc.groups.list(
        session, principal, ScopeRequest(year=year, search=search), include_archived=include_archived
    )
    return [GroupSummaryOut.model_validate(r) for r in rows]


@router.post("", response_model=GroupOut, status_code=201)
async def create_group(
    payload: GroupIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return GroupOut.model_validate(await svc.groups.create(session, principal, payload.model_dump()))


@router.patch("/{group_id}", response_model=GroupOut)
async def update_group(
    group_id: uuid.UUID,
    payload: GroupPatch,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    group = await svc.groups.update(session, principal, group_id, payload.model_dump(exclude_unset=True))
    return GroupOut.model_validate(group)


@router.post("/{group_id}/archive", response_model=GroupOut)
async def archive_group(
    group_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return GroupOut.model_validate(await svc.groups.set_archived(session, principal, group_id, True))


@router.post("/{group_id}/unarchive", response_model=GroupOut)
async def unarchive_group(
    group_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return GroupOut.model_validate(await svc.groups.set_archived(session, principal, group_id, False))


@router.delete("/{group_id}", status_code=204)
async def delete_group(
    group_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    await svc.groups.delete(session, principal, group_id)
