# src/PACE/api/routers/people.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from PACE.api.deps import Services, get_services
from PACE.auth.deps import get_principal
from PACE.db.session import get_db
from PACE.schemas.people import (
    BulkDeleteIn,
    BulkDeleteOut,
    PersonIn,
    PersonOut,
    PersonPatch,
    PersonSummaryOut,
)
from PACE.services.scope import Principal, ScopeRequest

router = APIRouter(prefix="/api/people", tags=["people"])


@router.get("", response_model=list[PersonSummaryOut])
async def list_people(
    group_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    rows = await svc.people.list(
        session,
        principal,
        ScopeRequest(group_id=group_id, year=year, search=search),
        limit=limit,
        offset=offset,
    )
    return [PersonSummaryOut.model_validate(r) for r in rows]


@router.post("", response_model=PersonOut, status_code=201)
async def register_person(
    payload: PersonIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    person = await svc.people.register(session, principal, payload.model_dump(exclude_none=True))
    return PersonOut.model_validate(person)


@router.post("/bulk-delete", response_model=BulkDeleteOut)
async def bulk_delete_people(
    payload: BulkDeleteIn,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    deleted = await svc.people.bulk_delete(session, principal, payload.person_ids)
    return BulkDeleteOut(deleted=deleted)


@router.get("/{person_id}", response_model=PersonOut)
async def get_person(
    person_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    return PersonOut.model_validate(await svc.people.get(session, principal, person_id))


@router.patch("/{person_id}", response_model=PersonOut)
async def update_person(
    person_id: uuid.UUID,
    payload: PersonPatch,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    person = await svc.people.update(session, principal, person_id, payload.model_dump(exclude_unset=True))
    return PersonOut.model_validate(person)


@router.delete("/{person_id}", status_code=204)
async def delete_person(
    person_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_db),
    svc: Services = Depends(get_services),
):
    await svc.people.delete(session, principal, person_id)
