# src/PACE/api/routers/health.py
import sqlalchemy as sa
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from PACE import __version__
from PACE.db.session import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: AsyncSession = Depends(get_db)):
    await session.execute(sa.text("SELECT 1"))
    return {"status": "ok", "version": __version__}
