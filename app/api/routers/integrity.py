# app/api/routers/integrity.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.schemas.common import Envelope
from app.services.integrity_service import check, reconcile
from app.services.legacy_backfill import LegacyBackfill
from app.services.uow import UnitOfWork

router = APIRouter(prefix="/api/v1", tags=["integrity"])


@router.get("/integrity", response_model=Envelope[Dict[str, Any]])
async def integrity_check(session: AsyncSession = Depends(get_session)):
    report = await check(session)
    return Envelope(data=report.to_dict())


@router.post("/integrity/reconcile", response_model=Envelope[Dict[str, Any]])
async def integrity_reconcile(session: AsyncSession = Depends(get_session)):
    async with UnitOfWork(session):
        fixed = await reconcile(session)
    msg = "Nothing to reconcile" if fixed.ok else "Derived caches repaired"
    return Envelope(data=fixed.to_dict(), message=msg)


@router.post("/legacy/backfill", response_model=Envelope[Dict[str, Any]])
async def legacy_backfill(session: AsyncSession = Depends(get_session)):
    async with UnitOfWork(session):
        result = await LegacyBackfill().run(session)
    return Envelope(
        data=result.to_dict(),
        message=f"Backfill completed: {result.aggregates_converted} inventory items migrated",
    )
