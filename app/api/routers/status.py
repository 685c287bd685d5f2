# app/api/routers/status.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.schemas.common import Envelope
from app.services.inventory_query import database_counts
from app.utils.time import utc_now

log = logging.getLogger("stockunits.status")

router = APIRouter(prefix="/api/v1", tags=["status"])

SERVICE_NAME = "stockunits"
SERVICE_VERSION = "1.0.0"


@router.get("/status", response_model=Envelope[Dict[str, Any]])
async def status(session: AsyncSession = Depends(get_session)):
    try:
        database: Dict[str, Any] = {"connected": True, **(await database_counts(session))}
    except SQLAlchemyError as e:
        log.warning("status: database unavailable: %s", e)
        database = {"connected": False, "error": str(e)}

    return Envelope(
        data={
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "timestamp": utc_now().isoformat(),
            "database": database,
        }
    )
