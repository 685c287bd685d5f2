# app/api/routers/locations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.schemas.common import Envelope
from app.schemas.item import ItemBrief
from app.schemas.locations import (
    CategoryCreate,
    CategoryOut,
    LocationCreate,
    LocationDetailOut,
    LocationItemOut,
    LocationOut,
)
from app.services.catalog_service import create_category, create_location, list_locations, location_detail
from app.services.uow import UnitOfWork

router = APIRouter(prefix="/api/v1", tags=["locations"])


@router.post("/locations", response_model=Envelope[LocationOut], status_code=status.HTTP_201_CREATED)
async def create(
    body: LocationCreate,
    session: AsyncSession = Depends(get_session),
):
    async with UnitOfWork(session):
        loc = await create_location(session, name=body.name, description=body.description)
        data = LocationOut.model_validate(loc)
    return Envelope(data=data, message="Location created successfully")


@router.get("/locations", response_model=Envelope[List[LocationOut]])
async def index(
    q: Optional[str] = Query(None, description="库位名 / 库位条码，不区分大小写"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_locations(session, q, limit=limit, offset=offset)
    return Envelope(data=[LocationOut.model_validate(loc) for loc in rows])


@router.get("/locations/search", response_model=Envelope[List[LocationOut]])
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_locations(session, q, limit=limit, offset=offset)
    return Envelope(data=[LocationOut.model_validate(loc) for loc in rows])


@router.get("/locations/{barcode}", response_model=Envelope[LocationDetailOut])
async def detail(
    barcode: str,
    session: AsyncSession = Depends(get_session),
):
    d = await location_detail(session, barcode)
    data = LocationDetailOut(
        id=d.location.id,
        name=d.location.name,
        barcode=d.location.barcode,
        description=d.location.description,
        created_at=d.location.created_at,
        total_items=d.total_items,
        inventory_items=[
            LocationItemOut(item=ItemBrief.model_validate(row.item), quantity=row.quantity, added_at=row.added_at)
            for row in d.items
        ],
    )
    return Envelope(data=data)


@router.post("/categories", response_model=Envelope[CategoryOut], status_code=status.HTTP_201_CREATED)
async def create_cat(
    body: CategoryCreate,
    session: AsyncSession = Depends(get_session),
):
    async with UnitOfWork(session):
        cat = await create_category(session, name=body.name, description=body.description)
        data = CategoryOut.model_validate(cat)
    return Envelope(data=data, message="Category created successfully")
