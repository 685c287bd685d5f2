# app/api/routers/items.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_inventory_service, get_session
from app.schemas.common import Envelope
from app.schemas.item import (
    ItemCreate,
    ItemDetailOut,
    ItemLocationOut,
    ItemOut,
    LocationBrief,
    PoolEnsureIn,
    PoolEnsureOut,
    PoolStatsOut,
)
from app.services.barcode_resolver import BarcodeResolver
from app.services.catalog_service import create_item, item_detail, list_items
from app.services.inventory_errors import NotFound
from app.services.inventory_service import InventoryService
from app.services.uow import UnitOfWork

router = APIRouter(prefix="/api/v1/items", tags=["items"])


# ---------------------------------------------------------
# 1) 创建商品（条码 ITM + 8 位自动生成）
# ---------------------------------------------------------
@router.post("", response_model=Envelope[ItemOut], status_code=status.HTTP_201_CREATED)
async def create(
    body: ItemCreate,
    session: AsyncSession = Depends(get_session),
):
    async with UnitOfWork(session):
        item = await create_item(
            session,
            name=body.name,
            description=body.description,
            category_id=body.category_id,
        )
        data = ItemOut.model_validate(item)
    return Envelope(data=data, message="Item created successfully")


# ---------------------------------------------------------
# 2) 列表 / 搜索：按名称排序分页
# ---------------------------------------------------------
@router.get("", response_model=Envelope[List[ItemOut]])
async def index(
    q: Optional[str] = Query(None, description="商品名 / 商品条码，不区分大小写"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_items(session, q, limit=limit, offset=offset)
    return Envelope(data=[ItemOut.model_validate(i) for i in rows])


@router.get("/search", response_model=Envelope[List[ItemOut]])
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_items(session, q, limit=limit, offset=offset)
    return Envelope(data=[ItemOut.model_validate(i) for i in rows])


# ---------------------------------------------------------
# 3) 详情：扫商品条码 / 单件条码都能查（只读解析，不登记）
# ---------------------------------------------------------
@router.get("/{barcode}", response_model=Envelope[ItemDetailOut])
async def detail(
    barcode: str,
    session: AsyncSession = Depends(get_session),
):
    res = await BarcodeResolver().lookup(session, barcode)
    if res is None:
        raise NotFound("Item not found", context={"item_barcode": barcode})

    d = await item_detail(session, res.item)
    data = ItemDetailOut(
        id=d.item.id,
        name=d.item.name,
        barcode=d.item.barcode,
        description=d.item.description,
        total_quantity=d.total_quantity,
        locations=[
            ItemLocationOut(
                location=LocationBrief.model_validate(row.location),
                quantity=row.quantity,
                added_at=row.added_at,
            )
            for row in d.locations
        ],
    )
    return Envelope(data=data)


# ---------------------------------------------------------
# 4) 条码池
# ---------------------------------------------------------
@router.get("/{barcode}/pool", response_model=Envelope[PoolStatsOut])
async def pool_stats(
    barcode: str,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    stats = await svc.pool_stats(session, barcode)
    return Envelope(data=PoolStatsOut(**stats.to_dict()))


@router.post("/{barcode}/pool/ensure", response_model=Envelope[PoolEnsureOut])
async def pool_ensure(
    barcode: str,
    body: PoolEnsureIn,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    async with UnitOfWork(session):
        created = await svc.ensure_pool_size(session, barcode, body.target)
        stats = await svc.pool_stats(session, barcode)
    return Envelope(data=PoolEnsureOut(created=created, **stats.to_dict()))
