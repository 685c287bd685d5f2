# app/api/deps.py
from __future__ import annotations

from fastapi import Depends

from app.core.config import AppSettings, get_settings
from app.db.deps import get_session  # noqa: F401  路由统一从这里取；测试 override 同一个对象
from app.services.inventory_service import InventoryService


def get_app_settings() -> AppSettings:
    return get_settings()


def get_inventory_service(settings: AppSettings = Depends(get_app_settings)) -> InventoryService:
    return InventoryService(settings)
