# app/router_mount.py
from __future__ import annotations

from fastapi import FastAPI


def mount_routers(app: FastAPI) -> None:
    # ---------------------------------------------------------------------------
    # routers imports
    # ---------------------------------------------------------------------------
    from app.api.routers.integrity import router as integrity_router
    from app.api.routers.inventory import router as inventory_router
    from app.api.routers.items import router as items_router
    from app.api.routers.locations import router as locations_router
    from app.api.routers.metrics import router as metrics_router
    from app.api.routers.status import router as status_router

    # ===========================
    # mount routers
    # ===========================
    # 核心操作：放入 / 取出 / 移库 / 解析 / 查询
    app.include_router(inventory_router)

    # 主数据
    app.include_router(items_router)
    app.include_router(locations_router)

    # 体检 / 回填
    app.include_router(integrity_router)

    # 观测
    app.include_router(status_router)
    app.include_router(metrics_router)
