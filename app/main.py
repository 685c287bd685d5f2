# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.logging import setup_logging
from app.db.base import init_models
from app.db.session import close_engines
from app.http_problem_handlers import register_exception_handlers
from app.obs.metrics import PrometheusMiddleware
from app.router_mount import mount_routers

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("stockunits")

# 显式加载全部模型并 configure_mappers，关系解析问题在启动时暴露
init_models()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("stockunits starting (env=%s)", settings.ENV)
    yield
    await close_engines()
    logger.info("stockunits stopped")


app = FastAPI(
    title="stockunits",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)
mount_routers(app)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
