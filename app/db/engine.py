# app/db/engine.py
# 统一引擎工厂：PG 下注入 application_name；SQLite 打开外键 + 显式 BEGIN IMMEDIATE
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

__all__ = ["create_async_engine_safe", "backend_of"]


def backend_of(url_str: str) -> str:
    return make_url(url_str).get_backend_name()


def _connect_args_for(url_str: str) -> dict[str, Any]:
    """
    返回后端专属 connect_args：
    - PostgreSQL(psycopg): application_name
    - SQLite: 写锁等待秒数（busy timeout）
    """
    backend = backend_of(url_str)

    if backend.startswith("postgresql"):
        return {"application_name": "stockunits"}

    if backend.startswith("sqlite"):
        return {"timeout": 30}

    return {}


def _install_sqlite_tx_hooks(engine: AsyncEngine) -> None:
    """
    pysqlite 自带的隐式事务会让 SAVEPOINT 失效，且 deferred 事务在读锁升级写锁时
    直接报 "database is locked"。这里关掉驱动层事务，由 SQLAlchemy 的 begin 事件
    发 BEGIN IMMEDIATE：写者在文件锁上排队，嵌套事务走真正的 SAVEPOINT。
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):  # pragma: no cover - 驱动回调
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - 驱动回调
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine_safe(url_str: str, *, echo: bool = False, **extra: Any) -> AsyncEngine:
    """Async 引擎（'postgresql+psycopg' 或 'sqlite+aiosqlite'）。"""
    connect_args: dict[str, Any] = _connect_args_for(url_str)
    backend = backend_of(url_str)

    kwargs: dict[str, Any] = {"echo": echo}
    if backend.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    if connect_args:
        kwargs["connect_args"] = connect_args
    kwargs.update(extra)

    engine = create_async_engine(url_str, **kwargs)
    if backend.startswith("sqlite"):
        _install_sqlite_tx_hooks(engine)
    return engine
