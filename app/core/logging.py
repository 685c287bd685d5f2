# app/core/logging.py
"""
进程级日志初始化（app.main 启动时调用一次）。

- 根 logger：单一 stdout handler，重复调用不会叠加
- stockunits.*：跟随 level；铸码 / 放入 / 取出 / 移库 / 回填走 INFO，重试的冲突 WARNING，
  不变量被破坏 ERROR
- sqlalchemy.engine：仅 DEBUG 时开 INFO（SQL_ECHO 另由 engine 的 echo 控制）
- uvicorn.access：压到 WARNING，请求量看 /metrics
"""

import logging
import sys

LOGGER_NAMESPACE = "stockunits"
HANDLER_NAME = "stockunits-stdout"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(level: str = "INFO") -> None:
    lvl = (level or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(lvl)
    for h in list(root.handlers):
        if h.get_name() == HANDLER_NAME:
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    logging.getLogger(LOGGER_NAMESPACE).setLevel(lvl)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if lvl == "DEBUG" else logging.WARNING)
