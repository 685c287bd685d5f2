# tests/core/test_logging.py
from __future__ import annotations

import logging

import pytest

from app.core.logging import HANDLER_NAME, LOGGER_NAMESPACE, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    setup_logging(logging.getLevelName(level))


def _ours() -> list:
    return [h for h in logging.getLogger().handlers if h.get_name() == HANDLER_NAME]


def test_repeated_setup_keeps_one_handler(restore_logging):
    setup_logging("INFO")
    setup_logging("INFO")
    assert len(_ours()) == 1


def test_levels_follow_setting(restore_logging):
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger(LOGGER_NAMESPACE).level == logging.DEBUG
    assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    setup_logging("WARNING")
    assert logging.getLogger(LOGGER_NAMESPACE).level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_kernel_loggers_propagate_to_stockunits(restore_logging, caplog):
    setup_logging("INFO")
    with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
        logging.getLogger(f"{LOGGER_NAMESPACE}.pool").info("pool mint item=%s", "ITM00000001")
    assert [r.name for r in caplog.records] == ["stockunits.pool"]
