# app/utils/time.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

UTC = timezone.utc
ONE_DAY = timedelta(days=1)


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # SQLite 读回来是 naive，约定库里一律存 UTC
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def storage_days(added_at: datetime, now: datetime | None = None) -> float:
    """入库至今的天数（小数，不取整）。"""
    ref = as_utc(now) if now is not None else utc_now()
    return (ref - as_utc(added_at)) / ONE_DAY
