# app/services/identifiers.py
from __future__ import annotations

import secrets
import string
from typing import Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.location import Location

ITEM_PREFIX = "ITM"
LOCATION_PREFIX = "LOC"
RANDOM_LEN = 8

_ALPHABET = string.ascii_uppercase + string.digits


def random_code(prefix: str, length: int = RANDOM_LEN) -> str:
    return prefix + "".join(secrets.choice(_ALPHABET) for _ in range(length))


async def _unique_code(session: AsyncSession, model: Type[Union[Item, Location]], prefix: str) -> str:
    # 撞上已有条码就重抽；唯一约束仍是最终兜底
    while True:
        code = random_code(prefix)
        row = await session.execute(select(model.id).where(model.barcode == code).limit(1))
        if row.scalar_one_or_none() is None:
            return code


async def generate_item_barcode(session: AsyncSession) -> str:
    return await _unique_code(session, Item, ITEM_PREFIX)


async def generate_location_barcode(session: AsyncSession) -> str:
    return await _unique_code(session, Location, LOCATION_PREFIX)
