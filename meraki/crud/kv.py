# meraki/crud/kv.py

from __future__ import annotations
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from meraki.db.models.kv import KeyValue


async def get_value(db: AsyncSession, key: str) -> Optional[Any]:
    row = await db.get(KeyValue, key)
    return row.value if row is not None else None


async def set_value(db: AsyncSession, key: str, value: Any) -> None:
    row = await db.get(KeyValue, key)
    if row is None:
        db.add(KeyValue(key=key, value=value))
    else:
        row.value = value
    await db.commit()


async def delete_value(db: AsyncSession, key: str) -> bool:
    res = await db.execute(sa.delete(KeyValue).where(KeyValue.key == key))
    await db.commit()
    return (res.rowcount or 0) > 0
