# meraki/db/base.py

"""
Imports all ORM models so Alembic and create_all can discover them.
"""
from sqlalchemy.ext.asyncio import AsyncEngine

from meraki.db.models.kv import KeyValue  # noqa: F401
from meraki.db.session import Base


async def init_db(engine: AsyncEngine):
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
