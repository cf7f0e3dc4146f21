# meraki/db/session.py

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


# Declarative Base: all models inherit from this
class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> AsyncEngine:
    # One engine per process, pre-ping avoids stale connection errors
    return create_async_engine(url, pool_pre_ping=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,  # keep objects usable after commit
        class_=AsyncSession,
    )
