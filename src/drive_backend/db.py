from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.config import settings
from drive_backend.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async


def _create_async_engine(database_url: str) -> AsyncEngine:
    # Runtime always goes through an async driver.
    ensure_sqlite_parent_dir(database_url)
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # Tests swap settings.database_url and call reset_engine_cache().
    return _create_async_engine(settings.database_url)


def reset_engine_cache() -> None:
    dispose_engine_cache()


def dispose_engine_cache() -> None:
    """Close pooled connections of the cached engine and forget it."""

    if get_engine.cache_info().currsize:
        engine = get_engine()
        # Drop the pool without closing aiosqlite connections from sync code;
        # callers with a running loop await engine.dispose() first.
        engine.sync_engine.dispose(close=False)
    get_engine.cache_clear()


def _session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session
