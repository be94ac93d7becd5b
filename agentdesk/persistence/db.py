from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agentdesk.core.config import Settings, get_settings


def _engine_options(settings: Settings) -> dict[str, Any]:
    if settings.database_url.startswith("sqlite"):
        # Concurrent appends wait on the file lock; the conversation store retries conflicts.
        return {"connect_args": {"timeout": 30}}
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_size": max(1, settings.api_db_pool_size),
        "max_overflow": max(0, settings.api_db_max_overflow),
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.api_db_statement_timeout_ms)}
        }
    return options


settings = get_settings()
engine = create_async_engine(settings.database_url, **_engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, int | None]:
    # Connections in use versus the configured pool; SQLite pools report no size.
    pool = engine.sync_engine.pool
    size = getattr(pool, "size", None)
    checked_out = getattr(pool, "checkedout", None)
    return {
        "size": size() if callable(size) else None,
        "checked_out": checked_out() if callable(checked_out) else None,
    }
