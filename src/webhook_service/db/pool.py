"""Asyncpg connection pool helpers."""
from __future__ import annotations

from typing import Any

import asyncpg  # type: ignore[import-untyped]
import structlog

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

pool: asyncpg.Pool | None = None


async def init_pool(_app: Any = None) -> None:
    """Create the global pool. Register with ``app.on_startup``."""
    global pool
    if pool is None:
        pool = await asyncpg.create_pool(
            dsn=str(settings.database_url),
            max_size=settings.db_pool_size,
        )
        logger.info("db pool created", max_size=settings.db_pool_size)


async def close_pool(_app: Any = None) -> None:
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def get_pool() -> asyncpg.Pool:
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool
