"""
asyncpg pool for the Supabase Postgres database.

One pool per process, created lazily on first use and closed by the app
lifespan. Supabase's transaction pooler (pgbouncer) does not support
prepared statements, so the statement cache is disabled.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg
import structlog

from .config import settings

logger = structlog.get_logger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    global _pool

    if _pool is None:
        logger.info(
            "Opening database pool",
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
        )
        _pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.DB_COMMAND_TIMEOUT,
            statement_cache_size=0,
        )
    return _pool


async def close_db_pool() -> None:
    global _pool

    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("Database pool closed")


@asynccontextmanager
async def get_db_connection() -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection for the duration of the block.

    Example:
        async with get_db_connection() as conn:
            row = await conn.fetchrow("SELECT * FROM schedule_sessions WHERE id = $1", id)
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        yield conn


async def ping() -> bool:
    """Round trip to the database; used by the readiness check."""
    async with get_db_connection() as conn:
        return await conn.fetchval("SELECT 1") == 1
