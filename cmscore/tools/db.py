from contextlib import asynccontextmanager

import asyncpg
from loguru import logger

from cmscore.config import settings

_pool: asyncpg.Pool | None = None


async def init_pool(postgres_url: str = settings.POSTGRES_URL):
    global _pool
    if _pool is None:
        logger.info("Connecting to Postgres …")
        _pool = await asyncpg.create_pool(
            str(postgres_url),
            min_size=settings.POSTGRES_POOL_MIN_SIZE,
            max_size=settings.POSTGRES_POOL_MAX_SIZE,
        )
        logger.success("Postgres connection pool ready")


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Postgres connection pool closed")


@asynccontextmanager
async def get_conn():
    if _pool is None:
        await init_pool()
    async with _pool.acquire() as conn:
        yield conn


async def fetchrow(sql: str, *args):
    async with get_conn() as conn:
        return await conn.fetchrow(sql, *args)


async def fetch(sql: str, *args):
    async with get_conn() as conn:
        return await conn.fetch(sql, *args)


async def fetchval(sql: str, *args):
    async with get_conn() as conn:
        return await conn.fetchval(sql, *args)


async def execute(sql: str, *args):
    async with get_conn() as conn:
        return await conn.execute(sql, *args)
