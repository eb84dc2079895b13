# apps/workers/chat_session/infrastructure/db/pool_factory.py
import asyncpg

from chat_session.domain.errors import StoreError


async def create_pg_pool(dsn: str | None, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    if dsn is None:
        raise StoreError("DB_URL is missing in environment variables")
    return await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        statement_cache_size=0,
    )
