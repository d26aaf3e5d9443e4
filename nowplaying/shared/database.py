"""asyncpg pool owned by the API process."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import asyncpg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolOptions:
    min_size: int = 1
    max_size: int = 10
    acquire_timeout: float = 5.0
    statement_timeout: float = 15.0
    idle_lifetime: float = 300.0
    attempts: int = 3
    backoff: float = 3.0

    @classmethod
    def from_settings(cls, settings) -> PoolOptions:
        return cls(
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            attempts=settings.db_connect_attempts,
        )


class Database:
    """Lazily opened connection pool.

    ``open`` tries ``attempts`` times with doubling backoff and verifies each
    new pool with a round trip before keeping it.
    """

    def __init__(self, dsn: str, options: PoolOptions | None = None):
        self.dsn = dsn
        self.options = options or PoolOptions()
        self._pool: asyncpg.Pool | None = None

    @property
    def ready(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database is not open")
        return self._pool

    async def _try_open(self) -> asyncpg.Pool:
        opts = self.options
        pool = await asyncpg.create_pool(
            self.dsn,
            min_size=opts.min_size,
            max_size=opts.max_size,
            timeout=opts.acquire_timeout,
            command_timeout=opts.statement_timeout,
            max_inactive_connection_lifetime=opts.idle_lifetime,
        )
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except BaseException:
            await pool.close()
            raise
        return pool

    async def open(self) -> None:
        if self._pool is not None:
            return

        attempts = self.options.attempts
        for attempt in range(1, attempts + 1):
            try:
                self._pool = await self._try_open()
            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
                if attempt == attempts:
                    logger.error(f"Could not open database after {attempts} attempts: {e!r}")
                    raise
                wait = self.options.backoff * 2 ** (attempt - 1)
                logger.warning(
                    f"Database attempt {attempt}/{attempts} failed ({e!r}), waiting {wait}s"
                )
                await asyncio.sleep(wait)
            else:
                logger.info(
                    f"Database open (pool {self.options.min_size}-{self.options.max_size})"
                )
                return

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Database closed")

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError):
            return False


_database: Database | None = None


def init_database(dsn: str, options: PoolOptions | None = None) -> Database:
    global _database
    _database = Database(dsn, options)
    return _database


def get_database() -> Database:
    if _database is None:
        raise RuntimeError("Database has not been initialized")
    return _database
