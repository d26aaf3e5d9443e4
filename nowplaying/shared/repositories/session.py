"""Repository for sessions table."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from nowplaying.shared.models import Session

_COLUMNS = "token_hash, user_id::text AS user_id, expires_at, created_at"


class SessionRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create_session(self, token_hash: str, user_id: str, expires_at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO sessions (token_hash, user_id, expires_at) VALUES ($1, $2::uuid, $3)",
                token_hash,
                user_id,
                expires_at,
            )

    async def get_session(self, token_hash: str) -> Session | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM sessions WHERE token_hash = $1",
                token_hash,
            )
            return Session(**dict(row)) if row else None

    async def delete_session(self, token_hash: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM sessions WHERE token_hash = $1", token_hash)
        return result == "DELETE 1"

    async def purge_expired(self, now: datetime) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM sessions WHERE expires_at <= $1", now)
        return int(result.split()[-1])
