"""Repository for linking_attempts table."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from nowplaying.shared.models import LinkingAttempt

_COLUMNS = "state, provider, user_id::text AS user_id, instance_host, code_verifier, created_at"


class LinkingAttemptRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create_attempt(self, attempt: LinkingAttempt) -> LinkingAttempt:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO linking_attempts (state, provider, user_id, instance_host, code_verifier)
                VALUES ($1, $2, $3::uuid, $4, $5)
                RETURNING {_COLUMNS}
                """,
                attempt.state,
                attempt.provider.value,
                attempt.user_id,
                attempt.instance_host,
                attempt.code_verifier,
            )
            return LinkingAttempt(**dict(row))

    async def consume_attempt(self, state: str) -> LinkingAttempt | None:
        """Delete and return the attempt; a second call for the same state gets None."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"DELETE FROM linking_attempts WHERE state = $1 RETURNING {_COLUMNS}",
                state,
            )
            return LinkingAttempt(**dict(row)) if row else None

    async def purge_created_before(self, cutoff: datetime) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM linking_attempts WHERE created_at < $1",
                cutoff,
            )
        return int(result.split()[-1])
