"""Repository for the posting-token columns of the users table.

Each rotation is a single UPDATE: the old hash stops matching in the same
statement that stores the new one.
"""

from __future__ import annotations

import asyncpg

from nowplaying.shared.models import User

from .credential import _USER_COLUMNS


class ApiTokenRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_user_by_url_token_hash(self, token_hash: str) -> User | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE api_url_token_hash = $1",
                token_hash,
            )
            return User(**dict(row)) if row else None

    async def set_url_token(self, user_id: str, token_hash: str, hint: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users SET
                    api_url_token_hash       = $2,
                    api_url_token_hint       = $3,
                    api_url_token_rotated_at = NOW(),
                    updated_at               = NOW()
                WHERE id = $1::uuid
                """,
                user_id,
                token_hash,
                hint,
            )
        return result == "UPDATE 1"

    async def set_header_token(self, user_id: str, token_hash: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users SET
                    api_header_token_hash       = $2,
                    api_header_token_enabled    = TRUE,
                    api_header_token_rotated_at = NOW(),
                    updated_at                  = NOW()
                WHERE id = $1::uuid
                """,
                user_id,
                token_hash,
            )
        return result == "UPDATE 1"

    async def disable_header_token(self, user_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users SET
                    api_header_token_hash    = NULL,
                    api_header_token_enabled = FALSE,
                    updated_at               = NOW()
                WHERE id = $1::uuid
                """,
                user_id,
            )
        return result == "UPDATE 1"
