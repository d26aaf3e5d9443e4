"""Repository for users and provider_links tables.

Pure data access: no provider calls. Provider tokens are sealed with the
repository's :class:`TokenCipher` on write and opened on read; callers only
ever see plaintext. Compare-and-swap matches on ``access_token_hash``.

Every statement on provider_links is a single row-level statement keyed by
(user_id, provider), so concurrent writers for the same key serialize in
PostgreSQL and the last commit wins.
"""

from __future__ import annotations

import asyncpg

from nowplaying.shared.crypto import TokenCipher, token_fingerprint
from nowplaying.shared.models import ProviderKind, ProviderLink, User

_USER_COLUMNS = (
    "id::text AS id, spotify_user_id, display_name, avatar_url, "
    "api_url_token_hash, api_url_token_hint, api_url_token_rotated_at, "
    "api_header_token_hash, api_header_token_enabled, api_header_token_rotated_at, "
    "created_at, updated_at"
)

_LINK_COLUMNS = (
    "user_id::text AS user_id, provider, access_token, external_id, username, "
    "avatar_url, refresh_token, expires_at, instance_host, connected_at, updated_at"
)


class CredentialRepository:
    """Per-user, per-provider credential records and the users they hang off."""

    def __init__(self, pool: asyncpg.Pool, cipher: TokenCipher | None = None) -> None:
        self.pool = pool
        self.cipher = cipher or TokenCipher()

    def _link(self, row: asyncpg.Record) -> ProviderLink:
        data = dict(row)
        data["access_token"] = self.cipher.decrypt(data["access_token"])
        if data["refresh_token"]:
            data["refresh_token"] = self.cipher.decrypt(data["refresh_token"])
        return ProviderLink(**data)

    def _seal(self, token: str | None) -> str | None:
        return self.cipher.encrypt(token) if token else token

    # ==================== Users ====================

    async def get_user(self, user_id: str) -> User | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1::uuid",
                user_id,
            )
            return User(**dict(row)) if row else None

    async def get_user_by_spotify_id(self, spotify_user_id: str) -> User | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE spotify_user_id = $1",
                spotify_user_id,
            )
            return User(**dict(row)) if row else None

    async def upsert_user(
        self,
        spotify_user_id: str,
        display_name: str | None,
        avatar_url: str | None,
        *,
        url_token_hash: str,
        url_token_hint: str,
    ) -> User:
        """Create the user or refresh its display attributes.

        The URL token hash only applies on insert; an existing user keeps
        its current token.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO users (spotify_user_id, display_name, avatar_url,
                                   api_url_token_hash, api_url_token_hint)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (spotify_user_id) DO UPDATE SET
                    display_name = EXCLUDED.display_name,
                    avatar_url   = EXCLUDED.avatar_url,
                    updated_at   = NOW()
                RETURNING {_USER_COLUMNS}
                """,
                spotify_user_id,
                display_name,
                avatar_url,
                url_token_hash,
                url_token_hint,
            )
            return User(**dict(row))

    async def update_user_profile(
        self, user_id: str, display_name: str | None, avatar_url: str | None
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE users SET display_name = $2, avatar_url = $3, updated_at = NOW() "
                "WHERE id = $1::uuid",
                user_id,
                display_name,
                avatar_url,
            )

    # ==================== Provider links ====================

    async def get_link(self, user_id: str, provider: ProviderKind) -> ProviderLink | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_LINK_COLUMNS} FROM provider_links "
                "WHERE user_id = $1::uuid AND provider = $2",
                user_id,
                provider.value,
            )
            return self._link(row) if row else None

    async def list_links(self, user_id: str) -> list[ProviderLink]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_LINK_COLUMNS} FROM provider_links "
                "WHERE user_id = $1::uuid ORDER BY connected_at",
                user_id,
            )
            return [self._link(r) for r in rows]

    async def put_link(self, link: ProviderLink) -> ProviderLink:
        """Insert a link, atomically replacing any prior link of the same kind."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO provider_links (user_id, provider, access_token, external_id,
                                            username, avatar_url, refresh_token,
                                            expires_at, instance_host, access_token_hash)
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    access_token      = EXCLUDED.access_token,
                    access_token_hash = EXCLUDED.access_token_hash,
                    external_id       = EXCLUDED.external_id,
                    username          = EXCLUDED.username,
                    avatar_url        = EXCLUDED.avatar_url,
                    refresh_token     = EXCLUDED.refresh_token,
                    expires_at        = EXCLUDED.expires_at,
                    instance_host     = EXCLUDED.instance_host,
                    connected_at      = NOW(),
                    updated_at        = NOW()
                RETURNING {_LINK_COLUMNS}
                """,
                link.user_id,
                link.provider.value,
                self._seal(link.access_token),
                link.external_id,
                link.username,
                link.avatar_url,
                self._seal(link.refresh_token),
                link.expires_at,
                link.instance_host,
                token_fingerprint(link.access_token),
            )
            return self._link(row)

    async def replace_link_if_unchanged(
        self, link: ProviderLink, expected_access_token: str
    ) -> bool:
        """Swap in a refreshed credential only if nobody else changed it first."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE provider_links SET
                    access_token      = $3,
                    access_token_hash = $4,
                    refresh_token     = $5,
                    expires_at        = $6,
                    updated_at        = NOW()
                WHERE user_id = $1::uuid AND provider = $2 AND access_token_hash = $7
                """,
                link.user_id,
                link.provider.value,
                self._seal(link.access_token),
                token_fingerprint(link.access_token),
                self._seal(link.refresh_token),
                link.expires_at,
                token_fingerprint(expected_access_token),
            )
        return result == "UPDATE 1"

    async def delete_link(self, user_id: str, provider: ProviderKind) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM provider_links WHERE user_id = $1::uuid AND provider = $2",
                user_id,
                provider.value,
            )
        return result == "DELETE 1"

    async def delete_link_if_unchanged(
        self, user_id: str, provider: ProviderKind, expected_access_token: str
    ) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM provider_links "
                "WHERE user_id = $1::uuid AND provider = $2 AND access_token_hash = $3",
                user_id,
                provider.value,
                token_fingerprint(expected_access_token),
            )
        return result == "DELETE 1"
