"""Apply the numbered SQL files under ``versions/`` once each."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NamedTuple

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary key shared by every API replica so only one migrates at a time
_ADVISORY_LOCK = 7_311_042


class Migration(NamedTuple):
    version: str
    path: Path


def discover(directory: Path = VERSIONS_DIR) -> list[Migration]:
    """``NNN_name.sql`` files sorted by their numeric prefix."""
    found = []
    for path in directory.glob("*.sql"):
        prefix, _, _ = path.stem.partition("_")
        if not prefix.isdigit():
            logger.warning("Ignoring %s: no numeric prefix", path.name)
            continue
        found.append((int(prefix), Migration(path.stem, path)))
    return [migration for _, migration in sorted(found)]


class MigrationRunner:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def run_pending(self, directory: Path = VERSIONS_DIR) -> list[str]:
        """Apply unapplied migrations in order and return their versions.

        Each file runs in its own transaction together with its bookkeeping
        row in ``schema_migrations``.
        """
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _ADVISORY_LOCK)
            try:
                return await self._apply_pending(conn, discover(directory))
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _ADVISORY_LOCK)

    async def _apply_pending(
        self, conn: asyncpg.Connection, migrations: list[Migration]
    ) -> list[str]:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version    TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        done = {r["version"] for r in await conn.fetch("SELECT version FROM schema_migrations")}

        applied = []
        for migration in migrations:
            if migration.version in done:
                continue
            logger.info("Applying migration %s", migration.version)
            async with conn.transaction():
                await conn.execute(migration.path.read_text(encoding="utf-8"))
                await conn.execute(
                    "INSERT INTO schema_migrations (version) VALUES ($1)", migration.version
                )
            applied.append(migration.version)

        if applied:
            logger.info("Schema migrated: %s", ", ".join(applied))
        else:
            logger.info("Database schema is up to date")
        return applied
