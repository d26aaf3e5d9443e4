"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nowplaying import __version__
from nowplaying.shared.database import Database, PoolOptions, init_database
from nowplaying.shared.migrations import MigrationRunner
from nowplaying.shared.repositories import LinkingAttemptRepository, SessionRepository

from .core.config import Settings, get_settings
from .core.dependencies import close_provider_adapters, get_token_cipher, reset_dispatch_gate
from .core.logging import setup_logging
from .core.metrics import track_requests
from .routers import (
    auth_router,
    miauth_router,
    post_router,
    settings_router,
    system_router,
    twitter_router,
)
from .services import LinkError
from .services.providers import utc_now

logger = logging.getLogger(__name__)

STARTUP_DB_WAIT = 30
RECONNECT_CEILING = 60


class Maintenance:
    """Background work tied to the process lifetime.

    Owns the database handle, a reconnect loop used when the database was not
    reachable at startup, and the periodic sweep of expired rows. Expiry is
    enforced on lookup; the sweep only keeps tables small.
    """

    def __init__(self, settings: Settings, database: Database):
        self.database = database
        self.sweep_every = settings.sweep_interval
        self.attempt_ttl = timedelta(minutes=settings.linking_attempt_ttl_minutes)
        self._tasks: list[asyncio.Task] = []

    async def prepare(self) -> None:
        await self.database.open()
        await MigrationRunner(self.database.pool).run_pending()

    async def _reconnect(self) -> None:
        wait = 5
        while True:
            await asyncio.sleep(wait)
            try:
                await self.prepare()
            except Exception as e:
                wait = min(wait * 2, RECONNECT_CEILING)
                logger.warning(
                    f"Database still unavailable ({type(e).__name__}: {e}), next try in {wait}s"
                )
            else:
                logger.info("Database connected after startup")
                return

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_every)
            if not self.database.ready:
                continue
            pool = self.database.pool
            now = utc_now()
            try:
                attempts = await LinkingAttemptRepository(pool).purge_created_before(
                    now - self.attempt_ttl
                )
                sessions = await SessionRepository(pool).purge_expired(now)
            except Exception as e:
                logger.warning(f"Sweep failed: {type(e).__name__}: {e}")
                continue
            if attempts or sessions:
                logger.info(f"Swept {attempts} linking attempts and {sessions} sessions")

    async def start(self) -> None:
        try:
            await asyncio.wait_for(self.prepare(), timeout=STARTUP_DB_WAIT)
            logger.info("Database connected")
        except Exception as e:
            logger.error(
                f"Database not ready at startup ({type(e).__name__}), retrying in background"
            )
            self._tasks.append(asyncio.create_task(self._reconnect()))

        self._tasks.append(asyncio.create_task(self._sweep()))
        logger.info(f"Sweeper started (interval={self.sweep_every}s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.database.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logger.info(f"Starting NowPlaying API ({settings.environment})")
    logger.info(f"Frontend URL: {settings.frontend_url}")
    # Fails fast on a malformed TOKEN_ENCRYPTION_KEY
    if not get_token_cipher().enabled and settings.is_production:
        logger.warning("TOKEN_ENCRYPTION_KEY is not set, provider tokens are stored in plaintext")

    maintenance = Maintenance(
        settings, init_database(settings.database_url, PoolOptions.from_settings(settings))
    )
    await maintenance.start()

    yield

    logger.info("Shutting down NowPlaying API")
    await close_provider_adapters()
    reset_dispatch_gate()
    await maintenance.stop()


async def link_error_handler(request: Request, exc: LinkError) -> JSONResponse:
    """Render service errors as ``{"error": code, "message": ...}``"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)

    docs = settings.is_development
    app = FastAPI(
        title="Spotify NowPlaying API",
        description="Link Spotify with Misskey and Twitter and post what you are playing",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
    )
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(track_requests)
    app.add_exception_handler(LinkError, link_error_handler)

    for module in (
        system_router,
        auth_router,
        miauth_router,
        twitter_router,
        settings_router,
        post_router,
    ):
        app.include_router(module.router)

    return app
