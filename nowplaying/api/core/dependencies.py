"""Dependency injection utilities for FastAPI"""

import logging
from datetime import timedelta
from functools import lru_cache

import asyncpg
from fastapi import Depends, HTTPException, Request

from nowplaying.shared.crypto import TokenCipher
from nowplaying.shared.database import get_database
from nowplaying.shared.models import User
from nowplaying.shared.repositories import (
    ApiTokenRepository,
    CredentialRepository,
    LinkingAttemptRepository,
    SessionRepository,
)

from ..services import (
    ApiTokenService,
    DispatchGate,
    LinkingOrchestrator,
    NowPlayingService,
    ProfileService,
    SessionManager,
    TwitterPolicy,
    Unauthenticated,
)
from ..services.providers import (
    MisskeyAdapter,
    ProviderRegistry,
    SpotifyAdapter,
    TwitterAdapter,
    build_registry,
)
from .config import get_settings

logger = logging.getLogger(__name__)


# ============================================
# Provider Adapters
# ============================================

_spotify: SpotifyAdapter | None = None
_misskey: MisskeyAdapter | None = None
_twitter: TwitterAdapter | None = None


def get_spotify_adapter() -> SpotifyAdapter:
    """Get shared SpotifyAdapter singleton (connection reuse)."""
    global _spotify
    if _spotify is None:
        settings = get_settings()
        _spotify = SpotifyAdapter(
            client_id=settings.spotify_client_id,
            client_secret=settings.spotify_client_secret,
            api_url=settings.api_url,
        )
    return _spotify


def get_misskey_adapter() -> MisskeyAdapter:
    global _misskey
    if _misskey is None:
        settings = get_settings()
        _misskey = MisskeyAdapter(app_name=settings.app_name, api_url=settings.api_url)
    return _misskey


def get_twitter_adapter() -> TwitterAdapter:
    global _twitter
    if _twitter is None:
        settings = get_settings()
        _twitter = TwitterAdapter(
            client_id=settings.twitter_client_id,
            client_secret=settings.twitter_client_secret,
            api_url=settings.api_url,
        )
    return _twitter


def get_provider_registry() -> ProviderRegistry:
    return build_registry(get_spotify_adapter(), get_misskey_adapter(), get_twitter_adapter())


async def close_provider_adapters() -> None:
    """Close the shared adapter HTTP clients. Call on app shutdown."""
    global _spotify, _misskey, _twitter
    for adapter in (_spotify, _misskey, _twitter):
        if adapter is not None:
            await adapter.close()
    _spotify = _misskey = _twitter = None


# ============================================
# Service Dependencies
# ============================================


def get_db_pool() -> asyncpg.Pool:
    database = get_database()
    if not database.ready:
        raise HTTPException(status_code=503, detail="Database not ready")
    return database.pool


@lru_cache
def get_token_cipher() -> TokenCipher:
    return TokenCipher(get_settings().token_encryption_key)


def get_credential_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> CredentialRepository:
    return CredentialRepository(pool, get_token_cipher())


def get_twitter_policy() -> TwitterPolicy:
    return TwitterPolicy.from_settings(get_settings())


_dispatch_gate: DispatchGate | None = None


def get_dispatch_gate() -> DispatchGate:
    """Get shared DispatchGate singleton (its refresh locks are process-wide)."""
    global _dispatch_gate
    if _dispatch_gate is None:
        _dispatch_gate = DispatchGate(
            get_credential_repository(get_db_pool()),
            get_provider_registry(),
            get_twitter_policy(),
        )
    return _dispatch_gate


def reset_dispatch_gate() -> None:
    global _dispatch_gate
    _dispatch_gate = None


def get_session_manager(pool: asyncpg.Pool = Depends(get_db_pool)) -> SessionManager:
    settings = get_settings()
    return SessionManager(
        SessionRepository(pool),
        get_credential_repository(pool),
        secret_key=settings.session_secret_key,
        algorithm=settings.session_algorithm,
        expire_days=settings.session_expire_days,
    )


def get_linking_orchestrator(
    pool: asyncpg.Pool = Depends(get_db_pool),
    gate: DispatchGate = Depends(get_dispatch_gate),
) -> LinkingOrchestrator:
    settings = get_settings()
    return LinkingOrchestrator(
        get_credential_repository(pool),
        LinkingAttemptRepository(pool),
        get_provider_registry(),
        gate,
        attempt_ttl=timedelta(minutes=settings.linking_attempt_ttl_minutes),
    )


def get_api_token_service(pool: asyncpg.Pool = Depends(get_db_pool)) -> ApiTokenService:
    return ApiTokenService(ApiTokenRepository(pool))


def get_profile_service(
    pool: asyncpg.Pool = Depends(get_db_pool),
    gate: DispatchGate = Depends(get_dispatch_gate),
) -> ProfileService:
    return ProfileService(get_credential_repository(pool), gate, get_spotify_adapter())


def get_now_playing_service(
    gate: DispatchGate = Depends(get_dispatch_gate),
) -> NowPlayingService:
    return NowPlayingService(
        gate, get_spotify_adapter(), get_misskey_adapter(), get_twitter_adapter()
    )


# ============================================
# Authentication Dependencies
# ============================================


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


async def get_optional_user(
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> User | None:
    """Return the signed-in user, or None for anonymous requests."""
    if not token:
        return None
    try:
        return await sessions.authenticate(token)
    except Unauthenticated:
        return None


async def get_current_user(
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> User:
    """Require a valid session; raises Unauthenticated (401) otherwise."""
    return await sessions.authenticate(token)
