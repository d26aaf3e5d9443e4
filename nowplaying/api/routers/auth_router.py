"""Authentication API routes: Spotify login, session, profile and config"""

import logging

from fastapi import APIRouter, Cookie, Depends, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from nowplaying.shared.models import ProviderKind, User

from ..core.config import Settings, get_settings
from ..core.dependencies import (
    get_current_user,
    get_dispatch_gate,
    get_linking_orchestrator,
    get_optional_user,
    get_profile_service,
    get_session_manager,
    get_session_token,
)
from ..core.metrics import record_callback
from ..services import (
    AlreadyLinked,
    DispatchGate,
    LinkError,
    LinkingOrchestrator,
    ProfileService,
    SessionManager,
)
from ..services.providers import CallbackParams
from .common import (
    OAUTH_STATE_COOKIE,
    clear_session_cookie,
    clear_state_cookie,
    frontend_redirect,
    set_session_cookie,
    set_state_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["authentication"])


# ============================================
# Response Models
# ============================================


class AuthCheckResponse(BaseModel):
    authenticated: bool
    user_id: str | None = None
    spotify_user_id: str | None = None


class LinkView(BaseModel):
    connected: bool
    user_id: str | None = None
    username: str | None = None
    avatar_url: str | None = None
    instance_host: str | None = None


class MeResponse(BaseModel):
    user_id: str
    spotify_user_id: str
    display_name: str | None = None
    avatar_url: str | None = None
    spotify: LinkView
    misskey: LinkView
    twitter: LinkView
    api_url_token_hint: str
    api_header_token_enabled: bool


class EligibilityView(BaseModel):
    eligible: bool
    reason: str | None = None


class ConfigResponse(BaseModel):
    twitter_available: bool
    twitter_eligibility: EligibilityView


class MessageResponse(BaseModel):
    message: str


# ============================================
# Spotify Login
# ============================================


@router.get("/auth/spotify")
async def start_spotify_login(
    user: User | None = Depends(get_optional_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Redirect to Spotify. Signed-in users with a live link go to the dashboard."""
    try:
        handshake = await orchestrator.start_link(user, ProviderKind.SPOTIFY)
    except AlreadyLinked:
        return frontend_redirect(settings, "/dashboard")

    response = RedirectResponse(url=handshake.redirect_url, status_code=302)
    set_state_cookie(response, handshake.state, settings)
    return response


@router.get("/auth/spotify/callback")
async def spotify_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    oauth_state: str | None = Cookie(None, alias=OAUTH_STATE_COOKIE),
    user: User | None = Depends(get_optional_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle Spotify OAuth callback"""
    try:
        result = await orchestrator.complete_link(
            ProviderKind.SPOTIFY,
            CallbackParams(state=state, code=code, error=error),
            session_user=user,
            bound_state=oauth_state,
        )
    except LinkError as e:
        logger.warning(f"Spotify login failed: {e.code} ({e.message})")
        record_callback(ProviderKind.SPOTIFY, e.code)
        response = frontend_redirect(settings, "/login", error=e.code)
        clear_state_cookie(response, settings)
        return response

    record_callback(ProviderKind.SPOTIFY, "success")
    response = frontend_redirect(settings, "/dashboard")
    clear_state_cookie(response, settings)
    if user is None:
        token = await sessions.create_session(result.user)
        set_session_cookie(response, token, settings)
        logger.info(f"User logged in: {result.user.spotify_user_id} ({result.user.id})")
    return response


@router.delete("/auth/spotify", response_model=MessageResponse)
async def disconnect_spotify(
    user: User = Depends(get_current_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
) -> MessageResponse:
    """Always refused: Spotify anchors the account"""
    await orchestrator.unlink(user, ProviderKind.SPOTIFY)
    return MessageResponse(message="spotify disconnected")


# ============================================
# Session
# ============================================


@router.get("/auth/check", response_model=AuthCheckResponse)
async def check_auth(user: User | None = Depends(get_optional_user)) -> AuthCheckResponse:
    """Report whether the session cookie belongs to a live session"""
    if user is None:
        return AuthCheckResponse(authenticated=False)
    return AuthCheckResponse(
        authenticated=True, user_id=user.id, spotify_user_id=user.spotify_user_id
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    """Delete the session server-side and clear the cookie"""
    await sessions.invalidate(token)
    clear_session_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


# ============================================
# Profile & Config
# ============================================


@router.get("/me", response_model=MeResponse)
async def get_me(
    user: User = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> MeResponse:
    """Current user with per-provider connection state"""
    return MeResponse(**await profiles.get_profile(user))


@router.get("/config", response_model=ConfigResponse)
async def get_config(
    user: User | None = Depends(get_optional_user),
    gate: DispatchGate = Depends(get_dispatch_gate),
) -> ConfigResponse:
    """Twitter availability for the deployment and eligibility for the caller"""
    if user is None:
        eligibility = EligibilityView(eligible=False, reason="Not authenticated")
    else:
        result = await gate.twitter_eligibility(user.id)
        eligibility = EligibilityView(eligible=result.eligible, reason=result.reason)

    return ConfigResponse(
        twitter_available=gate.policy.available,
        twitter_eligibility=eligibility,
    )
