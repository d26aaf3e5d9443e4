"""Twitter (OAuth 2.0 PKCE) linking routes"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from nowplaying.shared.models import ProviderKind, User

from ..core.config import Settings, get_settings
from ..core.dependencies import get_current_user, get_linking_orchestrator, get_optional_user
from ..core.metrics import record_callback
from ..services import LinkError, LinkingOrchestrator
from ..services.providers import CallbackParams
from .common import frontend_redirect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["twitter"])


class MessageResponse(BaseModel):
    message: str


@router.get("/twitter/start")
async def start_twitter_auth(
    user: User = Depends(get_current_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
) -> RedirectResponse:
    """Redirect to Twitter consent; 403 when the user is not eligible"""
    handshake = await orchestrator.start_link(user, ProviderKind.TWITTER)
    return RedirectResponse(url=handshake.redirect_url, status_code=302)


@router.get("/twitter/callback")
async def twitter_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    user: User | None = Depends(get_optional_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle Twitter OAuth callback"""
    if user is None:
        record_callback(ProviderKind.TWITTER, "unauthenticated")
        return frontend_redirect(settings, "/login", error="unauthenticated")

    try:
        await orchestrator.complete_link(
            ProviderKind.TWITTER,
            CallbackParams(state=state, code=code, error=error),
            session_user=user,
        )
    except LinkError as e:
        logger.warning(f"Twitter link failed for {user.id}: {e.code} ({e.message})")
        record_callback(ProviderKind.TWITTER, e.code)
        return frontend_redirect(settings, "/dashboard", error=e.code)

    record_callback(ProviderKind.TWITTER, "success")
    return frontend_redirect(settings, "/dashboard", success="twitter_connected")


@router.delete("/twitter", response_model=MessageResponse)
async def disconnect_twitter(
    user: User = Depends(get_current_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
) -> MessageResponse:
    await orchestrator.unlink(user, ProviderKind.TWITTER)
    return MessageResponse(message="twitter disconnected")
