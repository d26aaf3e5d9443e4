"""Misskey (MiAuth) linking routes"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from nowplaying.shared.models import ProviderKind, User

from ..core.config import Settings, get_settings
from ..core.dependencies import get_current_user, get_linking_orchestrator, get_optional_user
from ..core.metrics import record_callback
from ..services import InvalidInstance, LinkError, LinkingOrchestrator
from ..services.providers import CallbackParams
from .common import frontend_redirect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["misskey"])


# ============================================
# Request/Response Models
# ============================================


class MiAuthStartRequest(BaseModel):
    instance_host: str | None = None
    instance_url: str | None = None


class MiAuthStartResponse(BaseModel):
    auth_url: str


class MessageResponse(BaseModel):
    message: str


# ============================================
# Endpoints
# ============================================


@router.post("/miauth/start", response_model=MiAuthStartResponse)
async def start_miauth(
    body: MiAuthStartRequest,
    user: User = Depends(get_current_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
) -> MiAuthStartResponse:
    """Validate the instance and return the MiAuth consent URL"""
    raw = body.instance_host or body.instance_url
    if not raw:
        raise InvalidInstance("instance_host is required")

    handshake = await orchestrator.start_link(
        user, ProviderKind.MISSKEY, {"instance_host": raw}
    )
    return MiAuthStartResponse(auth_url=handshake.redirect_url)


@router.get("/miauth/callback")
async def miauth_callback(
    session: str | None = None,
    user: User | None = Depends(get_optional_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle MiAuth callback (the session id is the handshake state)"""
    if user is None:
        record_callback(ProviderKind.MISSKEY, "unauthenticated")
        return frontend_redirect(settings, "/login", error="unauthenticated")

    try:
        await orchestrator.complete_link(
            ProviderKind.MISSKEY, CallbackParams(state=session), session_user=user
        )
    except LinkError as e:
        logger.warning(f"MiAuth failed for {user.id}: {e.code} ({e.message})")
        record_callback(ProviderKind.MISSKEY, e.code)
        return frontend_redirect(settings, "/dashboard", error=e.code)

    record_callback(ProviderKind.MISSKEY, "success")
    return frontend_redirect(settings, "/dashboard", success="misskey_connected")


@router.delete("/miauth", response_model=MessageResponse)
async def disconnect_misskey(
    user: User = Depends(get_current_user),
    orchestrator: LinkingOrchestrator = Depends(get_linking_orchestrator),
) -> MessageResponse:
    await orchestrator.unlink(user, ProviderKind.MISSKEY)
    return MessageResponse(message="misskey disconnected")
