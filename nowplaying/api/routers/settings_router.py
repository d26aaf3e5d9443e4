"""Posting token management routes"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nowplaying.shared.models import User

from ..core.config import Settings, get_settings
from ..core.dependencies import get_api_token_service, get_current_user
from ..services import ApiTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


# ============================================
# Response Models
# ============================================


class HeaderTokenResponse(BaseModel):
    enabled: bool
    token: str | None = None


class UrlTokenResponse(BaseModel):
    token: str
    hint: str
    post_url: str


# ============================================
# Endpoints
# ============================================


@router.post("/header-token", response_model=HeaderTokenResponse)
async def generate_header_token(
    user: User = Depends(get_current_user),
    tokens: ApiTokenService = Depends(get_api_token_service),
) -> HeaderTokenResponse:
    """Enable (or rotate) the Authorization header token; shown once"""
    issued = await tokens.generate_header_token(user.id)
    return HeaderTokenResponse(enabled=True, token=issued.token)


@router.delete("/header-token", response_model=HeaderTokenResponse)
async def disable_header_token(
    user: User = Depends(get_current_user),
    tokens: ApiTokenService = Depends(get_api_token_service),
) -> HeaderTokenResponse:
    await tokens.disable_header_token(user.id)
    return HeaderTokenResponse(enabled=False)


@router.post("/api-url-token/regenerate", response_model=UrlTokenResponse)
async def regenerate_url_token(
    user: User = Depends(get_current_user),
    tokens: ApiTokenService = Depends(get_api_token_service),
    settings: Settings = Depends(get_settings),
) -> UrlTokenResponse:
    """Rotate the URL token; the previous URL stops working immediately"""
    issued = await tokens.rotate_url_token(user.id)
    return UrlTokenResponse(
        token=issued.token,
        hint=issued.hint,
        post_url=f"{settings.api_url}/api/post/{issued.token}",
    )
