"""Token-authenticated "post now playing" endpoint"""

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.dependencies import get_api_token_service, get_now_playing_service
from ..services import (
    ApiTokenService,
    LinkError,
    NotConnected,
    NowPlayingService,
    PostTarget,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["post"])


class PostResponse(BaseModel):
    success: bool
    message: str = ""
    results: dict[str, str] = {}


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=PostResponse(success=False, message=message).model_dump(),
    )


@router.get("/post/{token}", response_model=PostResponse)
async def post_now_playing(
    token: str,
    target: str | None = None,
    authorization: str | None = Header(None),
    tokens: ApiTokenService = Depends(get_api_token_service),
    now_playing: NowPlayingService = Depends(get_now_playing_service),
):
    """Post the current track to misskey, twitter or both (default)"""
    try:
        user = await tokens.authenticate(token, authorization)
    except Unauthenticated as e:
        return _failure(401, e.message)

    try:
        result = await now_playing.post(user, PostTarget.parse(target))
    except NotConnected:
        return _failure(400, "spotify not connected")
    except LinkError as e:
        logger.warning(f"Now playing fetch failed for {user.id}: {e.code}")
        return _failure(e.status_code, e.message)

    return PostResponse(success=result.success, message=result.message, results=result.results)
