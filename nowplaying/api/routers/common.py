"""Cookie and redirect helpers shared by the OAuth routers"""

from urllib.parse import urlencode

from fastapi import Response
from fastapi.responses import RedirectResponse

from ..core.config import Settings

OAUTH_STATE_COOKIE = "oauth_state"


def frontend_redirect(
    settings: Settings,
    path: str,
    *,
    success: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    params = {k: v for k, v in (("success", success), ("error", error)) if v}
    query = f"?{urlencode(params)}" if params else ""
    return RedirectResponse(url=f"{settings.frontend_url}{path}{query}", status_code=302)


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.session_expire_days * 24 * 60 * 60,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def set_state_cookie(response: Response, state: str, settings: Settings) -> None:
    """Bind a login handshake to the browser that started it."""
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=state,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.linking_attempt_ttl_minutes * 60,
        path="/api/auth/spotify",
    )


def clear_state_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=OAUTH_STATE_COOKIE,
        path="/api/auth/spotify",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
