"""Spotify adapter: authorization-code grant with refresh tokens.

Spotify is the anchor provider. Its handshake doubles as the dashboard login
flow, and its player endpoint supplies the text that gets posted elsewhere.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from nowplaying.shared.models import LinkingAttempt, ProviderKind, ProviderLink

from ...core.metrics import instrument_client
from ..errors import NotConnected, ProviderRejected, ProviderUnauthorized
from .base import (
    CallbackParams,
    HandshakeStart,
    Identity,
    ProviderCredential,
    bearer,
    check_callback,
    credential_from_grant,
    credential_from_refresh,
    new_state,
    post_token_request,
    response_json,
    utc_now,
)

logger = logging.getLogger(__name__)


class SpotifyAdapter:
    """Spotify Accounts + Web API client."""

    kind = ProviderKind.SPOTIFY

    OAUTH_SCOPES = [
        "user-read-currently-playing",
        "user-read-playback-state",
    ]

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"
    API_URL = "https://api.spotify.com/v1"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_url: str,
        *,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_url = api_url
        self._clock = clock

        # Shared HTTP client, reused across requests
        self._http = instrument_client(http or httpx.AsyncClient(timeout=10.0), self.kind)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    @property
    def redirect_uri(self) -> str:
        return f"{self.api_url}/api/auth/spotify/callback"

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    async def begin_handshake(self, params: dict[str, str]) -> HandshakeStart:
        state = new_state()
        query = urlencode(
            {
                "client_id": self.client_id,
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
                "scope": " ".join(self.OAUTH_SCOPES),
                "state": state,
            }
        )
        return HandshakeStart(redirect_url=f"{self.AUTHORIZE_URL}?{query}", state=state)

    async def complete_handshake(
        self, callback: CallbackParams, attempt: LinkingAttempt
    ) -> ProviderCredential:
        check_callback(callback, attempt)
        if not callback.code:
            raise ProviderRejected("missing_code")

        data = await post_token_request(
            self._http,
            self.TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": callback.code,
                "redirect_uri": self.redirect_uri,
            },
            client_id=self.client_id,
            client_secret=self.client_secret,
            provider=self.kind,
        )
        return credential_from_grant(data, self._clock(), self.kind)

    async def refresh(self, link: ProviderLink) -> ProviderCredential:
        if not link.refresh_token:
            raise NotConnected("No refresh token stored")

        data = await post_token_request(
            self._http,
            self.TOKEN_URL,
            {"grant_type": "refresh_token", "refresh_token": link.refresh_token},
            client_id=self.client_id,
            client_secret=self.client_secret,
            provider=self.kind,
        )
        logger.debug(f"Spotify refresh for user {link.user_id}: HTTP {data.get('_status')}")
        return credential_from_refresh(data, self._clock(), self.kind, link.refresh_token)

    async def identify(self, credential: ProviderCredential) -> Identity:
        data = await self._api_get("me", credential.access_token)
        if data is None or not data.get("id"):
            raise ProviderRejected("user_fetch_failed")

        images = data.get("images") or []
        return Identity(
            external_id=data["id"],
            username=data["id"],
            display_name=data.get("display_name") or data["id"],
            avatar_url=images[0].get("url") if images else None,
        )

    async def revoke(self, link: ProviderLink) -> None:
        """Spotify has no token revocation endpoint."""
        return None

    # ------------------------------------------------------------------
    # Player
    # ------------------------------------------------------------------

    async def get_player(self, access_token: str) -> dict[str, Any] | None:
        """Return the current playback state, or None when nothing is playing."""
        return await self._api_get(
            "me/player",
            access_token,
            params={"market": "JP", "additional_types": "track,episode"},
        )

    async def _api_get(
        self,
        path: str,
        access_token: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        try:
            response = await self._http.get(
                f"{self.API_URL}/{path}", params=params, headers=bearer(access_token)
            )
        except httpx.HTTPError as e:
            logger.error(f"Spotify GET /{path} error: {e}")
            raise ProviderRejected("network_error") from e

        if response.status_code == 204:
            return None
        if response.status_code == 401:
            raise ProviderUnauthorized()
        if response.status_code != 200:
            logger.error(f"Spotify GET /{path} failed: {response.status_code}")
            raise ProviderRejected(f"spotify api error: {response.status_code}")
        return response_json(response)
