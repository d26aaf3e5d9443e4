"""Twitter/X adapter: OAuth 2.0 authorization code with PKCE (S256)."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime
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


def generate_code_verifier() -> str:
    """RFC 7636 verifier: 64 URL-safe characters."""
    return secrets.token_urlsafe(48)


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class TwitterAdapter:
    """Client for the Twitter OAuth 2.0 and v2 APIs."""

    kind = ProviderKind.TWITTER

    OAUTH_SCOPES = [
        "tweet.read",
        "tweet.write",
        "users.read",
        "offline.access",
    ]

    AUTHORIZE_URL = "https://x.com/i/oauth2/authorize"
    API_URL = "https://api.twitter.com/2"

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
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def redirect_uri(self) -> str:
        return f"{self.api_url}/api/twitter/callback"

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    async def begin_handshake(self, params: dict[str, str]) -> HandshakeStart:
        state = new_state()
        verifier = generate_code_verifier()
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "scope": " ".join(self.OAUTH_SCOPES),
                "state": state,
                "code_challenge": code_challenge(verifier),
                "code_challenge_method": "S256",
            }
        )
        return HandshakeStart(
            redirect_url=f"{self.AUTHORIZE_URL}?{query}",
            state=state,
            code_verifier=verifier,
        )

    async def complete_handshake(
        self, callback: CallbackParams, attempt: LinkingAttempt
    ) -> ProviderCredential:
        check_callback(callback, attempt)
        if not callback.code:
            raise ProviderRejected("missing_code")
        if not attempt.code_verifier:
            raise ProviderRejected("missing_verifier")

        data = await post_token_request(
            self._http,
            f"{self.API_URL}/oauth2/token",
            {
                "code": callback.code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code_verifier": attempt.code_verifier,
            },
            client_id=self.client_id,
            client_secret=self.client_secret,
            provider=self.kind,
        )
        return credential_from_grant(data, self._clock(), self.kind)

    async def refresh(self, link: ProviderLink) -> ProviderCredential:
        """Twitter rotates refresh tokens: the old one is dead after this call."""
        if not link.refresh_token:
            raise NotConnected("No refresh token stored")

        data = await post_token_request(
            self._http,
            f"{self.API_URL}/oauth2/token",
            {"refresh_token": link.refresh_token, "grant_type": "refresh_token"},
            client_id=self.client_id,
            client_secret=self.client_secret,
            provider=self.kind,
        )
        return credential_from_refresh(data, self._clock(), self.kind, link.refresh_token)

    async def identify(self, credential: ProviderCredential) -> Identity:
        try:
            response = await self._http.get(
                f"{self.API_URL}/users/me",
                params={"user.fields": "profile_image_url"},
                headers=bearer(credential.access_token),
            )
        except httpx.HTTPError as e:
            logger.error(f"Twitter users/me error: {e}")
            raise ProviderRejected("network_error") from e

        if response.status_code == 401:
            raise ProviderUnauthorized()
        user = response_json(response).get("data") or {}
        if response.status_code != 200 or not user.get("id"):
            logger.error(f"Failed to get Twitter user: {response.status_code}")
            raise ProviderRejected("user_fetch_failed")

        return Identity(
            external_id=user["id"],
            username=user.get("username", ""),
            display_name=user.get("name"),
            avatar_url=user.get("profile_image_url"),
        )

    async def revoke(self, link: ProviderLink) -> None:
        data = await post_token_request(
            self._http,
            f"{self.API_URL}/oauth2/revoke",
            {"token": link.access_token, "token_type_hint": "access_token"},
            client_id=self.client_id,
            client_secret=self.client_secret,
            provider=self.kind,
        )
        if data.get("_status") != 200:
            raise ProviderRejected("revoke_failed")

    # ------------------------------------------------------------------
    # Tweets
    # ------------------------------------------------------------------

    async def create_tweet(self, link: ProviderLink, text: str) -> None:
        try:
            response = await self._http.post(
                f"{self.API_URL}/tweets",
                json={"text": text},
                headers=bearer(link.access_token),
            )
        except httpx.HTTPError as e:
            logger.error(f"Twitter POST /tweets error: {e}")
            raise ProviderRejected("network_error") from e

        if response.status_code == 401:
            raise ProviderUnauthorized()
        if response.status_code not in (200, 201):
            logger.error(f"Tweet failed: {response.status_code}")
            logger.debug(f"Response: {response.text}")
            raise ProviderRejected(f"twitter api error: {response.status_code}")
