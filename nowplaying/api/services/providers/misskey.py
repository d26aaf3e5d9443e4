"""Misskey adapter: MiAuth session-token flow against a user-chosen instance.

MiAuth has no code exchange and no refresh: the session id doubles as the
OAuth state, and ``/api/miauth/{session}/check`` hands back a token that
stays valid until the user revokes it on the instance.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import uuid
from typing import Any
from urllib.parse import urlencode

import httpx

from nowplaying.shared.models import LinkingAttempt, ProviderKind, ProviderLink

from ...core.metrics import instrument_client
from ..errors import InvalidInstance, ProviderRejected, ProviderUnauthorized
from .base import (
    CallbackParams,
    HandshakeStart,
    Identity,
    ProviderCredential,
    check_callback,
    response_json,
)

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_instance_host(raw: str) -> str:
    """Reduce user input like ``https://Misskey.io/`` to ``misskey.io``.

    Accepts a bare host or an http(s) URL with an optional port. Rejects
    paths, credentials, queries, IP literals and single-label names.
    """
    value = (raw or "").strip()
    if not value:
        raise InvalidInstance("Instance host is required")

    if "://" in value:
        scheme, _, value = value.partition("://")
        if scheme.lower() not in ("http", "https"):
            raise InvalidInstance("Only http(s) instance URLs are supported")
    value = value.rstrip("/")

    if any(ch in value for ch in "/?#@\\ "):
        raise InvalidInstance("Instance host must not contain a path or credentials")
    if value.startswith("["):
        raise InvalidInstance("IP addresses are not allowed")

    host, sep, port = value.partition(":")
    if sep and (not port.isdigit() or not 0 < int(port) < 65536):
        raise InvalidInstance("Invalid port")

    try:
        host = host.encode("idna").decode("ascii").lower()
    except UnicodeError:
        raise InvalidInstance("Invalid host name") from None

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        raise InvalidInstance("IP addresses are not allowed")

    labels = host.split(".")
    if len(labels) < 2:
        raise InvalidInstance("Instance host must be a fully qualified domain")
    if not all(_LABEL_RE.match(label) for label in labels) or labels[-1].isdigit():
        raise InvalidInstance("Invalid host name")

    return f"{host}:{port}" if sep else host


class MisskeyAdapter:
    """MiAuth handshake plus the few Misskey API calls the app needs."""

    kind = ProviderKind.MISSKEY

    PERMISSIONS = ["write:notes", "read:account"]

    def __init__(
        self,
        app_name: str,
        api_url: str,
        *,
        http: httpx.AsyncClient | None = None,
    ):
        self.app_name = app_name
        self.api_url = api_url

        # Shared HTTP client, reused across instances
        self._http = instrument_client(http or httpx.AsyncClient(timeout=10.0), self.kind)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    @property
    def callback_url(self) -> str:
        return f"{self.api_url}/api/miauth/callback"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, host: str, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._http.post(f"https://{host}/api/{path}", json=body)
        except httpx.TimeoutException:
            logger.error(f"Timeout calling {host}/api/{path}")
            raise ProviderRejected("timeout") from None
        except httpx.HTTPError as e:
            logger.error(f"Misskey {host}/api/{path} error: {e}")
            raise ProviderRejected("network_error") from e

    async def _check_instance(self, host: str) -> None:
        """Make sure the host answers like a Misskey server before redirecting."""
        try:
            response = await self._http.post(f"https://{host}/api/meta", json={})
        except httpx.HTTPError as e:
            logger.info(f"Misskey instance check failed for {host}: {e}")
            raise InvalidInstance("Instance is not reachable") from e

        data = response_json(response)
        if response.status_code != 200 or not data:
            logger.info(f"Misskey meta for {host} returned {response.status_code}")
            raise InvalidInstance("Host does not look like a Misskey instance")

    # ------------------------------------------------------------------
    # MiAuth flow
    # ------------------------------------------------------------------

    async def begin_handshake(self, params: dict[str, str]) -> HandshakeStart:
        raw = params.get("instance_host") or params.get("instance_url") or ""
        host = normalize_instance_host(raw)
        await self._check_instance(host)

        session_id = str(uuid.uuid4())
        query = urlencode(
            {
                "name": self.app_name,
                "callback": self.callback_url,
                "permission": ",".join(self.PERMISSIONS),
            }
        )
        return HandshakeStart(
            redirect_url=f"https://{host}/miauth/{session_id}?{query}",
            state=session_id,
            instance_host=host,
        )

    async def complete_handshake(
        self, callback: CallbackParams, attempt: LinkingAttempt
    ) -> ProviderCredential:
        check_callback(callback, attempt)
        host = attempt.instance_host
        if not host:
            raise ProviderRejected("missing_instance")

        response = await self._post(host, f"miauth/{attempt.state}/check", {})
        data = response_json(response)
        if response.status_code != 200 or not data.get("ok") or not data.get("token"):
            logger.error(f"MiAuth check on {host} failed: {response.status_code}")
            raise ProviderRejected("auth_failed")

        return ProviderCredential(access_token=data["token"], instance_host=host)

    async def refresh(self, link: ProviderLink) -> ProviderCredential:
        """MiAuth tokens do not expire; hand back what is stored."""
        return ProviderCredential(
            access_token=link.access_token, instance_host=link.instance_host
        )

    async def identify(self, credential: ProviderCredential) -> Identity:
        host = credential.instance_host
        if not host:
            raise ProviderRejected("missing_instance")

        response = await self._post(host, "i", {"i": credential.access_token})
        if response.status_code == 401:
            raise ProviderUnauthorized()
        data = response_json(response)
        if response.status_code != 200 or not data.get("id"):
            logger.error(f"Failed to get Misskey user on {host}: {response.status_code}")
            raise ProviderRejected("user_fetch_failed")

        username = data.get("username") or ""
        return Identity(
            external_id=data["id"],
            username=username,
            display_name=data.get("name") or username,
            avatar_url=data.get("avatarUrl"),
        )

    async def revoke(self, link: ProviderLink) -> None:
        """MiAuth tokens can only be revoked from the instance settings."""
        return None

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def create_note(self, link: ProviderLink, text: str) -> None:
        host = link.instance_host
        if not host:
            raise ProviderRejected("missing_instance")

        response = await self._post(
            host,
            "notes/create",
            {"i": link.access_token, "text": text, "visibility": "public"},
        )
        if response.status_code == 401:
            raise ProviderUnauthorized()
        if response.status_code not in (200, 201):
            logger.error(f"Misskey note on {host} failed: {response.status_code}")
            logger.debug(f"Response: {response.text}")
            raise ProviderRejected(f"misskey api error: {response.status_code}")
