"""Shared types and OAuth helpers for provider adapters.

Adapters are plain classes that satisfy :class:`ProviderAdapter`
structurally. Common token-endpoint handling lives in module-level helpers
so each adapter composes only what its OAuth variant needs.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import httpx

from nowplaying.shared.models import LinkingAttempt, ProviderKind, ProviderLink

from ..errors import ProviderRejected, RefreshRevoked, StateMismatch

logger = logging.getLogger(__name__)

# OAuth error codes meaning the refresh token will never work again
REVOKED_ERRORS = frozenset({"invalid_grant", "invalid_token", "invalid_request"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_state() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class ProviderCredential:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    instance_host: str | None = None


@dataclass
class Identity:
    external_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


@dataclass
class HandshakeStart:
    redirect_url: str
    state: str
    instance_host: str | None = None
    code_verifier: str | None = None


@dataclass
class CallbackParams:
    """Query parameters a provider sends back to the callback endpoint."""

    state: str | None = None
    code: str | None = None
    error: str | None = None


class ProviderAdapter(Protocol):
    kind: ProviderKind

    async def begin_handshake(self, params: dict[str, str]) -> HandshakeStart: ...

    async def complete_handshake(
        self, callback: CallbackParams, attempt: LinkingAttempt
    ) -> ProviderCredential: ...

    async def refresh(self, link: ProviderLink) -> ProviderCredential: ...

    async def identify(self, credential: ProviderCredential) -> Identity: ...

    async def revoke(self, link: ProviderLink) -> None: ...

    async def close(self) -> None: ...


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def check_callback(callback: CallbackParams, attempt: LinkingAttempt) -> None:
    """Reject callbacks carrying a provider error or a foreign state."""
    if callback.error:
        logger.warning(f"{attempt.provider} callback returned error: {callback.error}")
        raise ProviderRejected(callback.error)
    if not callback.state or not secrets.compare_digest(callback.state, attempt.state):
        raise StateMismatch()


def response_json(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, or return {} for anything else."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def expiry_from(data: dict[str, Any], now: datetime) -> datetime | None:
    expires_in = data.get("expires_in")
    if not isinstance(expires_in, int | float) or expires_in <= 0:
        return None
    return now + timedelta(seconds=expires_in)


async def post_token_request(
    http: httpx.AsyncClient,
    url: str,
    form: dict[str, str],
    *,
    client_id: str,
    client_secret: str,
    provider: ProviderKind,
) -> dict[str, Any]:
    """POST to a token endpoint with client Basic auth; return the JSON body.

    Network failures become :class:`ProviderRejected`. Non-200 responses are
    returned to the caller unchanged via the ``_status`` key so refresh can
    tell revoked grants apart from transient errors.
    """
    try:
        response = await http.post(
            url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            auth=(client_id, client_secret),
        )
    except httpx.TimeoutException:
        logger.error(f"Timeout calling {provider} token endpoint")
        raise ProviderRejected("timeout") from None
    except httpx.HTTPError as e:
        logger.error(f"{provider} token endpoint error: {e}")
        raise ProviderRejected("network_error") from e

    data = response_json(response)
    if response.status_code != 200:
        logger.error(f"{provider} token endpoint returned {response.status_code}")
        logger.debug(f"Response: {response.text}")
    data["_status"] = response.status_code
    return data


def credential_from_grant(
    data: dict[str, Any],
    now: datetime,
    provider: ProviderKind,
    *,
    fallback_refresh_token: str | None = None,
) -> ProviderCredential:
    """Build a credential from an authorization-code grant response."""
    if data.get("_status") != 200:
        raise ProviderRejected("token_exchange_failed")
    access_token = data.get("access_token")
    if not access_token:
        logger.error(f"No access_token in {provider} response")
        raise ProviderRejected("no_access_token")
    return ProviderCredential(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or fallback_refresh_token,
        expires_at=expiry_from(data, now),
    )


def credential_from_refresh(
    data: dict[str, Any],
    now: datetime,
    provider: ProviderKind,
    refresh_token: str,
) -> ProviderCredential:
    """Build a credential from a refresh-token grant response.

    ``invalid_grant``-class errors on 400/401 mean the grant is gone for
    good; everything else is a transient rejection.
    """
    status = data.get("_status")
    if status in (400, 401) and data.get("error") in REVOKED_ERRORS:
        logger.warning(f"{provider} refresh token revoked: {data.get('error')}")
        raise RefreshRevoked()
    if status != 200:
        raise ProviderRejected("refresh_failed")
    return credential_from_grant(
        data, now, provider, fallback_refresh_token=refresh_token
    )


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
