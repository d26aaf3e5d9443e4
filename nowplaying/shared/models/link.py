"""Data models for provider links and in-flight linking attempts."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum


class ProviderKind(StrEnum):
    """External providers a user can link.

    Spotify anchors the user; Misskey and Twitter are optional posting
    destinations.
    """

    SPOTIFY = "spotify"
    MISSKEY = "misskey"
    TWITTER = "twitter"


@dataclass
class ProviderLink:
    """A stored, usable credential for one (user, provider) pair."""

    user_id: str
    provider: ProviderKind
    access_token: str
    external_id: str = ""
    username: str = ""
    avatar_url: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    instance_host: str | None = None
    connected_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.provider = ProviderKind(self.provider)

    def is_expired(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        """Non-expiring credentials (no ``expires_at``) are never expired."""
        if self.expires_at is None:
            return False
        return self.expires_at - margin <= now

    def with_credential(
        self,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> ProviderLink:
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )


@dataclass
class LinkingAttempt:
    """Server-side state for a handshake that spans a provider redirect.

    ``state`` is the CSRF value sent to the provider (the MiAuth session id
    for Misskey). ``user_id`` is empty for the Spotify login flow.
    """

    state: str
    provider: ProviderKind
    user_id: str | None = None
    instance_host: str | None = None
    code_verifier: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        self.provider = ProviderKind(self.provider)

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        if self.created_at is None:
            return True
        return self.created_at + ttl <= now
