"""Data models for users and dashboard sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A user anchored by their Spotify account.

    Only hashes of the posting tokens are kept; ``api_url_token_hint`` holds
    the last characters of the URL token for display.
    """

    id: str
    spotify_user_id: str
    display_name: str | None = None
    avatar_url: str | None = None
    api_url_token_hash: str = ""
    api_url_token_hint: str = ""
    api_url_token_rotated_at: datetime | None = None
    api_header_token_hash: str | None = None
    api_header_token_enabled: bool = False
    api_header_token_rotated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Session:
    """Dashboard session record keyed by the hash of its opaque id."""

    token_hash: str
    user_id: str
    expires_at: datetime
    created_at: datetime | None = None
