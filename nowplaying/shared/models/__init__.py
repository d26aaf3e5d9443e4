"""Shared data models for the NowPlaying backend."""

from .link import LinkingAttempt, ProviderKind, ProviderLink
from .user import Session, User

__all__ = [
    "LinkingAttempt",
    "ProviderKind",
    "ProviderLink",
    "Session",
    "User",
]
