"""Services for the NowPlaying API"""

from .api_tokens import ApiTokenService, IssuedToken, hash_token
from .dispatch import DispatchGate, Eligibility, TwitterPolicy
from .errors import (
    AlreadyLinked,
    HandshakeExpired,
    InvalidInstance,
    LinkError,
    NotAllowed,
    NotConnected,
    ProviderRejected,
    ProviderUnauthorized,
    RefreshRevoked,
    StateMismatch,
    Unauthenticated,
)
from .linking import LinkingOrchestrator, LinkResult
from .now_playing import NowPlayingService, PostResult, PostTarget, TrackData, parse_player
from .profile_service import ProfileService
from .session_manager import SessionManager

__all__ = [
    "AlreadyLinked",
    "ApiTokenService",
    "DispatchGate",
    "Eligibility",
    "HandshakeExpired",
    "InvalidInstance",
    "IssuedToken",
    "LinkError",
    "LinkResult",
    "LinkingOrchestrator",
    "NotAllowed",
    "NotConnected",
    "NowPlayingService",
    "PostResult",
    "PostTarget",
    "ProfileService",
    "ProviderRejected",
    "ProviderUnauthorized",
    "RefreshRevoked",
    "SessionManager",
    "StateMismatch",
    "TrackData",
    "TwitterPolicy",
    "Unauthenticated",
    "hash_token",
    "parse_player",
]
