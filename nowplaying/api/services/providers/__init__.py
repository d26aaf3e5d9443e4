"""Provider adapters, one per ProviderKind."""

from nowplaying.shared.models import ProviderKind

from .base import (
    CallbackParams,
    HandshakeStart,
    Identity,
    ProviderAdapter,
    ProviderCredential,
    utc_now,
)
from .misskey import MisskeyAdapter, normalize_instance_host
from .spotify import SpotifyAdapter
from .twitter import TwitterAdapter

ProviderRegistry = dict[ProviderKind, ProviderAdapter]


def build_registry(
    spotify: SpotifyAdapter,
    misskey: MisskeyAdapter,
    twitter: TwitterAdapter,
) -> ProviderRegistry:
    return {
        ProviderKind.SPOTIFY: spotify,
        ProviderKind.MISSKEY: misskey,
        ProviderKind.TWITTER: twitter,
    }


__all__ = [
    "CallbackParams",
    "HandshakeStart",
    "Identity",
    "MisskeyAdapter",
    "ProviderAdapter",
    "ProviderCredential",
    "ProviderRegistry",
    "SpotifyAdapter",
    "TwitterAdapter",
    "build_registry",
    "normalize_instance_host",
    "utc_now",
]
