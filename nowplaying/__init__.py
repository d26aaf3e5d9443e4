"""Spotify NowPlaying backend: account linking and now-playing posting."""

__version__ = "2.0.0"
