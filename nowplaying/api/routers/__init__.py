"""API Routers package

Routers are organized by feature domain.
"""

from . import (
    auth_router,
    miauth_router,
    post_router,
    settings_router,
    system_router,
    twitter_router,
)

__all__ = [
    "auth_router",
    "miauth_router",
    "post_router",
    "settings_router",
    "system_router",
    "twitter_router",
]
