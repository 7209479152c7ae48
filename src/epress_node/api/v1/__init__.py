"""Version 1 API endpoints."""

from .endpoints import (
    auth_router,
    comments_router,
    connections_router,
    ewp_router,
    install_router,
    profile_router,
    publications_router,
    settings_router,
    verify_router,
)

__all__ = [
    "auth_router",
    "publications_router",
    "comments_router",
    "verify_router",
    "connections_router",
    "profile_router",
    "install_router",
    "settings_router",
    "ewp_router",
]
