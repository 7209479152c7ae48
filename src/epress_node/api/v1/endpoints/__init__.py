"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .comments import router as comments_router
from .connections import router as connections_router
from .ewp import router as ewp_router
from .install import router as install_router
from .profile import router as profile_router
from .publications import router as publications_router
from .settings import router as settings_router
from .verify import router as verify_router

__all__ = [
    "auth_router",
    "comments_router",
    "connections_router",
    "ewp_router",
    "install_router",
    "profile_router",
    "publications_router",
    "settings_router",
    "verify_router",
]
