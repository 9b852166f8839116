"""Version 1 API endpoints."""

from .endpoints import config_router, moderation_router

__all__ = [
    "config_router",
    "moderation_router",
]
