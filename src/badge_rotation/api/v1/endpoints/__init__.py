"""API endpoint modules for version 1."""

from .config import router as config_router
from .moderation import router as moderation_router

__all__ = [
    "config_router",
    "moderation_router",
]
