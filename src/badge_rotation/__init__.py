"""Rotating community moderation badges."""

__version__ = "0.1.0"
