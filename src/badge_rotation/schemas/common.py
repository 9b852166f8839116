"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Uniform envelope wrapping every moderation API response."""

    success: bool = Field(True, description="False when the request failed.")
    data: T | None = None
    error: str | None = None


def failure(message: str) -> dict[str, object]:
    """Envelope body for error responses built outside a route."""
    return {"success": False, "data": None, "error": message}
