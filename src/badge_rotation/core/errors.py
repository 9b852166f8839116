"""Exception hierarchy shared by the rotation services.

Every error a caller can provoke derives from :class:`RotationError`; the API
layer maps each subclass to an HTTP status code and an error envelope.
"""

from __future__ import annotations


class RotationError(RuntimeError):
    """Base exception raised for rotation-engine failures."""

    status_code = 400


class InvalidRequestError(RotationError):
    """Raised when input is malformed; detected before any write happens."""

    status_code = 422


class NotFoundError(RotationError):
    """Raised when a referenced badge, user or scope does not exist."""

    status_code = 404


class PermissionDeniedError(RotationError):
    """Raised when the caller may not perform an operator-only action."""

    status_code = 403


class PreconditionFailedError(RotationError):
    """Raised when the target exists but is not in the required state.

    Nothing has been written when this is raised.
    """

    status_code = 409


class StaleStateError(PreconditionFailedError):
    """Raised when a concurrent transaction changed the row first."""
