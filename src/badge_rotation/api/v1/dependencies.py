"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from badge_rotation.core.errors import PermissionDeniedError
from badge_rotation.core.security import decode_subject
from badge_rotation.db.session import get_db
from badge_rotation.models import User
from badge_rotation.services.rotation import RotationServices, get_rotation_services

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

# Type alias for the rotation services bundle
ServicesDep = Annotated[RotationServices, Depends(get_rotation_services)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    subject = decode_subject(credentials.credentials)
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, subject)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]


def require_operator(user: CurrentUserDep, services: ServicesDep) -> User:
    """Allow only configured operator accounts through."""
    if user.id not in services.settings.operator_user_ids:
        raise PermissionDeniedError("Operator access required")
    return user


OperatorDep = Annotated[User, Depends(require_operator)]
