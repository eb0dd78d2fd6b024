"""FastAPI dependencies for authentication and authorization."""

from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, Header, status
from sqlalchemy.orm import Session

from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.security import verify_access_token
from examdesk.db.session import get_db
from examdesk.models.user import User, UserRole


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db),
) -> User:
    """Dependency to get the current authenticated user from a bearer JWT."""
    if not authorization:
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="Authorization header missing",
        )

    # Extract token from "Bearer <token>"
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Invalid authorization scheme")
    except ValueError:
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="Invalid authorization header format. Expected: Bearer <token>",
        )

    try:
        payload = verify_access_token(token)
        user_id = UUID(payload["sub"])
        role = payload["role"]
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message=f"Invalid or expired token: {e}",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="User not found",
        )

    if not user.is_active:
        raise_app_error(
            status_code=status.HTTP_403_FORBIDDEN,
            code="FORBIDDEN",
            message="User account is inactive",
        )

    # Token role doesn't match DB role - token is stale
    if user.role != role:
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="Token role mismatch. Please login again.",
        )

    return user


def require_roles(*allowed_roles: UserRole):
    """Dependency factory to require specific roles."""

    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if UserRole(current_user.role) not in allowed_roles:
            raise_app_error(
                status_code=status.HTTP_403_FORBIDDEN,
                code="FORBIDDEN",
                message=f"Access denied. Required roles: {[r.value for r in allowed_roles]}",
            )
        return current_user

    return role_checker


require_grader = require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)
