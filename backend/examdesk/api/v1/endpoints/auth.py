"""Authentication endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.dependencies import get_current_user
from examdesk.core.logging import get_logger
from examdesk.core.security import create_access_token, verify_password
from examdesk.db.session import get_db
from examdesk.models.user import User
from examdesk.schemas.auth import LoginRequest, TokenResponse, UserResponse

logger = get_logger(__name__)

router = APIRouter(tags=["Auth"])


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, name=user.name, email=user.email, role=user.role)


@router.post(
    "/login",
    response_model=TokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Log in",
    description="Exchange email and password for a bearer access token.",
)
async def login(
    request_data: LoginRequest,
    db: Session = Depends(get_db),
) -> TokenResponse:
    user = db.query(User).filter(User.email == request_data.email).first()

    # Generic error for invalid credentials (don't reveal if email exists)
    if not user or not user.password_hash or not verify_password(
        request_data.password, user.password_hash
    ):
        logger.info("Login failed", extra={"event": "auth_login_failed"})
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="Invalid email or password",
        )

    if not user.is_active:
        raise_app_error(
            status_code=status.HTTP_403_FORBIDDEN,
            code="FORBIDDEN",
            message="User account is inactive",
        )

    return TokenResponse(
        access_token=create_access_token(str(user.id), user.role),
        user=_user_response(user),
    )


@router.get("/me", response_model=UserResponse, summary="Current user")
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return _user_response(current_user)
