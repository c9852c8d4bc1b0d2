"""Authentication routes."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser
from app.core.security import create_access_token, revoke_token, verify_password
from app.db.session import DbSession
from app.models.user import User
from app.schemas.auth import LoginRequest, Token
from app.schemas.user import UserResponse
from app.services.mode_session_service import get_mode_registry

logger = logging.getLogger("auth")

router = APIRouter()


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest, db: DbSession):
    """Authenticate user, return a JWT token and start a fresh mode session."""
    client_ip = request.client.host if request.client else "unknown"
    user = db.query(User).filter(User.email == login_request.email).first()

    if not user or not verify_password(login_request.password, user.password_hash):
        logger.warning(f"Failed login attempt for email: {login_request.email} from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {login_request.email} (ID: {user.id}) from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    context = get_mode_registry().start(user.id)
    logger.info(f"Successful login: {user.email} (ID: {user.id}, role: {user.role.value}) from IP: {client_ip}")
    token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )
    return Token(access_token=token, mode=context.mode.value)


@router.get("/me", response_model=UserResponse)
@limiter.limit("60/minute")
def get_current_user_info(request: Request, current_user: CurrentUser, db: DbSession):
    """Get current authenticated user info."""
    user = db.query(User).filter(User.id == current_user.user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post("/logout")
@limiter.limit("30/minute")
def logout(request: Request, current_user: CurrentUser):
    """Revoke the current token and discard the user's mode session."""
    revoke_token(current_user.token_payload)
    get_mode_registry().end(current_user.user_id)
    logger.info(f"User logged out: {current_user.email} (ID: {current_user.user_id})")
    return {"message": "Logged out successfully"}
