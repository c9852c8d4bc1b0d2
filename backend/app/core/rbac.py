"""Role-Based Access Control (RBAC) utilities."""

from enum import Enum
from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from app.core.security import decode_access_token
from app.db.session import DbSession


class UserRole(str, Enum):
    """User roles for RBAC."""

    STAFF = "staff"
    MANAGER = "manager"
    OWNER = "owner"
    ADMIN = "admin"


# Role hierarchy: admin > owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.ADMIN: 4,
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class TokenData:
    """Authenticated user as seen by route handlers.

    Attributes:
        user_id: The user's database ID.
        email: The user's email address.
        role: The user's role.
        full_name: The user's display name (defaults to email prefix).
        onboarding_completed: Whether the onboarding flow has been finished.
        token_payload: The decoded JWT, kept so logout can revoke it.
    """

    def __init__(self, user_id: int, email: str, role: UserRole,
                 full_name: str = "", onboarding_completed: bool = False,
                 token_payload: Optional[Dict[str, Any]] = None):
        self.user_id = user_id
        self.id = user_id
        self.email = email
        self.role = role
        self.full_name = full_name or email.split("@")[0]
        self.onboarding_completed = onboarding_completed
        self.token_payload = token_payload or {}


def _token_from_request(request: Request) -> Optional[str]:
    """Read a bearer token from the Authorization header or the access_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            return token
    return request.cookies.get("access_token")


def _resolve_user(request: Request, db) -> TokenData:
    """Resolve the request's identity or raise IdentityUnavailable."""
    from app.services.record_store import IdentityUnavailable, RecordStore

    token = _token_from_request(request)
    payload = decode_access_token(token) if token else None
    if payload is None:
        raise IdentityUnavailable("Not authenticated")

    user = RecordStore(db).current_user(payload)
    return TokenData(
        user_id=user.id,
        email=user.email,
        role=user.role,
        full_name=user.full_name or "",
        onboarding_completed=user.onboarding_completed,
        token_payload=payload,
    )


async def get_current_user(request: Request, db: DbSession) -> TokenData:
    """Get the current authenticated user from the JWT token.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie
    """
    from app.services.record_store import IdentityUnavailable

    try:
        return _resolve_user(request, db)
    except IdentityUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_optional_current_user(request: Request, db: DbSession) -> Optional[TokenData]:
    """Get the current user if a valid token is provided, otherwise return None.

    Any identity lookup failure is reported as "no session".
    """
    from app.services.record_store import IdentityUnavailable

    try:
        return _resolve_user(request, db)
    except IdentityUnavailable:
        return None


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
OptionalCurrentUser = Annotated[Optional[TokenData], Depends(get_optional_current_user)]
