"""User schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr

from app.core.rbac import UserRole


class UserResponse(BaseModel):
    """User response schema."""

    id: int
    email: EmailStr
    full_name: Optional[str] = None
    role: UserRole
    onboarding_completed: bool
    is_active: bool

    model_config = {"from_attributes": True}
