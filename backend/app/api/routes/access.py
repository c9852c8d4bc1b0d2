"""Page access and operating-mode routes."""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, OptionalCurrentUser
from app.schemas.compliance import ModeSwitchRequest
from app.services.access_guard import NAV_GROUPS, decide
from app.services.mode_session_service import (
    MODE_CONFIG,
    ModeNotPermittedError,
    UnknownModeError,
    can_access_mode,
    get_mode_registry,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/decide")
@limiter.limit("120/minute")
def decide_page_access(
    request: Request,
    current_user: OptionalCurrentUser,
    page: str = Query(..., min_length=1, max_length=100),
):
    """Decide whether the caller may open ``page`` in their current mode.

    A missing or invalid token is treated as a logged-out visitor.
    """
    mode = None
    if current_user is not None:
        mode = get_mode_registry().get(current_user.user_id).mode
    return decide(page, current_user, mode).to_dict()


@router.get("/pages")
@limiter.limit("60/minute")
def list_page_rules(request: Request):
    """The navigation table the access guard works from."""
    return [
        {
            "group": group,
            "pages": [
                {
                    "page_name": rule.page_name,
                    "label": rule.label,
                    "allowed_roles": rule.role_list,
                    "allowed_modes": [m.value for m in rule.allowed_modes],
                }
                for rule in rules
            ],
        }
        for group, rules in NAV_GROUPS
    ]


@router.get("/mode")
@limiter.limit("60/minute")
def get_current_mode(request: Request, current_user: CurrentUser):
    """Current mode plus the modes this role may switch to."""
    context = get_mode_registry().get(current_user.user_id)
    data = context.to_dict()
    data["available_modes"] = [
        mode.value for mode in MODE_CONFIG if can_access_mode(mode, current_user.role)
    ]
    return data


@router.post("/mode")
@limiter.limit("30/minute")
def switch_mode(request: Request, body: ModeSwitchRequest, current_user: CurrentUser):
    """Explicitly switch the caller's operating mode."""
    try:
        context = get_mode_registry().switch(current_user.user_id, current_user.role, body.mode)
    except UnknownModeError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ModeNotPermittedError as e:
        logger.info(f"Mode switch refused for {current_user.email}: {e}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return context.to_dict()
