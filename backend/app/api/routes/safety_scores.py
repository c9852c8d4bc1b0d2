"""Staff safety score routes."""

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, RequireManager, ROLE_HIERARCHY, UserRole
from app.db.session import DbSession
from app.schemas.compliance import SafetyScoreCounts, SafetyScorePreview
from app.services.safety_score_service import (
    SafetyScoreInputs,
    SafetyScoreService,
    derive_safety_score,
    serialize_score,
)

router = APIRouter()


@router.get("/{staff_email}/latest")
@limiter.limit("60/minute")
def get_latest_score(request: Request, staff_email: str, db: DbSession, current_user: CurrentUser):
    """Latest safety score snapshot. Staff may only read their own."""
    is_manager = ROLE_HIERARCHY.get(current_user.role, 0) >= ROLE_HIERARCHY[UserRole.MANAGER]
    if staff_email != current_user.email and not is_manager:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view another staff member's score")

    score = SafetyScoreService(db).read_latest(staff_email)
    if score is None:
        return {
            "available": False,
            "staff_email": staff_email,
            "message": "No safety score available yet",
        }
    return {"available": True, **serialize_score(score)}


@router.post("/{staff_email}/recalculate", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def recalculate_score(
    request: Request,
    staff_email: str,
    body: SafetyScoreCounts,
    db: DbSession,
    current_user: RequireManager,
):
    """Derive and store a fresh snapshot for a staff member."""
    score = SafetyScoreService(db).recalculate(staff_email, **body.model_dump())
    return {"available": True, **serialize_score(score)}


@router.post("/preview")
@limiter.limit("60/minute")
def preview_score(request: Request, body: SafetyScorePreview, current_user: CurrentUser):
    """Derive a score from supplied counts without storing anything."""
    return derive_safety_score(SafetyScoreInputs(**body.model_dump()))
