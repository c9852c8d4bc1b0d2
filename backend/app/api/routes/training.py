"""Training journey routes: progress, steps, acknowledgements and quizzes."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, RequireAdmin
from app.db.session import DbSession
from app.schemas.training import QuizStatePayload, QuizSubmission, SOPAcknowledgementCreate
from app.services.quiz_state_service import QuizState, QuizStateStore
from app.services.training_journey_service import (
    IncompleteQuizError,
    ModuleLockedError,
    RatchetViolation,
    TrainingJourneyService,
    journey_steps,
    module_unlocks,
    serialize_progress,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _journey_payload(progress, updates=None) -> dict:
    return {
        "progress": serialize_progress(progress),
        "steps": journey_steps(progress),
        "modules": module_unlocks(progress),
        "updated_fields": sorted(k for k in (updates or {}) if k != "last_updated"),
    }


# ==================== JOURNEY ====================

@router.get("/journey")
@limiter.limit("60/minute")
def get_journey(request: Request, db: DbSession, current_user: CurrentUser):
    """The caller's journey, synced against their latest acknowledgements and quizzes."""
    progress, updates = TrainingJourneyService(db).sync_progress(current_user.email)
    return _journey_payload(progress, updates)


@router.post("/journey/sync")
@limiter.limit("30/minute")
def sync_journey(request: Request, db: DbSession, current_user: CurrentUser):
    try:
        progress, updates = TrainingJourneyService(db).sync_progress(current_user.email)
    except RatchetViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _journey_payload(progress, updates)


@router.post("/journey/steps/{step}")
@limiter.limit("30/minute")
def complete_step(request: Request, step: str, db: DbSession, current_user: CurrentUser):
    """Complete invitation, vision or raving_fans."""
    try:
        progress, updates = TrainingJourneyService(db).complete_step(current_user.email, step)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ModuleLockedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except RatchetViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _journey_payload(progress, updates)


@router.get("/journey/modules")
@limiter.limit("60/minute")
def get_modules(request: Request, db: DbSession, current_user: CurrentUser):
    """Which training modules are unlocked for the caller."""
    progress = TrainingJourneyService(db).ensure_progress(current_user.email)
    return module_unlocks(progress)


@router.post("/journey/{staff_email}/reset")
@limiter.limit("10/minute")
def reset_journey(request: Request, staff_email: str, db: DbSession, current_user: RequireAdmin):
    """Admin-only: clear every milestone of a staff member's journey."""
    progress = TrainingJourneyService(db).reset_progress(
        staff_email, current_user.role, actor_email=current_user.email
    )
    return _journey_payload(progress)


# ==================== ACKNOWLEDGEMENTS ====================

@router.post("/acknowledgements/sop", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def acknowledge_sop(request: Request, body: SOPAcknowledgementCreate, db: DbSession, current_user: CurrentUser):
    service = TrainingJourneyService(db)
    service.acknowledge_sop(current_user.email, body.sop_id)
    progress, updates = service.sync_progress(current_user.email)
    return _journey_payload(progress, updates)


@router.post("/acknowledgements/culture", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def acknowledge_culture(request: Request, db: DbSession, current_user: CurrentUser):
    service = TrainingJourneyService(db)
    service.acknowledge_culture(current_user.email)
    progress, updates = service.sync_progress(current_user.email)
    return _journey_payload(progress, updates)


# ==================== QUIZZES ====================

@router.post("/quizzes/{module_id}/submit")
@limiter.limit("30/minute")
def submit_quiz(
    request: Request,
    module_id: str,
    body: QuizSubmission,
    db: DbSession,
    current_user: CurrentUser,
):
    """Grade a module quiz and record the attempt."""
    service = TrainingJourneyService(db)
    try:
        attempt, result = service.submit_quiz(
            current_user.email,
            module_id,
            [q.model_dump() for q in body.questions],
            body.answers,
            module_name=body.module_name,
        )
    except IncompleteQuizError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ModuleLockedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    progress = service.get_progress(current_user.email)
    return {
        "attempt_id": attempt.id,
        "module_id": module_id,
        "score": result.score,
        "correct_answers": result.correct,
        "total_questions": result.total,
        "passed": result.passed,
        "answers": result.answers,
        "journey": _journey_payload(progress),
    }


@router.get("/quiz-state/{quiz_id}")
@limiter.limit("120/minute")
def load_quiz_state(request: Request, quiz_id: str, db: DbSession, current_user: CurrentUser):
    return QuizStateStore(db).load(current_user.email, quiz_id).to_dict()


@router.put("/quiz-state/{quiz_id}")
@limiter.limit("120/minute")
def save_quiz_state(
    request: Request,
    quiz_id: str,
    body: QuizStatePayload,
    db: DbSession,
    current_user: CurrentUser,
):
    state = QuizState.from_dict(body.model_dump())
    return QuizStateStore(db).save(current_user.email, quiz_id, state).to_dict()


@router.delete("/quiz-state/{quiz_id}")
@limiter.limit("60/minute")
def clear_quiz_state(request: Request, quiz_id: str, db: DbSession, current_user: CurrentUser):
    cleared = QuizStateStore(db).clear(current_user.email, quiz_id)
    return {"cleared": cleared}
