"""
Training Journey Service
========================
Progression gates for the staff training journey:

invitation -> vision -> values -> raving fans -> skills -> hygiene
-> certification -> growth (leadership pathway)

Journey milestones are ratchets. They are modelled as a ``JourneyMilestone``
flag set that can only grow: ``JourneyState.advance()`` ORs bits in and
there is no operation that clears one, and ``apply_updates()`` rejects any
write that would turn a stored milestone back to False. The only way back
is ``TrainingJourneyService.reset_progress()``, which is admin-only.

Because every write only sets fields to True, two concurrent syncs for the
same staff member converge on the same row without locking.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Flag, auto
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rbac import UserRole
from app.services import audit_service
from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class JourneyMilestone(Flag):
    NONE = 0
    INVITATION = auto()
    VISION = auto()
    VALUES = auto()
    RAVING_FANS = auto()
    SKILLS = auto()
    HYGIENE = auto()
    CERTIFIED = auto()


# Stored column for each milestone, in journey order
MILESTONE_FIELDS: List[Tuple[JourneyMilestone, str]] = [
    (JourneyMilestone.INVITATION, "invitation_accepted"),
    (JourneyMilestone.VISION, "vision_watched"),
    (JourneyMilestone.VALUES, "values_completed"),
    (JourneyMilestone.RAVING_FANS, "raving_fans_completed"),
    (JourneyMilestone.SKILLS, "skills_completed"),
    (JourneyMilestone.HYGIENE, "hygiene_completed"),
    (JourneyMilestone.CERTIFIED, "certified"),
]

RATCHET_FIELDS = frozenset(name for _, name in MILESTONE_FIELDS) | {"onsite_access_enabled"}

CERTIFICATION_PREREQUISITES = (
    JourneyMilestone.INVITATION
    | JourneyMilestone.VISION
    | JourneyMilestone.VALUES
    | JourneyMilestone.RAVING_FANS
    | JourneyMilestone.SKILLS
    | JourneyMilestone.HYGIENE
)

# Journey steps (id, label, milestone that completes it)
JOURNEY_STEPS: List[Tuple[str, str, Optional[JourneyMilestone]]] = [
    ("invitation", "Invitation", JourneyMilestone.INVITATION),
    ("vision", "Vision", JourneyMilestone.VISION),
    ("values", "Values", JourneyMilestone.VALUES),
    ("raving_fans", "Raving Fans", JourneyMilestone.RAVING_FANS),
    ("skills", "Skills", JourneyMilestone.SKILLS),
    ("hygiene", "Hygiene", JourneyMilestone.HYGIENE),
    ("certification", "Certification", JourneyMilestone.CERTIFIED),
    ("growth", "Growth", None),
]

TRAINING_MODULES = [
    "invitation",
    "vision",
    "values",
    "raving_fans",
    "skills",
    "hygiene",
    "certification",
    "leadership_pathway",
]

# Steps a staff member completes directly; the rest are derived from signals
SELF_COMPLETED_STEPS = {
    "invitation": JourneyMilestone.INVITATION,
    "vision": JourneyMilestone.VISION,
    "raving_fans": JourneyMilestone.RAVING_FANS,
}

HYGIENE_MODULE_ID = "hygiene"


class RatchetViolation(Exception):
    """Raised when a write would turn a completed milestone back to False."""
    def __init__(self, fields: Sequence[str]):
        self.fields = list(fields)
        super().__init__(f"Journey milestones cannot be reset: {', '.join(self.fields)}")


class ModuleLockedError(Exception):
    """Raised when acting on a training module that is not unlocked yet."""
    def __init__(self, module_id: str):
        self.module_id = module_id
        super().__init__(f"Module '{module_id}' is locked")


class IncompleteQuizError(ValueError):
    """Raised when a quiz is submitted with unanswered questions."""


@dataclass(frozen=True)
class JourneyState:
    """Immutable, grow-only set of reached milestones."""
    milestones: JourneyMilestone = JourneyMilestone.NONE

    @classmethod
    def from_progress(cls, progress: Any) -> "JourneyState":
        reached = JourneyMilestone.NONE
        if progress is not None:
            for milestone, name in MILESTONE_FIELDS:
                if getattr(progress, name, False):
                    reached |= milestone
        return cls(reached)

    def has(self, milestone: JourneyMilestone) -> bool:
        return (self.milestones & milestone) == milestone

    def advance(self, milestone: JourneyMilestone) -> "JourneyState":
        return JourneyState(self.milestones | milestone)

    @property
    def ready_for_certification(self) -> bool:
        return self.has(CERTIFICATION_PREREQUISITES)

    def newly_reached(self, before: "JourneyState") -> List[JourneyMilestone]:
        return [m for m, _ in MILESTONE_FIELDS if self.has(m) and not before.has(m)]

    @property
    def current_step(self) -> str:
        for step_id, _, milestone in JOURNEY_STEPS:
            if milestone is not None and not self.has(milestone):
                return step_id
        return "growth"


@dataclass
class TrainingSignals:
    """Evidence from other records that feeds the journey."""
    culture_acknowledged: bool = False
    hygiene_completed: bool = False
    sop_acknowledgement_count: int = 0


def sync(
    progress: Any,
    signals: TrainingSignals,
    now: Optional[datetime] = None,
    sop_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    """Compute the ratchet updates implied by ``signals``.

    Returns an empty dict when nothing changes, so callers can skip the write.
    """
    threshold = settings.sop_ack_threshold if sop_threshold is None else sop_threshold
    before = JourneyState.from_progress(progress)
    after = before

    if signals.culture_acknowledged and not after.has(JourneyMilestone.VALUES):
        after = after.advance(JourneyMilestone.VALUES)
    if signals.hygiene_completed and not after.has(JourneyMilestone.HYGIENE):
        after = after.advance(JourneyMilestone.HYGIENE)
    if signals.sop_acknowledgement_count >= threshold and not after.has(JourneyMilestone.SKILLS):
        after = after.advance(JourneyMilestone.SKILLS)

    if after.ready_for_certification and not after.has(JourneyMilestone.CERTIFIED):
        after = after.advance(JourneyMilestone.CERTIFIED)

    return _updates_for(before, after, now)


def _updates_for(before: JourneyState, after: JourneyState, now: Optional[datetime]) -> Dict[str, Any]:
    newly = after.newly_reached(before)
    if not newly:
        return {}

    now = now or datetime.now(timezone.utc)
    fields = dict(MILESTONE_FIELDS)
    updates: Dict[str, Any] = {fields[m]: True for m in newly}

    if JourneyMilestone.CERTIFIED in newly:
        updates["certificate_issued_at"] = now
        updates["onsite_access_enabled"] = True
    updates["current_step"] = after.current_step
    updates["last_updated"] = now
    return updates


def apply_updates(progress: Any, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a progress write. Clearing a milestone already reached is refused."""
    regressions = [
        name for name, value in updates.items()
        if name in RATCHET_FIELDS and not value and getattr(progress, name, False)
    ]
    if regressions:
        raise RatchetViolation(regressions)
    return dict(updates)


def module_unlocks(progress: Any) -> Dict[str, bool]:
    """Which training modules are open. Invitation always is."""
    state = JourneyState.from_progress(progress)
    invited = state.has(JourneyMilestone.INVITATION)
    unlocks = {module: invited for module in TRAINING_MODULES}
    unlocks["invitation"] = True
    unlocks["leadership_pathway"] = invited and state.has(JourneyMilestone.CERTIFIED)
    return unlocks


def journey_steps(progress: Any) -> List[Dict[str, str]]:
    """Status of each journey step: completed, in_progress or locked."""
    state = JourneyState.from_progress(progress)
    onsite = bool(getattr(progress, "onsite_access_enabled", False))
    steps = []
    previous_done = True
    for step_id, label, milestone in JOURNEY_STEPS:
        done = onsite if milestone is None else state.has(milestone)
        if done:
            status = "completed"
        elif previous_done:
            status = "in_progress"
        else:
            status = "locked"
        steps.append({"id": step_id, "label": label, "status": status})
        previous_done = done
    return steps


@dataclass
class QuizResult:
    correct: int
    total: int
    score: float
    passed: bool
    answers: List[Dict[str, Any]] = field(default_factory=list)


def grade_quiz(
    questions: Sequence[Dict[str, Any]],
    answers: Union[Dict[Any, Any], Sequence[Any]],
    pass_percentage: Optional[float] = None,
) -> QuizResult:
    """Grade a module quiz. Every question must be answered."""
    if not questions:
        raise ValueError("Quiz has no questions")

    pass_mark = settings.quiz_pass_percentage if pass_percentage is None else pass_percentage
    if isinstance(answers, dict):
        selected = {int(k): v for k, v in answers.items()}
    else:
        selected = dict(enumerate(answers))

    if any(idx not in selected for idx in range(len(questions))):
        raise IncompleteQuizError("Please answer all questions before submitting")

    correct = 0
    graded = []
    for idx, question in enumerate(questions):
        is_correct = selected[idx] == question.get("correct")
        if is_correct:
            correct += 1
        graded.append({
            "question_id": idx,
            "question_text": question.get("question"),
            "selected_answer": selected[idx],
            "correct_answer": question.get("correct"),
            "is_correct": is_correct,
        })

    score = correct * 100 / len(questions)
    return QuizResult(
        correct=correct,
        total=len(questions),
        score=score,
        passed=score >= pass_mark,
        answers=graded,
    )


def serialize_progress(progress: Any) -> Dict[str, Any]:
    data = {name: bool(getattr(progress, name, False)) for _, name in MILESTONE_FIELDS}
    issued = getattr(progress, "certificate_issued_at", None)
    last_updated = getattr(progress, "last_updated", None)
    data.update({
        "id": progress.id,
        "staff_email": progress.staff_email,
        "certificate_issued_at": issued.isoformat() if issued else None,
        "onsite_access_enabled": bool(progress.onsite_access_enabled),
        "current_step": progress.current_step,
        "last_updated": last_updated.isoformat() if last_updated else None,
    })
    return data


class TrainingJourneyService:
    """Journey progress records, acknowledgements and quizzes for staff."""

    ENTITY = "TrainingJourneyProgress"

    def __init__(self, db_session: Session):
        self.db = db_session
        self.store = RecordStore(db_session)

    # ==================== PROGRESS ====================

    def get_progress(self, staff_email: str) -> Optional[Any]:
        rows = self.store.list_active(self.ENTITY, {"staff_email": staff_email}, limit=1)
        return rows[0] if rows else None

    def ensure_progress(self, staff_email: str) -> Any:
        """Return the staff member's progress row, creating it on first visit."""
        progress = self.get_progress(staff_email)
        if progress is not None:
            return progress
        try:
            progress = self.store.create(self.ENTITY, {
                "staff_email": staff_email,
                "current_step": "invitation",
                "last_updated": datetime.now(timezone.utc),
            })
            logger.info(f"Started training journey for {staff_email}")
            return progress
        except IntegrityError:
            # Another request created it first
            self.db.rollback()
            return self.get_progress(staff_email)

    def update_progress(self, progress: Any, updates: Dict[str, Any]) -> Any:
        updates = apply_updates(progress, updates)
        if not updates:
            return progress
        return self.store.update(self.ENTITY, progress.id, updates)

    def collect_signals(self, staff_email: str) -> TrainingSignals:
        culture = self.store.list_active("CultureAcknowledgement", {"staff_email": staff_email}, limit=1)
        hygiene = self.store.list_active(
            "TrainingQuizAttempt",
            {"staff_email": staff_email, "module_id": HYGIENE_MODULE_ID, "passed": True},
            limit=1,
        )
        sop_acks = self.store.list_active("SOPAcknowledgement", {"staff_email": staff_email})
        return TrainingSignals(
            culture_acknowledged=bool(culture),
            hygiene_completed=bool(hygiene),
            sop_acknowledgement_count=len({ack.sop_id for ack in sop_acks}),
        )

    def sync_progress(self, staff_email: str) -> Tuple[Any, Dict[str, Any]]:
        """Re-derive the journey from the latest records; writes only if something changed."""
        progress = self.ensure_progress(staff_email)
        updates = sync(progress, self.collect_signals(staff_email))
        if not updates:
            return progress, {}

        progress = self.update_progress(progress, updates)
        logger.info(f"Journey sync for {staff_email}: {sorted(k for k in updates if k in RATCHET_FIELDS)}")
        if updates.get("certified"):
            self._log_certified(progress)
        return progress, updates

    def complete_step(self, staff_email: str, step: str) -> Tuple[Any, Dict[str, Any]]:
        """Mark a self-completed step (invitation, vision, raving fans) as done."""
        milestone = SELF_COMPLETED_STEPS.get(step)
        if milestone is None:
            raise ValueError(f"Step '{step}' cannot be completed directly")

        progress = self.ensure_progress(staff_email)
        if not module_unlocks(progress).get(step, False):
            raise ModuleLockedError(step)

        before = JourneyState.from_progress(progress)
        updates = _updates_for(before, before.advance(milestone), None)
        if updates:
            progress = self.update_progress(progress, updates)

        # Completing a step can be the last prerequisite for certification
        progress, sync_updates = self.sync_progress(staff_email)
        updates.update(sync_updates)
        return progress, updates

    def accept_invitation(self, staff_email: str) -> Tuple[Any, Dict[str, Any]]:
        return self.complete_step(staff_email, "invitation")

    def mark_vision_watched(self, staff_email: str) -> Tuple[Any, Dict[str, Any]]:
        return self.complete_step(staff_email, "vision")

    def complete_raving_fans(self, staff_email: str) -> Tuple[Any, Dict[str, Any]]:
        return self.complete_step(staff_email, "raving_fans")

    def reset_progress(self, staff_email: str, actor_role, actor_email: Optional[str] = None) -> Any:
        """Clear every milestone. The only path that moves a ratchet backwards."""
        role = getattr(actor_role, "value", actor_role)
        if role != UserRole.ADMIN.value:
            raise PermissionError("Only an admin can reset a training journey")

        progress = self.ensure_progress(staff_email)
        reset = {name: False for name in RATCHET_FIELDS}
        reset.update({
            "certificate_issued_at": None,
            "current_step": "invitation",
            "last_updated": datetime.now(timezone.utc),
        })
        progress = self.store.update(self.ENTITY, progress.id, reset)
        audit_service.log_action(
            self.db, "journey_reset", self.ENTITY, progress.id,
            staff_email=staff_email, details={"reset_by": actor_email},
        )
        logger.warning(f"Training journey for {staff_email} reset by {actor_email}")
        return progress

    def _log_certified(self, progress: Any) -> None:
        audit_service.log_action(
            self.db, "certified", self.ENTITY, progress.id,
            staff_email=progress.staff_email,
            details={"certificate_issued_at": progress.certificate_issued_at.isoformat()
                     if progress.certificate_issued_at else None},
        )

    # ==================== ACKNOWLEDGEMENTS ====================

    def acknowledge_sop(self, staff_email: str, sop_id: str) -> Any:
        existing = self.store.list_active(
            "SOPAcknowledgement", {"staff_email": staff_email, "sop_id": sop_id}, limit=1
        )
        if existing:
            return existing[0]
        try:
            return self.store.create("SOPAcknowledgement", {"staff_email": staff_email, "sop_id": sop_id})
        except IntegrityError:
            self.db.rollback()
            return self.store.list_active(
                "SOPAcknowledgement", {"staff_email": staff_email, "sop_id": sop_id}, limit=1
            )[0]

    def acknowledge_culture(self, staff_email: str) -> Any:
        existing = self.store.list_active("CultureAcknowledgement", {"staff_email": staff_email}, limit=1)
        if existing:
            return existing[0]
        return self.store.create("CultureAcknowledgement", {"staff_email": staff_email})

    # ==================== QUIZZES ====================

    def submit_quiz(
        self,
        staff_email: str,
        module_id: str,
        questions: Sequence[Dict[str, Any]],
        answers: Union[Dict[Any, Any], Sequence[Any]],
        module_name: Optional[str] = None,
    ) -> Tuple[Any, QuizResult]:
        """Grade and record a quiz attempt."""
        progress = self.ensure_progress(staff_email)
        if not module_unlocks(progress).get(module_id, True):
            raise ModuleLockedError(module_id)

        result = grade_quiz(questions, answers)
        attempt = self.store.create("TrainingQuizAttempt", {
            "staff_email": staff_email,
            "module_id": module_id,
            "module_name": module_name or module_id,
            "total_questions": result.total,
            "correct_answers": result.correct,
            "score": result.score,
            "passed": result.passed,
            "answers": result.answers,
        })
        audit_service.log_action(
            self.db,
            "quiz_passed" if result.passed else "quiz_failed",
            "TrainingQuizAttempt",
            attempt.id,
            staff_email=staff_email,
            details={"module_id": module_id, "score": result.score,
                     "correct": result.correct, "total": result.total},
        )
        # A passed hygiene quiz feeds the journey
        if result.passed:
            self.sync_progress(staff_email)
        return attempt, result
