"""
Staff Safety Score Service
==========================
Derives a staff member's safety score from training completion, CCP check
accuracy, on-time checks and incident involvement, and reads back the
latest stored snapshot.

The derivation is a pure function (``derive_safety_score``); the service
class gathers the inputs from the record store and appends snapshots.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.services.ccp_lockdown_service import CheckStatus
from app.services.record_store import RecordStore
from app.services.training_journey_service import (
    CERTIFICATION_PREREQUISITES,
    JourneyState,
    MILESTONE_FIELDS,
)

logger = logging.getLogger(__name__)


GRADE_THRESHOLDS = [
    (90.0, "A"),
    (75.0, "B"),
    (60.0, "C"),
    (40.0, "D"),
]

PERFORMANCE_TIERS = {
    "A": "exemplary",
    "B": "proficient",
    "C": "developing",
    "D": "concerning",
    "F": "concerning",
}

# Training courses that count towards completion: the six gating milestones
REQUIRED_TRAINING_MILESTONES = [
    milestone for milestone, _ in MILESTONE_FIELDS if milestone in CERTIFICATION_PREREQUISITES
]


def safety_grade(overall_score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if overall_score >= threshold:
            return grade
    return "F"


def performance_tier(grade: str) -> str:
    return PERFORMANCE_TIERS.get(grade, "concerning")


PART_OF_WHOLE = [
    ("training_courses_completed", "training_courses_required"),
    ("ccp_checks_passed", "ccp_checks_performed"),
    ("missed_checks", "scheduled_checks"),
]


@dataclass
class SafetyScoreInputs:
    """Raw counts the score is derived from."""
    training_courses_completed: int = 0
    training_courses_required: int = 0
    ccp_checks_passed: int = 0
    ccp_checks_performed: int = 0
    missed_checks: int = 0
    scheduled_checks: int = 0
    critical_incidents: int = 0
    major_incidents: int = 0
    minor_incidents: int = 0

    @property
    def total_incidents(self) -> int:
        return self.critical_incidents + self.major_incidents + self.minor_incidents

    def __post_init__(self):
        for name, value in asdict(self).items():
            if value < 0:
                raise ValueError(f"{name} must not be negative")
        for part, whole in PART_OF_WHOLE:
            if getattr(self, part) > getattr(self, whole):
                raise ValueError(f"{part} cannot exceed {whole}")


def _percentage(part: int, whole: int, empty: float) -> float:
    if whole <= 0:
        return empty
    return 100.0 * part / whole


def derive_safety_score(inputs: SafetyScoreInputs, config: Optional[Settings] = None) -> Dict[str, Any]:
    """Compute every derived field of a StaffSafetyScore from raw counts."""
    config = config or default_settings

    training = _percentage(inputs.training_courses_completed, inputs.training_courses_required, 0.0)
    # No checks performed means nothing was got wrong
    ccp_accuracy = _percentage(inputs.ccp_checks_passed, inputs.ccp_checks_performed, 100.0)
    missed = _percentage(inputs.missed_checks, inputs.scheduled_checks, 0.0)

    penalty = (
        inputs.critical_incidents * config.incident_weight_critical
        + inputs.major_incidents * config.incident_weight_major
        + inputs.minor_incidents * config.incident_weight_minor
    )
    incidents = max(0.0, 100.0 - penalty)

    weights = (
        (training, config.score_weight_training),
        (ccp_accuracy, config.score_weight_ccp_accuracy),
        (100.0 - missed, config.score_weight_on_time_checks),
        (incidents, config.score_weight_incidents),
    )
    total_weight = sum(w for _, w in weights)
    overall = sum(value * w for value, w in weights) / total_weight
    overall = round(min(100.0, max(0.0, overall)), 2)

    grade = safety_grade(overall)
    good_grade = grade in ("A", "B")

    result = asdict(inputs)
    result.update({
        "training_completion_score": round(training, 2),
        "ccp_accuracy_percentage": round(ccp_accuracy, 2),
        "missed_checks_percentage": round(missed, 2),
        "incident_involvement_score": round(incidents, 2),
        "total_incidents": inputs.total_incidents,
        "overall_safety_score": overall,
        "safety_grade": grade,
        "performance_tier": performance_tier(grade),
        "promotion_ready": good_grade and inputs.total_incidents <= config.promotion_max_incidents,
        "shift_leader_eligible": good_grade and inputs.critical_incidents == 0 and training >= 100.0,
        "extra_training_required": grade in ("D", "F") or training < 100.0,
    })
    return result


def serialize_score(score) -> Dict[str, Any]:
    return {
        "id": score.id,
        "staff_email": score.staff_email,
        "calculation_date": score.calculation_date.isoformat() if score.calculation_date else None,
        "overall_safety_score": score.overall_safety_score,
        "safety_grade": score.safety_grade,
        "performance_tier": score.performance_tier,
        "training_completion_score": score.training_completion_score,
        "training_courses_completed": score.training_courses_completed,
        "training_courses_required": score.training_courses_required,
        "ccp_accuracy_percentage": score.ccp_accuracy_percentage,
        "ccp_checks_passed": score.ccp_checks_passed,
        "ccp_checks_performed": score.ccp_checks_performed,
        "missed_checks_percentage": score.missed_checks_percentage,
        "missed_checks": score.missed_checks,
        "scheduled_checks": score.scheduled_checks,
        "incident_involvement_score": score.incident_involvement_score,
        "total_incidents": score.total_incidents,
        "critical_incidents": score.critical_incidents,
        "major_incidents": score.major_incidents,
        "minor_incidents": score.minor_incidents,
        "promotion_ready": score.promotion_ready,
        "shift_leader_eligible": score.shift_leader_eligible,
        "extra_training_required": score.extra_training_required,
    }


class SafetyScoreService:
    """Reads and recalculates staff safety score snapshots."""

    ENTITY = "StaffSafetyScore"

    def __init__(self, db_session: Session):
        self.db = db_session
        self.store = RecordStore(db_session)

    def read_latest(self, staff_email: str) -> Optional[Any]:
        """Most recent snapshot for the staff member, or None."""
        rows = self.store.list_active(
            self.ENTITY, {"staff_email": staff_email}, order_by="-calculation_date", limit=1
        )
        return rows[0] if rows else None

    def gather_inputs(
        self,
        staff_email: str,
        missed_checks: int = 0,
        scheduled_checks: int = 0,
        critical_incidents: int = 0,
        major_incidents: int = 0,
        minor_incidents: int = 0,
    ) -> SafetyScoreInputs:
        """Training and CCP figures come from the store; the rest are supplied."""
        progress_rows = self.store.list_active(
            "TrainingJourneyProgress", {"staff_email": staff_email}, limit=1
        )
        state = JourneyState.from_progress(progress_rows[0] if progress_rows else None)
        completed = sum(1 for m in REQUIRED_TRAINING_MILESTONES if state.has(m))

        checks = self.store.list_active("CriticalControlPointCheck", {"staff_email": staff_email})
        passed = sum(1 for c in checks if c.status == CheckStatus.PASS.value)

        return SafetyScoreInputs(
            training_courses_completed=completed,
            training_courses_required=len(REQUIRED_TRAINING_MILESTONES),
            ccp_checks_passed=passed,
            ccp_checks_performed=len(checks),
            missed_checks=missed_checks,
            scheduled_checks=scheduled_checks,
            critical_incidents=critical_incidents,
            major_incidents=major_incidents,
            minor_incidents=minor_incidents,
        )

    def recalculate(self, staff_email: str, **counts: int) -> Any:
        """Derive a fresh score and append it as a new snapshot."""
        inputs = self.gather_inputs(staff_email, **counts)
        derived = derive_safety_score(inputs)
        derived["staff_email"] = staff_email
        derived["calculation_date"] = datetime.now(timezone.utc)

        score = self.store.create(self.ENTITY, derived)
        logger.info(
            f"Safety score for {staff_email}: {score.overall_safety_score} "
            f"({score.safety_grade}, {score.performance_tier})"
        )
        return score
