"""SQLAlchemy models."""

from app.models.user import User
from app.models.compliance import (
    CriticalControlPoint,
    CriticalControlPointCheck,
    StaffSafetyScore,
    ComplianceAuditEntry,
)
from app.models.training import (
    TrainingJourneyProgress,
    SOPAcknowledgement,
    CultureAcknowledgement,
    TrainingQuizAttempt,
    QuizSessionState,
)

__all__ = [
    "User",
    "CriticalControlPoint",
    "CriticalControlPointCheck",
    "StaffSafetyScore",
    "ComplianceAuditEntry",
    "TrainingJourneyProgress",
    "SOPAcknowledgement",
    "CultureAcknowledgement",
    "TrainingQuizAttempt",
    "QuizSessionState",
]
