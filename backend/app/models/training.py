"""Training journey models: per-staff journey progress, acknowledgements,
quiz attempts and saved quiz session state."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, JSON, UniqueConstraint,
)

from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrainingJourneyProgress(Base):
    """Where a staff member is on the onboarding-to-certification journey.

    The boolean milestone columns only ever move from False to True; see
    app.services.training_journey_service for the enforcement.
    """
    __tablename__ = "training_journey_progress"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, unique=True, index=True)

    invitation_accepted = Column(Boolean, default=False, nullable=False)
    vision_watched = Column(Boolean, default=False, nullable=False)
    values_completed = Column(Boolean, default=False, nullable=False)
    raving_fans_completed = Column(Boolean, default=False, nullable=False)
    skills_completed = Column(Boolean, default=False, nullable=False)
    hygiene_completed = Column(Boolean, default=False, nullable=False)
    certified = Column(Boolean, default=False, nullable=False)

    certificate_issued_at = Column(DateTime(timezone=True), nullable=True)
    onsite_access_enabled = Column(Boolean, default=False, nullable=False)
    current_step = Column(String(30), default="invitation")
    last_updated = Column(DateTime(timezone=True), default=_utcnow)


class SOPAcknowledgement(Base):
    """A staff member's sign-off that they have read a standard operating procedure."""
    __tablename__ = "sop_acknowledgements"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, index=True)
    sop_id = Column(String(100), nullable=False)
    acknowledged_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint('staff_email', 'sop_id', name='uq_sop_ack_staff_sop'),
    )


class CultureAcknowledgement(Base):
    """Acknowledgement of the brand values (culture module)."""
    __tablename__ = "culture_acknowledgements"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, index=True)
    acknowledged_at = Column(DateTime(timezone=True), default=_utcnow)


class TrainingQuizAttempt(Base):
    """A graded module quiz submission."""
    __tablename__ = "training_quiz_attempts"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, index=True)
    module_id = Column(String(50), nullable=False, index=True)
    module_name = Column(String(200), nullable=True)
    total_questions = Column(Integer, nullable=False)
    correct_answers = Column(Integer, nullable=False)
    score = Column(Float, nullable=False)
    passed = Column(Boolean, nullable=False)
    answers = Column(JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), default=_utcnow)


class QuizSessionState(Base):
    """In-progress quiz state saved so a refresh does not lose answers."""
    __tablename__ = "quiz_session_states"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, index=True)
    quiz_id = Column(String(100), nullable=False)
    state = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint('staff_email', 'quiz_id', name='uq_quiz_state_staff_quiz'),
    )
