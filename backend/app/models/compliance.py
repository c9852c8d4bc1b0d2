"""Food-safety compliance models: critical control points, CCP checks,
staff safety score snapshots and the compliance audit trail."""

from datetime import datetime, date, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Float, Text, JSON, Index,
)

from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===================== CRITICAL CONTROL POINTS =====================

class CriticalControlPoint(Base):
    """A monitored food-safety parameter whose failure can halt service."""
    __tablename__ = "critical_control_points"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    monitoring_parameter = Column(String(200), nullable=True)  # e.g. core temperature
    check_frequency = Column(String(100), nullable=True)

    critical_limit = Column(String(50), nullable=False)  # e.g. "75°C"
    unit = Column(String(20), default="C")
    limit_direction = Column(String(3), default="min", nullable=False)  # min, max

    linked_menu_items = Column(JSON, nullable=True)  # [str]
    corrective_actions = Column(JSON, nullable=True)  # [{action, responsible_person, time_limit}]

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CriticalControlPointCheck(Base):
    """One recorded check of a CCP. Rows are never edited; corrections are new rows."""
    __tablename__ = "critical_control_point_checks"

    id = Column(Integer, primary_key=True, index=True)
    ccp_id = Column(Integer, nullable=False, index=True)
    ccp_name = Column(String(200), nullable=True)

    check_date = Column(Date, nullable=False, default=date.today, index=True)
    check_time = Column(String(5), nullable=True)  # HH:MM

    status = Column(String(10), nullable=False)  # pass, fail
    recorded_value = Column(String(50), nullable=False)
    critical_limit = Column(String(50), nullable=True)
    unit = Column(String(20), nullable=True)

    blocked_menu_items = Column(JSON, nullable=True)
    corrective_actions_triggered = Column(JSON, nullable=True)

    staff_email = Column(String(255), nullable=True, index=True)
    staff_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index('idx_ccp_check_date_ccp', 'check_date', 'ccp_id'),
    )


# ===================== STAFF SAFETY SCORES =====================

class StaffSafetyScore(Base):
    """Point-in-time safety score snapshot for a staff member."""
    __tablename__ = "staff_safety_scores"

    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String(255), nullable=False, index=True)
    calculation_date = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    overall_safety_score = Column(Float, nullable=False)
    safety_grade = Column(String(1), nullable=False)  # A, B, C, D, F
    performance_tier = Column(String(20), nullable=False)

    training_completion_score = Column(Float, default=0)
    training_courses_completed = Column(Integer, default=0)
    training_courses_required = Column(Integer, default=0)

    ccp_accuracy_percentage = Column(Float, default=100)
    ccp_checks_passed = Column(Integer, default=0)
    ccp_checks_performed = Column(Integer, default=0)

    missed_checks_percentage = Column(Float, default=0)
    missed_checks = Column(Integer, default=0)
    scheduled_checks = Column(Integer, default=0)

    incident_involvement_score = Column(Float, default=100)
    total_incidents = Column(Integer, default=0)
    critical_incidents = Column(Integer, default=0)
    major_incidents = Column(Integer, default=0)
    minor_incidents = Column(Integer, default=0)

    promotion_ready = Column(Boolean, default=False)
    shift_leader_eligible = Column(Boolean, default=False)
    extra_training_required = Column(Boolean, default=False)

    __table_args__ = (
        Index('idx_safety_score_staff_date', 'staff_email', 'calculation_date'),
    )


# ===================== AUDIT TRAIL =====================

class ComplianceAuditEntry(Base):
    """Append-only log of compliance events (CCP failures, quiz attempts, certification)."""
    __tablename__ = "compliance_audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(50), nullable=True)
    staff_email = Column(String(255), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
