"""Tests for staff safety score derivation and snapshots."""

import pytest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models.compliance import StaffSafetyScore
from app.services.ccp_lockdown_service import CCPLockdownService
from app.services.safety_score_service import (
    SafetyScoreInputs,
    SafetyScoreService,
    derive_safety_score,
    performance_tier,
    safety_grade,
)
from app.services.training_journey_service import TrainingJourneyService


API = "/api/v1"


def _perfect(**overrides):
    values = dict(
        training_courses_completed=6,
        training_courses_required=6,
        ccp_checks_passed=10,
        ccp_checks_performed=10,
        missed_checks=0,
        scheduled_checks=10,
    )
    values.update(overrides)
    return SafetyScoreInputs(**values)


class TestGrades:
    """Tests for grade thresholds and performance tiers."""

    @pytest.mark.parametrize("score,grade", [
        (100, "A"), (90, "A"), (89.999, "B"), (75, "B"), (74.999, "C"),
        (60, "C"), (59.9, "D"), (40, "D"), (39.9, "F"), (0, "F"),
    ])
    def test_grade_boundaries(self, score, grade):
        """Test each grade starts exactly at its threshold."""
        assert safety_grade(score) == grade

    def test_tiers(self):
        """Test every grade maps onto a performance tier."""
        assert performance_tier("A") == "exemplary"
        assert performance_tier("B") == "proficient"
        assert performance_tier("C") == "developing"
        assert performance_tier("D") == "concerning"
        assert performance_tier("F") == "concerning"


class TestDerivation:
    """Tests for the pure score derivation."""

    def test_perfect_record(self):
        """Test a clean record scores 100 and unlocks every flag."""
        result = derive_safety_score(_perfect())
        assert result["overall_safety_score"] == 100.0
        assert result["safety_grade"] == "A"
        assert result["promotion_ready"] is True
        assert result["shift_leader_eligible"] is True
        assert result["extra_training_required"] is False

    def test_no_checks_counts_as_full_accuracy(self):
        """Test zero CCP checks performed gives full accuracy."""
        result = derive_safety_score(_perfect(ccp_checks_passed=0, ccp_checks_performed=0))
        assert result["ccp_accuracy_percentage"] == 100.0

    def test_no_required_training_scores_zero(self):
        """Test zero required courses gives a zero training score."""
        result = derive_safety_score(_perfect(training_courses_completed=0, training_courses_required=0))
        assert result["training_completion_score"] == 0.0
        assert result["extra_training_required"] is True

    def test_incident_penalty(self):
        """Test incidents subtract their configured weights."""
        result = derive_safety_score(_perfect(critical_incidents=1, major_incidents=2, minor_incidents=1))
        # 100 - (25 + 20 + 3)
        assert result["incident_involvement_score"] == 52.0
        assert result["total_incidents"] == 4

    def test_incident_score_floors_at_zero(self):
        """Test the incident score never goes below zero."""
        result = derive_safety_score(_perfect(critical_incidents=10))
        assert result["incident_involvement_score"] == 0.0

    def test_weighted_overall(self):
        """Test the overall score is the weighted mean of the components."""
        # training 50, ccp 80, on-time 90, incidents 100
        inputs = _perfect(
            training_courses_completed=3,
            ccp_checks_passed=8,
            missed_checks=1,
        )
        result = derive_safety_score(inputs)
        assert result["overall_safety_score"] == pytest.approx(0.3 * 50 + 0.3 * 80 + 0.2 * 90 + 0.2 * 100)
        assert result["safety_grade"] == "B"
        assert result["extra_training_required"] is True
        assert result["shift_leader_eligible"] is False

    def test_single_incident_blocks_promotion_by_default(self):
        """Test one incident blocks promotion but not shift leading."""
        result = derive_safety_score(_perfect(minor_incidents=1))
        assert result["safety_grade"] == "A"
        assert result["promotion_ready"] is False
        assert result["shift_leader_eligible"] is True

    def test_critical_incident_blocks_shift_leader(self):
        """Test a critical incident blocks shift-leader eligibility."""
        result = derive_safety_score(_perfect(critical_incidents=1))
        assert result["shift_leader_eligible"] is False

    def test_configurable_policy(self):
        """Test weights and promotion limit come from settings."""
        config = Settings(promotion_max_incidents=2, incident_weight_minor=0)
        result = derive_safety_score(_perfect(minor_incidents=2), config)
        assert result["incident_involvement_score"] == 100.0
        assert result["promotion_ready"] is True


class TestSafetyScoreService:
    """Tests for reading and recalculating stored snapshots."""

    def test_read_latest_none(self, db_session: Session):
        """Test reading a score for someone never scored returns None."""
        assert SafetyScoreService(db_session).read_latest("nobody@example.com") is None

    def test_read_latest_picks_newest(self, db_session: Session):
        """Test the newest calculation date wins."""
        now = datetime.now(timezone.utc)
        for days_ago, score in ((3, 50.0), (1, 91.0), (2, 70.0)):
            db_session.add(StaffSafetyScore(
                staff_email="cook@example.com",
                calculation_date=now - timedelta(days=days_ago),
                overall_safety_score=score,
                safety_grade=safety_grade(score),
                performance_tier=performance_tier(safety_grade(score)),
            ))
        db_session.commit()

        latest = SafetyScoreService(db_session).read_latest("cook@example.com")
        assert latest.overall_safety_score == 91.0

    def test_recalculate_from_records(self, db_session: Session, cooking_ccp):
        """Test training and CCP inputs are gathered from stored records."""
        email = "cook@example.com"
        journey = TrainingJourneyService(db_session)
        journey.accept_invitation(email)
        journey.mark_vision_watched(email)
        journey.complete_raving_fans(email)

        ccps = CCPLockdownService(db_session)
        ccps.record_check(cooking_ccp.id, "80", staff_email=email)
        ccps.record_check(cooking_ccp.id, "70", staff_email=email)

        service = SafetyScoreService(db_session)
        inputs = service.gather_inputs(email)
        assert inputs.training_courses_completed == 3
        assert inputs.training_courses_required == 6
        assert inputs.ccp_checks_passed == 1
        assert inputs.ccp_checks_performed == 2

        score = service.recalculate(email, scheduled_checks=4, missed_checks=1)
        assert score.training_completion_score == 50.0
        assert score.ccp_accuracy_percentage == 50.0
        assert score.missed_checks_percentage == 25.0
        assert service.read_latest(email).id == score.id


class TestSafetyScoreRoutes:
    """Tests for the safety score endpoints."""

    def test_no_score_yet(self, client: TestClient, auth_headers: dict):
        """Test a missing score reports unavailable rather than 404."""
        response = client.get(f"{API}/safety-scores/staff@example.com/latest", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["available"] is False
        assert data["message"] == "No safety score available yet"

    def test_staff_cannot_read_others(self, client: TestClient, auth_headers: dict):
        """Test staff are limited to their own score."""
        response = client.get(f"{API}/safety-scores/other@example.com/latest", headers=auth_headers)
        assert response.status_code == 403

    def test_recalculate_requires_manager(self, client: TestClient, auth_headers: dict):
        """Test staff cannot trigger a recalculation."""
        response = client.post(f"{API}/safety-scores/staff@example.com/recalculate", json={}, headers=auth_headers)
        assert response.status_code == 403

    def test_manager_recalculates_then_reads(self, client: TestClient, manager_headers: dict):
        """Test a manager recalculation is stored and read back."""
        response = client.post(
            f"{API}/safety-scores/staff@example.com/recalculate",
            json={"minor_incidents": 1},
            headers=manager_headers,
        )
        assert response.status_code == 201
        assert response.json()["minor_incidents"] == 1

        latest = client.get(f"{API}/safety-scores/staff@example.com/latest", headers=manager_headers).json()
        assert latest["available"] is True
        assert latest["performance_tier"] in {"exemplary", "proficient", "developing", "concerning"}

    def test_preview(self, client: TestClient, auth_headers: dict):
        """Test preview derives a score without storing it."""
        response = client.post(
            f"{API}/safety-scores/preview",
            json={
                "training_courses_completed": 6,
                "training_courses_required": 6,
                "ccp_checks_passed": 4,
                "ccp_checks_performed": 4,
            },
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["safety_grade"] == "A"

    def test_preview_rejects_negative_counts(self, client: TestClient, auth_headers: dict):
        """Test negative counts are rejected."""
        response = client.post(f"{API}/safety-scores/preview", json={"missed_checks": -1}, headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.parametrize("counts", [
        {"training_courses_completed": 12, "training_courses_required": 6},
        {"ccp_checks_passed": 50, "ccp_checks_performed": 10},
        {"missed_checks": 20, "scheduled_checks": 10},
    ])
    def test_preview_rejects_part_above_whole(self, client: TestClient, auth_headers: dict, counts):
        """Test a part larger than its whole is rejected with 422."""
        response = client.post(f"{API}/safety-scores/preview", json=counts, headers=auth_headers)
        assert response.status_code == 422

    def test_recalculate_rejects_missed_above_scheduled(
        self, client: TestClient, manager_headers: dict, db_session: Session
    ):
        """Test more missed than scheduled checks is rejected and nothing is stored."""
        response = client.post(
            f"{API}/safety-scores/staff@example.com/recalculate",
            json={"missed_checks": 30, "scheduled_checks": 10},
            headers=manager_headers,
        )
        assert response.status_code == 422
        assert db_session.query(StaffSafetyScore).count() == 0


class TestSafetyScoreInputs:
    """Tests for input validation on the raw counts."""

    @pytest.mark.parametrize("part,whole", [
        ("training_courses_completed", "training_courses_required"),
        ("ccp_checks_passed", "ccp_checks_performed"),
        ("missed_checks", "scheduled_checks"),
    ])
    def test_part_above_whole_raises(self, part, whole):
        """Test each part must not exceed its whole."""
        with pytest.raises(ValueError, match=part):
            SafetyScoreInputs(**{part: 3, whole: 2})

    def test_negative_count_raises(self):
        """Test negative incident counts are rejected."""
        with pytest.raises(ValueError, match="minor_incidents"):
            SafetyScoreInputs(minor_incidents=-1)

    def test_service_rejects_missed_above_scheduled(self, db_session: Session):
        """Test service callers get the same validation as the API."""
        with pytest.raises(ValueError):
            SafetyScoreService(db_session).recalculate("cook@example.com", missed_checks=5, scheduled_checks=1)
