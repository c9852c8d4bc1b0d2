"""Tests for CCP checks and the service lockdown they drive.

Covers reading assessment, the lockdown partition, corrective-action
copying on failure and the HTTP endpoints.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.compliance import CriticalControlPointCheck
from app.services import audit_service
from app.services.ccp_lockdown_service import (
    CCPLight,
    CCPLockdownService,
    CheckStatus,
    DisplayTier,
    InvalidReadingError,
    assess_reading,
    ccp_status,
    evaluate,
    is_menu_item_blocked,
    parse_numeric,
    serialize_status,
    today,
)
from app.services.record_store import RecordNotFoundError


API = "/api/v1"


def _check(ccp_id, status, blocked=None):
    return {"ccp_id": ccp_id, "status": status, "blocked_menu_items": blocked}


def _ccp(ccp_id, name="CCP"):
    return {"id": ccp_id, "name": name}


# ============== Readings ==============

class TestAssessReading:
    """Tests for judging a reading against a critical limit."""

    def test_parse_numeric(self):
        """Test the first number is pulled out of a reading."""
        assert parse_numeric("74.5°C") == 74.5
        assert parse_numeric("-18 C") == -18.0
        assert parse_numeric(3) == 3.0
        assert parse_numeric("warm") is None

    def test_min_limit_boundary_passes(self):
        """Test a reading equal to a minimum limit passes."""
        ccp = {"critical_limit": "75°C", "limit_direction": "min"}
        assert assess_reading(ccp, "75") == CheckStatus.PASS
        assert assess_reading(ccp, "74.9") == CheckStatus.FAIL

    def test_max_limit(self):
        """Test a maximum limit passes at or below and fails above."""
        ccp = {"critical_limit": "5°C", "limit_direction": "max"}
        assert assess_reading(ccp, "4") == CheckStatus.PASS
        assert assess_reading(ccp, "5") == CheckStatus.PASS
        assert assess_reading(ccp, "6") == CheckStatus.FAIL

    def test_direction_defaults_to_min(self):
        """Test a CCP without a direction is treated as a minimum."""
        assert assess_reading({"critical_limit": "63"}, "70") == CheckStatus.PASS

    def test_unparseable_value(self):
        """Test a reading with no number is rejected."""
        with pytest.raises(InvalidReadingError):
            assess_reading({"critical_limit": "75°C"}, "hot")

    def test_unparseable_limit(self):
        """Test a limit with no number is rejected."""
        with pytest.raises(InvalidReadingError):
            assess_reading({"critical_limit": "see chart"}, "80")


# ============== evaluate() ==============

class TestEvaluate:
    """Tests for the lockdown partition over today's checks."""

    def test_no_checks_everything_pending(self):
        """Test every active CCP is pending before any check."""
        status = evaluate([_ccp(1), _ccp(2)], [])
        assert not status.service_locked
        assert [c["id"] for c in status.pending] == [1, 2]
        assert status.display_tier == DisplayTier.PENDING
        assert status.panels == ["pending_warning", "passed_summary"]

    def test_all_passed_hides_banner(self):
        """Test all-passing checks hide every panel."""
        status = evaluate([_ccp(1)], [_check(1, "pass")])
        assert status.display_tier == DisplayTier.HIDDEN
        assert status.panels == []
        assert len(status.passed) == 1

    def test_single_failure_locks_service(self):
        """Test one failure locks service and blocks its items."""
        checks = [_check(1, "fail", ["Grilled Chicken"]), _check(2, "pass")]
        status = evaluate([_ccp(1), _ccp(2)], checks)
        assert status.service_locked
        assert status.blocked_menu_items == frozenset({"Grilled Chicken"})
        assert status.display_tier == DisplayTier.LOCKDOWN
        assert status.panels == ["lockdown_banner", "failed_checks", "passed_summary"]

    def test_lockdown_with_pending_shows_warning(self):
        """Test lockdown still warns about unchecked CCPs."""
        status = evaluate([_ccp(1), _ccp(2)], [_check(1, "fail", [])])
        assert status.panels == ["lockdown_banner", "failed_checks", "pending_warning", "passed_summary"]

    def test_blocked_items_are_union_of_failures(self):
        """Test blocked items are the union over failed checks only."""
        checks = [_check(1, "fail", ["A", "B"]), _check(2, "fail", ["B", "C"]), _check(3, "pass", ["D"])]
        status = evaluate([], checks)
        assert status.blocked_menu_items == frozenset({"A", "B", "C"})
        assert is_menu_item_blocked("C", status)
        assert not is_menu_item_blocked("D", status)

    def test_missing_blocked_list_is_empty(self):
        """Test a failure without linked items still locks service."""
        status = evaluate([], [{"ccp_id": 1, "status": "fail"}])
        assert status.service_locked
        assert status.blocked_menu_items == frozenset()

    def test_pass_after_fail_keeps_lockdown(self):
        """Test a later pass does not lift the day's lockdown."""
        # The failed row stays in today's checks
        checks = [_check(1, "fail", ["Soup"]), _check(1, "pass")]
        status = evaluate([_ccp(1)], checks)
        assert status.service_locked
        assert status.pending == []

    def test_any_status_counts_as_checked(self):
        """Test a failed check still removes its CCP from pending."""
        status = evaluate([_ccp(1), _ccp(2)], [_check(2, "fail")])
        assert [c["id"] for c in status.pending] == [1]

    def test_fridge_temp_failure_blocks_chicken_curry(self):
        """Test a failed fridge check locks service and blocks the curry."""
        status = evaluate(
            [_ccp(1, "Fridge Temp")],
            [_check(1, "fail", ["Chicken Curry"])],
        )
        assert status.service_locked is True
        assert status.blocked_menu_items == frozenset({"Chicken Curry"})
        assert status.pending == []


class TestCCPStatus:
    """Tests for the per-CCP traffic light."""

    def test_no_checks_is_amber(self):
        """Test a CCP with no check today is amber."""
        assert ccp_status(_ccp(1), [_check(2, "pass")]) == CCPLight.AMBER

    def test_latest_fail_is_red(self):
        """Test a CCP whose latest check failed is red."""
        checks = [_check(1, "pass"), _check(1, "fail")]
        assert ccp_status(_ccp(1), checks) == CCPLight.RED

    def test_pass_after_fail_is_green(self):
        """Test a corrective recheck turns the CCP green while service stays locked."""
        checks = [_check(1, "fail", ["Soup"]), _check(1, "pass")]
        assert ccp_status(_ccp(1), checks) == CCPLight.GREEN
        status = evaluate([_ccp(1)], checks)
        assert status.service_locked
        assert status.ccp_lights == [(_ccp(1), CCPLight.GREEN)]

    def test_latest_by_created_at_then_id(self):
        """Test the latest check is picked by creation time, then id."""
        now = datetime.now(timezone.utc)
        checks = [
            {"id": 7, "ccp_id": 1, "status": "pass", "created_at": now},
            {"id": 3, "ccp_id": 1, "status": "fail", "created_at": now - timedelta(minutes=5)},
        ]
        assert ccp_status(_ccp(1), checks) == CCPLight.GREEN
        same_time = [
            {"id": 9, "ccp_id": 1, "status": "fail", "created_at": now},
            {"id": 4, "ccp_id": 1, "status": "pass", "created_at": now},
        ]
        assert ccp_status(_ccp(1), same_time) == CCPLight.RED


# ============== Service ==============

class TestCCPLockdownService:
    """Tests for recording checks through the service."""

    def test_passing_check(self, db_session: Session, cooking_ccp):
        """Test a passing check blocks nothing."""
        check = CCPLockdownService(db_session).record_check(cooking_ccp.id, "78°C", staff_email="cook@example.com")
        assert check.status == "pass"
        assert check.blocked_menu_items == []
        assert check.corrective_actions_triggered == []
        assert check.check_date == today()

    def test_failing_check_copies_actions_and_items(self, db_session: Session, cooking_ccp):
        """Test a failure copies corrective actions and linked items."""
        check = CCPLockdownService(db_session).record_check(cooking_ccp.id, "70", staff_email="cook@example.com")
        assert check.status == "fail"
        assert check.blocked_menu_items == ["Grilled Chicken", "Chicken Wrap"]
        assert len(check.corrective_actions_triggered) == 2
        assert all(a["status"] == "pending" for a in check.corrective_actions_triggered)
        assert check.corrective_actions_triggered[0]["action"] == "Continue cooking"

    def test_failing_check_is_audited(self, db_session: Session, cooking_ccp):
        """Test a failure writes an audit entry."""
        check = CCPLockdownService(db_session).record_check(cooking_ccp.id, "60", staff_email="cook@example.com")
        entries = audit_service.get_entries(db_session, action="ccp_failed")
        assert len(entries) == 1
        assert entries[0].staff_email == "cook@example.com"
        assert entries[0].details["ccp_name"] == "Chicken Cooking"
        assert entries[0].entity_id == str(check.id)
        assert db_session.get(CriticalControlPointCheck, check.id) is not None

    def test_unknown_ccp(self, db_session: Session):
        """Test checking an unknown CCP raises not found."""
        with pytest.raises(RecordNotFoundError):
            CCPLockdownService(db_session).record_check(999, "80")

    def test_inactive_ccp_rejected(self, db_session: Session, cooking_ccp):
        """Test checking a deactivated CCP raises not found."""
        service = CCPLockdownService(db_session)
        service.deactivate_ccp(cooking_ccp.id)
        with pytest.raises(RecordNotFoundError):
            service.record_check(cooking_ccp.id, "80")

    def test_lockdown_status_uses_today_only(self, db_session: Session, cooking_ccp):
        """Test yesterday's failures do not lock today."""
        db_session.add(CriticalControlPointCheck(
            ccp_id=cooking_ccp.id,
            ccp_name=cooking_ccp.name,
            check_date=today() - timedelta(days=1),
            status="fail",
            recorded_value="50",
            blocked_menu_items=["Grilled Chicken"],
        ))
        db_session.commit()

        status = CCPLockdownService(db_session).get_lockdown_status()
        assert not status.service_locked
        assert [c.id for c in status.pending] == [cooking_ccp.id]

    def test_deactivated_ccp_not_pending(self, db_session: Session, cooking_ccp, chilling_ccp):
        """Test deactivated CCPs drop out of pending."""
        service = CCPLockdownService(db_session)
        service.deactivate_ccp(chilling_ccp.id)
        status = service.get_lockdown_status()
        assert [c.id for c in status.pending] == [cooking_ccp.id]

    def test_create_ccp_validates_limit(self, db_session: Session):
        """Test creating a CCP needs a numeric limit."""
        with pytest.raises(InvalidReadingError):
            CCPLockdownService(db_session).create_ccp("Odd", "whenever")

    def test_serialize_status(self, db_session: Session, cooking_ccp, chilling_ccp):
        """Test the serialized lockdown carries items, pending and lights."""
        service = CCPLockdownService(db_session)
        service.record_check(chilling_ccp.id, "9")
        data = serialize_status(service.get_lockdown_status())
        assert data["service_locked"] is True
        assert data["display_tier"] == "lockdown"
        assert data["blocked_menu_items"] == ["Caesar Salad"]
        assert data["pending"] == [{"id": cooking_ccp.id, "name": "Chicken Cooking"}]
        assert [c["status"] for c in data["ccps"]] == ["amber", "red"]


# ============== API ==============

class TestCCPRoutes:
    """Tests for the CCP endpoints."""

    def test_requires_auth(self, client: TestClient):
        """Test the lockdown endpoint needs a token."""
        response = client.get(f"{API}/ccp/lockdown")
        assert response.status_code == 401

    def test_lockdown_empty(self, client: TestClient, auth_headers: dict):
        """Test an empty day is not locked."""
        response = client.get(f"{API}/ccp/lockdown", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["service_locked"] is False
        assert data["display_tier"] == "hidden"
        assert data["panels"] == []

    def test_record_failed_check_locks_service(self, client: TestClient, auth_headers: dict, cooking_ccp):
        """Test a failed check over HTTP locks service and blocks items."""
        response = client.post(
            f"{API}/ccp/checks",
            json={"ccp_id": cooking_ccp.id, "recorded_value": "68°C", "notes": "Thick fillets"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["check"]["status"] == "fail"
        assert data["check"]["staff_email"] == "staff@example.com"
        assert data["lockdown"]["service_locked"] is True

        item = client.get(f"{API}/ccp/menu-items/Grilled Chicken/status", headers=auth_headers)
        assert item.status_code == 200
        assert item.json()["blocked"] is True

        other = client.get(f"{API}/ccp/menu-items/Fries/status", headers=auth_headers)
        assert other.json()["blocked"] is False

    def test_invalid_reading_is_422(self, client: TestClient, auth_headers: dict, cooking_ccp):
        """Test a non-numeric reading returns 422."""
        response = client.post(
            f"{API}/ccp/checks",
            json={"ccp_id": cooking_ccp.id, "recorded_value": "hot"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_unknown_ccp_is_404(self, client: TestClient, auth_headers: dict):
        """Test an unknown CCP returns 404."""
        response = client.post(
            f"{API}/ccp/checks", json={"ccp_id": 404, "recorded_value": "80"}, headers=auth_headers
        )
        assert response.status_code == 404

    def test_staff_cannot_create_ccp(self, client: TestClient, auth_headers: dict):
        """Test staff cannot create CCPs."""
        response = client.post(
            f"{API}/ccp/points", json={"name": "Hot Hold", "critical_limit": "63°C"}, headers=auth_headers
        )
        assert response.status_code == 403

    def test_manager_creates_and_lists_ccp(self, client: TestClient, manager_headers: dict):
        """Test a manager can create, list and deactivate a CCP."""
        response = client.post(
            f"{API}/ccp/points",
            json={
                "name": "Hot Hold",
                "critical_limit": "63°C",
                "linked_menu_items": ["Chili"],
                "corrective_actions": [{"action": "Reheat to 75°C"}],
            },
            headers=manager_headers,
        )
        assert response.status_code == 201
        created = response.json()
        assert created["limit_direction"] == "min"

        listing = client.get(f"{API}/ccp/points", headers=manager_headers)
        assert [p["name"] for p in listing.json()] == ["Hot Hold"]

        deactivated = client.post(f"{API}/ccp/points/{created['id']}/deactivate", headers=manager_headers)
        assert deactivated.json()["is_active"] is False
        assert client.get(f"{API}/ccp/points", headers=manager_headers).json() == []

    def test_list_checks_for_other_day(self, client: TestClient, auth_headers: dict, cooking_ccp):
        """Test checks can be listed for another date."""
        client.post(f"{API}/ccp/checks", json={"ccp_id": cooking_ccp.id, "recorded_value": "80"}, headers=auth_headers)
        todays = client.get(f"{API}/ccp/checks", headers=auth_headers).json()
        assert len(todays) == 1
        past = (date.today() - timedelta(days=30)).isoformat()
        assert client.get(f"{API}/ccp/checks", params={"check_date": past}, headers=auth_headers).json() == []

    def test_recheck_turns_ccp_green(self, client: TestClient, auth_headers: dict, cooking_ccp, chilling_ccp):
        """Test a passing recheck shows the CCP green over HTTP."""
        client.post(f"{API}/ccp/checks", json={"ccp_id": cooking_ccp.id, "recorded_value": "60"}, headers=auth_headers)
        client.post(f"{API}/ccp/checks", json={"ccp_id": cooking_ccp.id, "recorded_value": "80"}, headers=auth_headers)

        data = client.get(f"{API}/ccp/lockdown", headers=auth_headers).json()
        assert data["service_locked"] is True
        lights = {c["name"]: c["status"] for c in data["ccps"]}
        assert lights == {"Chicken Cooking": "green", "Walk-in Fridge": "amber"}
