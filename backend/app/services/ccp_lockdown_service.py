"""
CCP Lockdown Service
====================
Critical Control Point checks and the service lockdown they drive.

``evaluate()`` is the lockdown rule: a pure function over today's CCP check
rows and the currently active CCPs. Any failed check today locks service and
blocks the menu items linked to the failed CCP. ``CCPLockdownService`` wraps
the record store for recording checks and fetching the inputs.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.services import audit_service
from app.services.record_store import RecordNotFoundError, RecordStore

logger = logging.getLogger(__name__)


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class LimitDirection(str, Enum):
    MIN = "min"  # recorded value must be at or above the limit (cooking, hot holding)
    MAX = "max"  # recorded value must be at or below the limit (chilling, cold storage)


class DisplayTier(str, Enum):
    LOCKDOWN = "lockdown"
    PENDING = "pending"
    HIDDEN = "hidden"


class CCPLight(str, Enum):
    RED = "red"
    GREEN = "green"
    AMBER = "amber"


LIGHT_REASONS = {
    CCPLight.RED: "Failed check",
    CCPLight.GREEN: "Passing",
    CCPLight.AMBER: "No checks today",
}


class InvalidReadingError(ValueError):
    """Raised when a recorded value or critical limit has no number in it."""


_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def parse_numeric(value: Any) -> Optional[float]:
    """First number found in a reading such as "74.5°C"."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER.search(str(value))
    return float(match.group(0)) if match else None


def assess_reading(ccp: Any, recorded_value: Any) -> CheckStatus:
    """Pass/fail for a reading against the CCP's critical limit."""
    value = parse_numeric(recorded_value)
    limit = parse_numeric(_field(ccp, "critical_limit"))
    if value is None or limit is None:
        raise InvalidReadingError("Invalid value format. Please enter a numeric value.")

    direction = _field(ccp, "limit_direction") or LimitDirection.MIN.value
    if direction == LimitDirection.MAX.value:
        passed = value <= limit
    else:
        passed = value >= limit
    return CheckStatus.PASS if passed else CheckStatus.FAIL


@dataclass
class LockdownStatus:
    """Today's CCP picture: what failed, what passed, what is still unchecked."""
    failed: List[Any] = field(default_factory=list)
    passed: List[Any] = field(default_factory=list)
    pending: List[Any] = field(default_factory=list)
    blocked_menu_items: FrozenSet[str] = frozenset()
    service_locked: bool = False
    ccp_lights: List[tuple] = field(default_factory=list)  # (ccp, CCPLight)

    @property
    def display_tier(self) -> DisplayTier:
        if self.service_locked:
            return DisplayTier.LOCKDOWN
        if self.pending:
            return DisplayTier.PENDING
        return DisplayTier.HIDDEN

    @property
    def panels(self) -> List[str]:
        """Panels shown for the current tier, in display order."""
        tier = self.display_tier
        if tier == DisplayTier.LOCKDOWN:
            panels = ["lockdown_banner", "failed_checks"]
            if self.pending:
                panels.append("pending_warning")
            panels.append("passed_summary")
            return panels
        if tier == DisplayTier.PENDING:
            return ["pending_warning", "passed_summary"]
        return []


def _recency(position: int, check: Any) -> tuple:
    created_at = _field(check, "created_at")
    return (created_at is not None, created_at or 0, _field(check, "id") or 0, position)


def ccp_status(ccp: Any, todays_checks: Iterable[Any]) -> CCPLight:
    """Light for one CCP: the latest check today decides red or green, none is amber."""
    ccp_id = _field(ccp, "id")
    own = [(i, c) for i, c in enumerate(todays_checks) if _field(c, "ccp_id") == ccp_id]
    if not own:
        return CCPLight.AMBER
    _, latest = max(own, key=lambda pair: _recency(*pair))
    if _field(latest, "status") == CheckStatus.FAIL.value:
        return CCPLight.RED
    return CCPLight.GREEN


def evaluate(active_ccps: Iterable[Any], todays_checks: Iterable[Any]) -> LockdownStatus:
    """Work out lockdown state from today's checks and the active CCPs."""
    checks = list(todays_checks)
    active_ccps = list(active_ccps)

    failed = [c for c in checks if _field(c, "status") == CheckStatus.FAIL.value]
    passed = [c for c in checks if _field(c, "status") == CheckStatus.PASS.value]

    checked_ids = {_field(c, "ccp_id") for c in checks}
    pending = [ccp for ccp in active_ccps if _field(ccp, "id") not in checked_ids]

    blocked = set()
    for check in failed:
        blocked.update(_field(check, "blocked_menu_items") or [])

    return LockdownStatus(
        failed=failed,
        passed=passed,
        pending=pending,
        blocked_menu_items=frozenset(blocked),
        service_locked=len(failed) > 0,
        ccp_lights=[(ccp, ccp_status(ccp, checks)) for ccp in active_ccps],
    )


def is_menu_item_blocked(menu_item: str, status: LockdownStatus) -> bool:
    return menu_item in status.blocked_menu_items


def today() -> date:
    return datetime.now(timezone.utc).date()


def serialize_ccp(ccp) -> Dict[str, Any]:
    return {
        "id": ccp.id,
        "name": ccp.name,
        "monitoring_parameter": ccp.monitoring_parameter,
        "check_frequency": ccp.check_frequency,
        "critical_limit": ccp.critical_limit,
        "unit": ccp.unit,
        "limit_direction": ccp.limit_direction,
        "linked_menu_items": ccp.linked_menu_items or [],
        "corrective_actions": ccp.corrective_actions or [],
        "is_active": ccp.is_active,
    }


def serialize_check(check) -> Dict[str, Any]:
    return {
        "id": check.id,
        "ccp_id": check.ccp_id,
        "ccp_name": check.ccp_name,
        "check_date": check.check_date.isoformat() if check.check_date else None,
        "check_time": check.check_time,
        "status": check.status,
        "recorded_value": check.recorded_value,
        "critical_limit": check.critical_limit,
        "unit": check.unit,
        "blocked_menu_items": check.blocked_menu_items or [],
        "corrective_actions_triggered": check.corrective_actions_triggered or [],
        "staff_email": check.staff_email,
        "staff_name": check.staff_name,
        "notes": check.notes,
    }


def serialize_status(status: LockdownStatus) -> Dict[str, Any]:
    return {
        "service_locked": status.service_locked,
        "display_tier": status.display_tier.value,
        "panels": status.panels,
        "blocked_menu_items": sorted(status.blocked_menu_items),
        "failed": [serialize_check(c) for c in status.failed],
        "passed_count": len(status.passed),
        "pending": [{"id": _field(c, "id"), "name": _field(c, "name")} for c in status.pending],
        "ccps": [
            {
                "id": _field(ccp, "id"),
                "name": _field(ccp, "name"),
                "status": light.value,
                "reason": LIGHT_REASONS[light],
            }
            for ccp, light in status.ccp_lights
        ],
    }


class CCPLockdownService:
    """Critical Control Points, their checks and the resulting lockdown state."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.store = RecordStore(db_session)

    # ==================== CRITICAL CONTROL POINTS ====================

    def create_ccp(self, name: str, critical_limit: str, **kwargs) -> Any:
        """Create a Critical Control Point."""
        direction = kwargs.get("limit_direction", LimitDirection.MIN)
        if isinstance(direction, LimitDirection):
            direction = direction.value

        if parse_numeric(critical_limit) is None:
            raise InvalidReadingError(f"Critical limit '{critical_limit}' has no numeric value")

        ccp = self.store.create("CriticalControlPoint", {
            "name": name,
            "critical_limit": critical_limit,
            "limit_direction": direction,
            "monitoring_parameter": kwargs.get("monitoring_parameter"),
            "check_frequency": kwargs.get("check_frequency"),
            "unit": kwargs.get("unit", "C"),
            "linked_menu_items": list(kwargs.get("linked_menu_items") or []),
            "corrective_actions": list(kwargs.get("corrective_actions") or []),
            "is_active": True,
        })
        logger.info(f"Created CCP {ccp.id}: {name} (limit {critical_limit}, {direction})")
        return ccp

    def get_active_ccps(self) -> List[Any]:
        return self.store.list_active("CriticalControlPoint", {"is_active": True})

    def deactivate_ccp(self, ccp_id: int) -> Any:
        ccp = self.store.update("CriticalControlPoint", ccp_id, {"is_active": False})
        logger.info(f"Deactivated CCP {ccp_id}")
        return ccp

    # ==================== CHECKS ====================

    def get_checks_for_date(self, check_date: Optional[date] = None) -> List[Any]:
        return self.store.list_active(
            "CriticalControlPointCheck", {"check_date": check_date or today()}
        )

    def record_check(
        self,
        ccp_id: int,
        recorded_value: str,
        staff_email: Optional[str] = None,
        staff_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Any:
        """Record a CCP check.

        A failed check copies the CCP's corrective actions (as pending) and
        linked menu items onto the row and is written to the audit trail.
        """
        ccp = self.store.get("CriticalControlPoint", ccp_id)
        if ccp is None or not ccp.is_active:
            raise RecordNotFoundError("CriticalControlPoint", ccp_id)

        result = assess_reading(ccp, recorded_value)
        now = datetime.now(timezone.utc)

        check_data = {
            "ccp_id": ccp.id,
            "ccp_name": ccp.name,
            "check_date": now.date(),
            "check_time": now.strftime("%H:%M"),
            "recorded_value": str(recorded_value),
            "critical_limit": ccp.critical_limit,
            "unit": ccp.unit,
            "status": result.value,
            "staff_email": staff_email,
            "staff_name": staff_name or staff_email,
            "notes": notes,
            "blocked_menu_items": [],
            "corrective_actions_triggered": [],
        }

        if result == CheckStatus.FAIL:
            check_data["corrective_actions_triggered"] = [
                {
                    "action": action.get("action"),
                    "responsible_person": action.get("responsible_person"),
                    "time_limit": action.get("time_limit"),
                    "status": "pending",
                }
                for action in (ccp.corrective_actions or [])
            ]
            check_data["blocked_menu_items"] = list(ccp.linked_menu_items or [])

        check = self.store.create("CriticalControlPointCheck", check_data)

        if result == CheckStatus.FAIL:
            logger.warning(
                f"CCP FAILED: {ccp.name} value {recorded_value} (limit {ccp.critical_limit}); "
                f"blocking {len(check.blocked_menu_items or [])} menu item(s)"
            )
            audit_service.log_action(
                self.db,
                action="ccp_failed",
                entity_type="CriticalControlPointCheck",
                entity_id=check.id,
                staff_email=staff_email,
                details={
                    "ccp_id": ccp.id,
                    "ccp_name": ccp.name,
                    "recorded_value": str(recorded_value),
                    "critical_limit": ccp.critical_limit,
                    "blocked_menu_items": check.blocked_menu_items or [],
                },
            )
        else:
            logger.info(f"CCP passed: {ccp.name} value {recorded_value}")

        return check

    # ==================== LOCKDOWN ====================

    def get_lockdown_status(self, check_date: Optional[date] = None) -> LockdownStatus:
        """Fetch active CCPs and the day's checks fresh, then evaluate."""
        return evaluate(self.get_active_ccps(), self.get_checks_for_date(check_date))
