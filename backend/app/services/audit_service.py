"""Compliance audit logging service.

Writes append-only audit entries for compliance events: failed CCP checks
(the permanent incident trail), quiz attempts, certification and admin
journey resets. Entries go through the caller's session and are committed
on their own, after the record they describe has been stored.
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.compliance import ComplianceAuditEntry

logger = logging.getLogger("audit")


def log_action(
    db: Session,
    action: str,
    entity_type: str = "",
    entity_id: Any = "",
    staff_email: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> ComplianceAuditEntry:
    """Write an audit log entry.

    Args:
        db: Session to write through.
        action: The compliance event (ccp_failed, quiz_passed, certified, ...)
        entity_type: Type of record affected
        entity_id: ID of the affected record
        staff_email: Staff member the event concerns
        details: Additional structured details
    """
    entry = ComplianceAuditEntry(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id not in (None, "") else None,
        staff_email=staff_email,
        details=details or {},
    )
    db.add(entry)
    db.commit()
    logger.info(f"Audit: {action} {entity_type} {entity_id} ({staff_email or '-'})")
    return entry


def get_entries(
    db: Session,
    staff_email: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> list[ComplianceAuditEntry]:
    """Most recent audit entries, optionally filtered by staff member or action."""
    query = db.query(ComplianceAuditEntry)
    if staff_email:
        query = query.filter(ComplianceAuditEntry.staff_email == staff_email)
    if action:
        query = query.filter(ComplianceAuditEntry.action == action)
    return query.order_by(ComplianceAuditEntry.id.desc()).limit(limit).all()
