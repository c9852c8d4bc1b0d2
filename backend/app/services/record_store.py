"""
Compliance Record Store
=======================
Generic entity store used by the compliance engine. Every service reads and
writes compliance records through the four operations below, so the
evaluators never touch SQLAlchemy directly:

- ``list_active(entity_type, filters, order_by, limit)``
- ``create(entity_type, record)``
- ``update(entity_type, id, partial)``
- ``current_user(token_payload)``

There are no cross-record transactions: each create/update commits on its own.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from sqlalchemy.orm import Session

from app.db.base import Base
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
from app.models.user import User

logger = logging.getLogger(__name__)


ENTITY_TYPES: Dict[str, Type[Base]] = {
    "User": User,
    "CriticalControlPoint": CriticalControlPoint,
    "CriticalControlPointCheck": CriticalControlPointCheck,
    "StaffSafetyScore": StaffSafetyScore,
    "ComplianceAuditEntry": ComplianceAuditEntry,
    "TrainingJourneyProgress": TrainingJourneyProgress,
    "SOPAcknowledgement": SOPAcknowledgement,
    "CultureAcknowledgement": CultureAcknowledgement,
    "TrainingQuizAttempt": TrainingQuizAttempt,
    "QuizSessionState": QuizSessionState,
}


class IdentityUnavailable(Exception):
    """Raised when the current user cannot be established."""


class UnknownEntityTypeError(Exception):
    """Raised for an entity type that is not registered with the store."""
    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type '{entity_type}'")


class RecordNotFoundError(Exception):
    """Raised when an update targets a record that does not exist."""
    def __init__(self, entity_type: str, record_id: Any):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(f"{entity_type} {record_id} not found")


class RecordStore:
    """Filter/create/update access to compliance records over a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def model_for(entity_type: str) -> Type[Base]:
        try:
            return ENTITY_TYPES[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type)

    def list_active(
        self,
        entity_type: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """List records matching equality filters.

        A list/tuple/set filter value matches any of its members. ``order_by``
        names a column; a leading ``-`` sorts descending.
        """
        model = self.model_for(entity_type)
        query = self.db.query(model)

        for field, value in (filters or {}).items():
            column = getattr(model, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)

        if order_by:
            descending = order_by.startswith("-")
            column = getattr(model, order_by.lstrip("-"))
            # Ties break on id so the newest row of equal rank comes first
            if descending:
                query = query.order_by(column.desc(), model.id.desc())
            else:
                query = query.order_by(column.asc(), model.id.asc())
        else:
            query = query.order_by(model.id.asc())

        if limit is not None:
            query = query.limit(limit)

        return query.all()

    def get(self, entity_type: str, record_id: Any) -> Optional[Any]:
        model = self.model_for(entity_type)
        return self.db.get(model, record_id)

    def create(self, entity_type: str, record: Dict[str, Any]) -> Any:
        """Insert a new record and return it."""
        model = self.model_for(entity_type)
        instance = model(**record)
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        logger.debug(f"Created {entity_type} {instance.id}")
        return instance

    def update(self, entity_type: str, record_id: Any, partial: Dict[str, Any]) -> Any:
        """Apply a partial update to an existing record and return it."""
        instance = self.get(entity_type, record_id)
        if instance is None:
            raise RecordNotFoundError(entity_type, record_id)

        for key, value in partial.items():
            setattr(instance, key, value)

        self.db.commit()
        self.db.refresh(instance)
        logger.debug(f"Updated {entity_type} {record_id}: {sorted(partial)}")
        return instance

    def current_user(self, token_payload: Optional[Dict[str, Any]]) -> User:
        """Resolve the user a decoded token refers to."""
        if not token_payload:
            raise IdentityUnavailable("Not authenticated")

        user_id = token_payload.get("sub")
        try:
            user = self.db.get(User, int(user_id)) if user_id is not None else None
        except (TypeError, ValueError):
            user = None

        if user is None:
            raise IdentityUnavailable("Invalid token payload")
        if not user.is_active:
            raise IdentityUnavailable("User account is disabled")
        return user
