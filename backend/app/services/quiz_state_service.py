"""Saved in-progress quiz state, one row per staff member and quiz."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class QuizState:
    current_question: int = 0
    selected_answers: Dict[str, Any] = field(default_factory=dict)
    show_results: bool = False
    score: float = 0.0
    quiz_started: bool = False
    quiz_passed: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QuizState":
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        state = cls(**known)
        # JSON object keys are always strings
        state.selected_answers = {str(k): v for k, v in (state.selected_answers or {}).items()}
        return state

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QuizStateStore:
    """Load/save boundary for quiz progress that must survive a page refresh."""

    ENTITY = "QuizSessionState"

    def __init__(self, db_session: Session):
        self.db = db_session
        self.store = RecordStore(db_session)

    def _row(self, staff_email: str, quiz_id: str) -> Optional[Any]:
        rows = self.store.list_active(
            self.ENTITY, {"staff_email": staff_email, "quiz_id": quiz_id}, limit=1
        )
        return rows[0] if rows else None

    def load(self, staff_email: str, quiz_id: str) -> QuizState:
        """Saved state, or a fresh one if nothing was saved."""
        row = self._row(staff_email, quiz_id)
        return QuizState.from_dict(row.state if row else None)

    def save(self, staff_email: str, quiz_id: str, state: QuizState) -> QuizState:
        payload = {"state": state.to_dict(), "updated_at": datetime.now(timezone.utc)}
        row = self._row(staff_email, quiz_id)
        if row is None:
            try:
                row = self.store.create(
                    self.ENTITY, {"staff_email": staff_email, "quiz_id": quiz_id, **payload}
                )
            except IntegrityError:
                self.db.rollback()
                row = self.store.update(self.ENTITY, self._row(staff_email, quiz_id).id, payload)
        else:
            row = self.store.update(self.ENTITY, row.id, payload)
        return QuizState.from_dict(row.state)

    def clear(self, staff_email: str, quiz_id: str) -> bool:
        row = self._row(staff_email, quiz_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        logger.debug(f"Cleared quiz state {quiz_id} for {staff_email}")
        return True
