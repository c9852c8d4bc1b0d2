"""Operating-mode sessions.

Every signed-in user works in one operating mode at a time (operate,
manage or train). The mode lives in a ModeContext created at login,
changed only through an explicit switch, and discarded at logout. Nothing
here is persisted: a restart puts everyone back in the default mode.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from app.services.access_guard import OperatingMode, coerce_mode

logger = logging.getLogger(__name__)


DEFAULT_MODE = OperatingMode.OPERATE

MODE_CONFIG = {
    OperatingMode.OPERATE: {
        "label": "Operate",
        "description": "Service Mode",
        "allowed_roles": {"staff", "manager", "owner", "admin"},
        "home_page": "OperateHome",
    },
    OperatingMode.TRAIN: {
        "label": "Train",
        "description": "Learning Mode",
        "allowed_roles": {"staff", "manager", "owner", "admin"},
        "home_page": "TrainHome",
    },
    OperatingMode.MANAGE: {
        "label": "Manage",
        "description": "Control Mode",
        "allowed_roles": {"manager", "owner", "admin"},
        "home_page": "ManageHome",
    },
}


class ModeNotPermittedError(Exception):
    """Raised when a role tries to enter a mode it is not allowed in."""
    def __init__(self, role: str, mode: str):
        self.role = role
        self.mode = mode
        super().__init__(f"Role '{role}' cannot use {mode} mode")


class UnknownModeError(ValueError):
    """Raised for a mode name that is not operate, manage or train."""


def can_access_mode(mode, role) -> bool:
    config = MODE_CONFIG.get(coerce_mode(mode))
    if config is None:
        return False
    return getattr(role, "value", role) in config["allowed_roles"]


@dataclass
class ModeContext:
    """The current operating mode of one signed-in user."""
    user_id: int
    mode: OperatingMode = DEFAULT_MODE
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    switched_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        config = MODE_CONFIG[self.mode]
        return {
            "user_id": self.user_id,
            "mode": self.mode.value,
            "label": config["label"],
            "description": config["description"],
            "home_page": config["home_page"],
            "started_at": self.started_at.isoformat(),
            "switched_at": self.switched_at.isoformat() if self.switched_at else None,
        }


class ModeSessionRegistry:
    """Holds the ModeContext of every signed-in user."""

    def __init__(self):
        self._contexts: Dict[int, ModeContext] = {}
        self._lock = threading.Lock()

    def start(self, user_id: int) -> ModeContext:
        """Create a fresh context in the default mode (called at login)."""
        with self._lock:
            context = ModeContext(user_id=user_id)
            self._contexts[user_id] = context
        logger.debug(f"Mode session started for user {user_id}")
        return context

    def get(self, user_id: int) -> ModeContext:
        """Current context, starting one if the user has none yet."""
        with self._lock:
            context = self._contexts.get(user_id)
            if context is None:
                context = ModeContext(user_id=user_id)
                self._contexts[user_id] = context
            return context

    def switch(self, user_id: int, role, mode) -> ModeContext:
        """Explicitly move a user into another mode."""
        target = coerce_mode(mode)
        if target is None:
            raise UnknownModeError(f"Unknown mode '{mode}'")
        role_value = getattr(role, "value", role)
        if not can_access_mode(target, role_value):
            raise ModeNotPermittedError(role_value, target.value)

        context = self.get(user_id)
        with self._lock:
            previous = context.mode
            context.mode = target
            context.switched_at = datetime.now(timezone.utc)
        logger.info(f"User {user_id} switched mode {previous.value} -> {target.value}")
        return context

    def end(self, user_id: int) -> bool:
        """Discard the user's context (called at logout)."""
        with self._lock:
            removed = self._contexts.pop(user_id, None)
        return removed is not None

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()


# Singleton instance
_mode_registry: Optional[ModeSessionRegistry] = None


def get_mode_registry() -> ModeSessionRegistry:
    """Get the mode session registry singleton."""
    global _mode_registry
    if _mode_registry is None:
        _mode_registry = ModeSessionRegistry()
    return _mode_registry
