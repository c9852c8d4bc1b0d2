"""
Route/Mode Access Guard
=======================
Decides whether a user may see a page given their role and the operating
mode they are currently in. The decision is a pure function of the page
name, the user and the mode; fetching the user and holding the mode are
the caller's job (see app.services.mode_session_service).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import logging

logger = logging.getLogger(__name__)


class OperatingMode(str, Enum):
    OPERATE = "operate"
    MANAGE = "manage"
    TRAIN = "train"


class AccessOutcome(str, Enum):
    LOADING = "loading"
    ALLOW = "allow"
    REDIRECT = "redirect"
    DENY_ROLE = "deny_role"
    DENY_MODE = "deny_mode"


ALL_ROLES = "all"

LOGIN_PAGE = "Login"
DASHBOARD_PAGE = "Dashboard"
ONBOARDING_PAGE = "OnboardingFlow"
INVITATION_PAGE = "Invitation"

# Pages reachable before onboarding (and, for Invitation, before login)
UNGUARDED_PAGES = frozenset({INVITATION_PAGE, ONBOARDING_PAGE})

_MANAGERS = ("manager", "owner", "admin")


@dataclass(frozen=True)
class PageAccessRule:
    """Who may open a page, and in which modes."""
    page_name: str
    label: str
    allowed_roles: Union[str, FrozenSet[str]]
    allowed_modes: Tuple[OperatingMode, ...]

    def allows_role(self, role: Optional[str]) -> bool:
        if self.allowed_roles == ALL_ROLES:
            return True
        return role in self.allowed_roles

    def allows_mode(self, mode: Optional[OperatingMode]) -> bool:
        return mode in self.allowed_modes

    @property
    def role_list(self) -> List[str]:
        if self.allowed_roles == ALL_ROLES:
            return [ALL_ROLES]
        return [r for r in _MANAGERS + ("staff",) if r in self.allowed_roles]


def _rule(label: str, page: str, roles: Union[str, Iterable[str]], *modes: OperatingMode) -> PageAccessRule:
    allowed_roles = ALL_ROLES if roles == ALL_ROLES else frozenset(roles)
    return PageAccessRule(page_name=page, label=label, allowed_roles=allowed_roles, allowed_modes=tuple(modes))


OPERATE = OperatingMode.OPERATE
MANAGE = OperatingMode.MANAGE
TRAIN = OperatingMode.TRAIN

# Navigation groups as shown in the side menu
NAV_GROUPS: List[Tuple[str, List[PageAccessRule]]] = [
    ("Live Operations", [
        _rule("Command Center", "CommandCenter", ALL_ROLES, MANAGE),
        _rule("Daily Operations Hub", "DailyOperationsHub", ALL_ROLES, OPERATE),
        _rule("Cleaning & Hygiene", "CleaningHygieneHub", ALL_ROLES, OPERATE),
        _rule("Sign-Off Log", "CleaningSignOffLog", _MANAGERS, MANAGE),
        _rule("Live Food Safety", "LiveFoodSafety", ALL_ROLES, OPERATE),
        _rule("Shift Handover", "ShiftHandovers", ALL_ROLES, OPERATE),
        _rule("Equipment Status", "EquipmentHealth", ALL_ROLES, OPERATE),
        _rule("Menu Manager", "MenuManager", ALL_ROLES, OPERATE),
        _rule("Checklist Library", "ChecklistLibrary", ALL_ROLES, OPERATE),
        _rule("Operations Reports", "OperationsReports", ALL_ROLES, OPERATE, MANAGE),
        _rule("Visual Procedures", "VisualProcedures", ALL_ROLES, OPERATE),
        _rule("Visual Dish Guides", "VisualDishGuides", ALL_ROLES, OPERATE),
        _rule("Quality & Safety", "QualitySafety", ALL_ROLES, OPERATE),
        _rule("Incident Records", "IncidentCenter", _MANAGERS, MANAGE),
        _rule("Chemical Safety", "ChemicalDashboard", ALL_ROLES, OPERATE),
    ]),
    ("Team Development", [
        _rule("Training Academy", "TrainingAcademy", ALL_ROLES, TRAIN),
        _rule("Leadership Path", "LeadershipPathway", ALL_ROLES, TRAIN),
        _rule("Culture", "Culture", ALL_ROLES, TRAIN),
        _rule("People", "People", ALL_ROLES, TRAIN),
    ]),
    ("Management & Control", [
        _rule("Reports", "Reports", _MANAGERS, MANAGE),
        _rule("Audit Center", "AuditCenter", ALL_ROLES, MANAGE),
        _rule("Inspector Mode", "InspectorMode", _MANAGERS, MANAGE),
        _rule("Compliance Hub", "ComplianceHub", _MANAGERS, MANAGE),
        _rule("Data Management", "DataManagement", _MANAGERS, MANAGE),
        _rule("Restaurant Info", "GlobalInfo", _MANAGERS, MANAGE),
        _rule("Meetings", "Meetings", ALL_ROLES, MANAGE),
        _rule("Shifts", "Shifts", ALL_ROLES, MANAGE),
        _rule("Performance", "Performance", _MANAGERS, MANAGE),
        _rule("Assets & Equipment", "Assets", ALL_ROLES, MANAGE),
        _rule("Weekly Manager Reports", "WeeklyManagerReports", _MANAGERS, MANAGE),
        _rule("Documents", "Documents", ALL_ROLES, MANAGE),
        _rule("Announcements", "Announcements", ALL_ROLES, MANAGE),
        _rule("Change Requests", "ChangeRequests", ALL_ROLES, MANAGE),
        _rule("Diagnostics", "Diagnostics", _MANAGERS, MANAGE),
    ]),
]


def build_page_index(groups: List[Tuple[str, List[PageAccessRule]]]) -> Dict[str, PageAccessRule]:
    """Index rules by page name. The first rule listed for a page wins."""
    index: Dict[str, PageAccessRule] = {}
    for _, rules in groups:
        for rule in rules:
            index.setdefault(rule.page_name, rule)
    return index


PAGE_RULES: Dict[str, PageAccessRule] = build_page_index(NAV_GROUPS)


def get_page_rule(page_name: str) -> Optional[PageAccessRule]:
    return PAGE_RULES.get(page_name)


@dataclass
class AccessDecision:
    """Outcome of an access check plus whatever the caller needs to render it."""
    outcome: AccessOutcome
    page_name: str
    redirect_to: Optional[str] = None
    required_roles: List[str] = field(default_factory=list)
    user_role: Optional[str] = None
    required_modes: List[str] = field(default_factory=list)
    current_mode: Optional[str] = None
    suggested_mode: Optional[str] = None
    message: str = ""
    actions: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.outcome == AccessOutcome.ALLOW

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "allowed": self.allowed,
            "page_name": self.page_name,
            "redirect_to": self.redirect_to,
            "required_roles": self.required_roles,
            "user_role": self.user_role,
            "required_modes": self.required_modes,
            "current_mode": self.current_mode,
            "suggested_mode": self.suggested_mode,
            "message": self.message,
            "actions": self.actions,
        }


def _enum_value(role) -> Optional[str]:
    return getattr(role, "value", role)


def coerce_mode(mode) -> Optional[OperatingMode]:
    """Turn a mode name or OperatingMode into an OperatingMode, None if unknown."""
    if mode is None:
        return None
    try:
        return OperatingMode(_enum_value(mode))
    except ValueError:
        return None


def decide(page_name: str, user, current_mode, loading: bool = False) -> AccessDecision:
    """Decide whether ``user`` may open ``page_name`` in ``current_mode``.

    ``user`` is any object exposing ``role`` and ``onboarding_completed``, or
    None when there is no session (a failed identity lookup counts as none).
    """
    if loading:
        return AccessDecision(outcome=AccessOutcome.LOADING, page_name=page_name, message="Loading...")

    if user is None:
        if page_name == INVITATION_PAGE:
            return AccessDecision(outcome=AccessOutcome.ALLOW, page_name=page_name)
        return AccessDecision(
            outcome=AccessOutcome.REDIRECT,
            page_name=page_name,
            redirect_to=LOGIN_PAGE,
            message="Please sign in to continue.",
        )

    if page_name in UNGUARDED_PAGES:
        return AccessDecision(outcome=AccessOutcome.ALLOW, page_name=page_name)

    if not getattr(user, "onboarding_completed", False):
        return AccessDecision(
            outcome=AccessOutcome.REDIRECT,
            page_name=page_name,
            redirect_to=ONBOARDING_PAGE,
            message="Finish onboarding to continue.",
        )

    rule = get_page_rule(page_name)
    if rule is None:
        # Utility pages (Dashboard, Profile, Settings) are open to everyone
        return AccessDecision(outcome=AccessOutcome.ALLOW, page_name=page_name)

    role = _enum_value(getattr(user, "role", None))
    if not rule.allows_role(role):
        required = rule.role_list
        logger.info(f"Role denied: {role} requested {page_name} (requires {required})")
        return AccessDecision(
            outcome=AccessOutcome.DENY_ROLE,
            page_name=page_name,
            required_roles=required,
            user_role=role,
            message=(
                f"You don't have permission to access {rule.label}. "
                f"Required role: {', '.join(required)}. Your role: {role}."
            ),
            actions=["go_to_dashboard"],
        )

    mode = coerce_mode(current_mode)
    if not rule.allows_mode(mode):
        modes = [m.value for m in rule.allowed_modes]
        mode_value = _enum_value(current_mode)
        return AccessDecision(
            outcome=AccessOutcome.DENY_MODE,
            page_name=page_name,
            user_role=role,
            required_modes=modes,
            current_mode=mode_value,
            suggested_mode=modes[0] if modes else None,
            message=(
                f"{rule.label} is only accessible in {' or '.join(modes)} mode. "
                f"Current mode: {mode_value}."
            ),
            actions=["switch_mode", "go_to_dashboard"],
        )

    return AccessDecision(outcome=AccessOutcome.ALLOW, page_name=page_name, user_role=role)
