# Services module

from app.services.record_store import (
    RecordStore,
    IdentityUnavailable,
    RecordNotFoundError,
    UnknownEntityTypeError,
)
from app.services.access_guard import (
    AccessDecision,
    AccessOutcome,
    OperatingMode,
    decide,
)
from app.services.mode_session_service import (
    ModeContext,
    ModeSessionRegistry,
    get_mode_registry,
)
from app.services.ccp_lockdown_service import (
    CCPLockdownService,
    LockdownStatus,
    assess_reading,
    evaluate,
)
from app.services.training_journey_service import (
    TrainingJourneyService,
    TrainingSignals,
    RatchetViolation,
    sync,
)
from app.services.safety_score_service import (
    SafetyScoreService,
    SafetyScoreInputs,
    derive_safety_score,
)
from app.services.quiz_state_service import QuizState, QuizStateStore
