"""
Permission State Engine - Package.

============================================================
PURPOSE
============================================================
Derives a permission state from the four gate verdicts and
explains it in plain, non-directional language.

============================================================
WHAT IT IS
============================================================
- Decision support: describes what the framework ALLOWS
- A strict, ordered rule cascade over gate statuses
- Conflict reporting that never averages layers away
- An uncertainty rating independent of the state

============================================================
WHAT IT IS NOT
============================================================
- NOT a trade direction recommender
- NOT a position sizer
- NOT an order executor
- NOT able to override a gate failure

============================================================
PERMISSION STATES
============================================================
TRADE_ALLOWED > TRADE_ALLOWED_REDUCED_RISK > SCALP_ONLY > WAIT > NO_TRADE

NO_TRADE and WAIT hard-block any downstream suggestion.

============================================================
USAGE
============================================================
    from permission_engine import (
        PermissionStateEngine,
        format_assessment_summary,
    )

    engine = PermissionStateEngine()

    previous = None
    assessment = engine.assess_snapshot(snapshot)
    change = engine.detect_state_change(previous, assessment)

    print(format_assessment_summary(assessment))

============================================================
"""

# Types
from .types import (
    # Enums
    PermissionState,
    UncertaintyLevel,
    ConflictSeverity,
    ConflictType,
    StateChangeDirection,

    # Conflict types
    LayerSignal,
    LayerConflict,
    ConflictSummary,

    # Output types
    PermissionExplanation,
    PermissionAssessment,
    PermissionStateChange,

    # Exceptions
    PermissionEngineError,
    InvalidGateResultError,
    AssetMismatchError,
    ConfigurationError,
)

# Configuration
from .config import (
    AlertingConfig,
    PermissionEngineConfig,
    get_default_config,
)

# Components
from .conflicts import (
    CONFLICT_CHECKS,
    ConflictDetector,
)
from .state_calculator import (
    CASCADE,
    StateCalculator,
    compare_states,
)
from .uncertainty import UncertaintyAssessor
from .explanation import (
    FORBIDDEN_LANGUAGE,
    ExplanationGenerator,
    find_forbidden_language,
)

# Engine
from .engine import (
    PermissionStateEngine,
    is_trade_allowed,
    is_any_trading_permitted,
    is_blocking,
    is_suggestion_eligible,
    format_assessment_summary,
)

# Alerting
from .alerting import (
    AlertTier,
    PermissionAlert,
    AlertSender,
    TelegramAlertSender,
    LoggingAlertSender,
    AlertRateLimiter,
    PermissionAlertingService,
    create_alerting_service,
)

# Persistence
from .models import (
    PermissionAssessmentRecord,
    GateVerdictRecord,
    PermissionStateTransitionRecord,
)
from .repository import PermissionRepository


__all__ = [
    # Enums
    "PermissionState",
    "UncertaintyLevel",
    "ConflictSeverity",
    "ConflictType",
    "StateChangeDirection",

    # Conflict types
    "LayerSignal",
    "LayerConflict",
    "ConflictSummary",

    # Output types
    "PermissionExplanation",
    "PermissionAssessment",
    "PermissionStateChange",

    # Exceptions
    "PermissionEngineError",
    "InvalidGateResultError",
    "AssetMismatchError",
    "ConfigurationError",

    # Configuration
    "AlertingConfig",
    "PermissionEngineConfig",
    "get_default_config",

    # Components
    "CONFLICT_CHECKS",
    "ConflictDetector",
    "CASCADE",
    "StateCalculator",
    "compare_states",
    "UncertaintyAssessor",
    "FORBIDDEN_LANGUAGE",
    "ExplanationGenerator",
    "find_forbidden_language",

    # Engine
    "PermissionStateEngine",
    "is_trade_allowed",
    "is_any_trading_permitted",
    "is_blocking",
    "is_suggestion_eligible",
    "format_assessment_summary",

    # Alerting
    "AlertTier",
    "PermissionAlert",
    "AlertSender",
    "TelegramAlertSender",
    "LoggingAlertSender",
    "AlertRateLimiter",
    "PermissionAlertingService",
    "create_alerting_service",

    # Persistence
    "PermissionAssessmentRecord",
    "GateVerdictRecord",
    "PermissionStateTransitionRecord",
    "PermissionRepository",
]


__version__ = "1.0.0"
