"""
Permission Engine - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the Permission State Engine.

This module defines the permission states, conflict records,
explanation structure and the final assessment handed to
consumers (alerting, persistence, human review).

============================================================
DESIGN PRINCIPLES
============================================================
- All types are immutable (frozen dataclasses, tuples)
- Permission states are totally ordered by rank
- Conflicts are evidence, they never alter a gate verdict
- Timestamps never take part in equality

============================================================
PERMISSION STATES
============================================================
Most permissive to most restrictive:

5. TRADE_ALLOWED              - All gates PASS
4. TRADE_ALLOWED_REDUCED_RISK - Core gates pass, some WEAK_PASS
3. SCALP_ONLY                 - Flow gate weak or failing
2. WAIT                       - Transitional conditions
1. NO_TRADE                   - Hard block

A permission state describes what the framework ALLOWS. It is
never a direction, a size or an instruction.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from gate_evaluator.types import ConfidenceLevel, ConfigurationError, GateEvaluationResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================


class PermissionState(str, Enum):
    """
    The five permission states.

    rank defines the total order used for upgrade / downgrade
    classification. Higher rank is more permissive.
    """

    TRADE_ALLOWED = "TRADE_ALLOWED"
    TRADE_ALLOWED_REDUCED_RISK = "TRADE_ALLOWED_REDUCED_RISK"
    SCALP_ONLY = "SCALP_ONLY"
    WAIT = "WAIT"
    NO_TRADE = "NO_TRADE"

    @property
    def rank(self) -> int:
        ranks = {
            PermissionState.TRADE_ALLOWED: 5,
            PermissionState.TRADE_ALLOWED_REDUCED_RISK: 4,
            PermissionState.SCALP_ONLY: 3,
            PermissionState.WAIT: 2,
            PermissionState.NO_TRADE: 1,
        }
        return ranks[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")

    @classmethod
    def ordered(cls) -> List["PermissionState"]:
        """Return all states from most to least permissive."""
        return sorted(cls, key=lambda s: s.rank, reverse=True)


class UncertaintyLevel(str, Enum):
    """How much trust to place in an assessment. Independent of state."""

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def severity_order(self) -> int:
        """Return numeric order for comparison (higher = less trustworthy)."""
        order = {
            UncertaintyLevel.LOW: 0,
            UncertaintyLevel.MODERATE: 1,
            UncertaintyLevel.HIGH: 2,
            UncertaintyLevel.CRITICAL: 3,
        }
        return order[self]


class ConflictSeverity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Higher rank = more severe."""
        ranks = {
            ConflictSeverity.HIGH: 3,
            ConflictSeverity.MEDIUM: 2,
            ConflictSeverity.LOW: 1,
        }
        return ranks[self]


class ConflictType(str, Enum):
    REGIME_FLOW_DIVERGENCE = "REGIME_FLOW_DIVERGENCE"
    FLOW_RISK_DIVERGENCE = "FLOW_RISK_DIVERGENCE"
    RISK_CONTEXT_DIVERGENCE = "RISK_CONTEXT_DIVERGENCE"
    FLOW_TIMEFRAME_DIVERGENCE = "FLOW_TIMEFRAME_DIVERGENCE"
    ZONE_FLOW_DIVERGENCE = "ZONE_FLOW_DIVERGENCE"


class StateChangeDirection(str, Enum):
    UPGRADE = "UPGRADE"
    DOWNGRADE = "DOWNGRADE"
    SAME = "SAME"


# ============================================================
# CONFLICT TYPES
# ============================================================


@dataclass(frozen=True)
class LayerSignal:
    """One side of a conflict: which layer said what, how confidently."""

    name: str
    signal: str
    confidence: ConfidenceLevel


@dataclass(frozen=True)
class LayerConflict:
    """
    A disagreement between two evaluation layers.

    Conflicts are reported, never averaged away. Both sides are
    kept with their own confidence.
    """

    conflict_type: ConflictType
    layer_a: LayerSignal
    layer_b: LayerSignal
    severity: ConflictSeverity
    description: str
    detected_at: datetime = field(default_factory=_utcnow, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_type": self.conflict_type.value,
            "layer_a": {
                "name": self.layer_a.name,
                "signal": self.layer_a.signal,
                "confidence": self.layer_a.confidence.value,
            },
            "layer_b": {
                "name": self.layer_b.name,
                "signal": self.layer_b.signal,
                "confidence": self.layer_b.confidence.value,
            },
            "severity": self.severity.value,
            "description": self.description,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class ConflictSummary:
    total: int
    by_severity: Dict[ConflictSeverity, int]
    most_severe: Optional[LayerConflict] = None


# ============================================================
# EXPLANATION
# ============================================================


@dataclass(frozen=True)
class PermissionExplanation:
    """
    Human-readable explanation of an assessment.

    Composed only from computed fields. Describes observations
    and conditions, never actions.
    """

    current_observation: str
    alignment_assessment: str
    conflict_assessment: str
    risk_factors: Tuple[str, ...] = ()
    caution_points: Tuple[str, ...] = ()

    def all_text(self) -> str:
        """Every sentence of the explanation, for vocabulary checks."""
        parts = [
            self.current_observation,
            self.alignment_assessment,
            self.conflict_assessment,
            *self.risk_factors,
            *self.caution_points,
        ]
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_observation": self.current_observation,
            "alignment_assessment": self.alignment_assessment,
            "conflict_assessment": self.conflict_assessment,
            "risk_factors": list(self.risk_factors),
            "caution_points": list(self.caution_points),
        }


# ============================================================
# ASSESSMENT
# ============================================================


@dataclass(frozen=True)
class PermissionAssessment:
    """
    Complete permission assessment for one asset and cycle.

    ============================================================
    OUTPUT GUARANTEES
    ============================================================
    - Exactly one permission state
    - All four gate verdicts attached unchanged
    - valid_until = assessed_at + validity window
    - Never mutated after construction

    ============================================================
    """

    id: str
    asset: str
    permission_state: PermissionState
    gate_evaluations: GateEvaluationResult
    conflicts: Tuple[LayerConflict, ...]
    uncertainty_level: UncertaintyLevel
    explanation: PermissionExplanation
    primary_reason: str
    assessed_at: datetime
    valid_until: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the assessment is past its validity window."""
        now = now or _utcnow()
        return now >= self.valid_until

    @property
    def validity_seconds(self) -> float:
        return (self.valid_until - self.assessed_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for audit serialization."""
        return {
            "id": self.id,
            "asset": self.asset,
            "permission_state": self.permission_state.value,
            "gate_evaluations": self.gate_evaluations.to_dict(),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "uncertainty_level": self.uncertainty_level.value,
            "explanation": self.explanation.to_dict(),
            "primary_reason": self.primary_reason,
            "assessed_at": self.assessed_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
        }


# ============================================================
# STATE CHANGE TYPES
# ============================================================


@dataclass(frozen=True)
class PermissionStateChange:
    """
    A change in permission state between two assessments.

    Used for alerting and audit trail.
    """

    asset: str
    previous_state: PermissionState
    current_state: PermissionState
    direction: StateChangeDirection
    trigger: str
    changed_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def is_downgrade(self) -> bool:
        return self.direction == StateChangeDirection.DOWNGRADE

    @property
    def is_upgrade(self) -> bool:
        return self.direction == StateChangeDirection.UPGRADE

    @property
    def change_description(self) -> str:
        """Human-readable description of the change."""
        return (
            f"{self.asset} permission changed from "
            f"{self.previous_state.value} to {self.current_state.value} "
            f"({self.direction.value.lower()})"
        )


# ============================================================
# ERROR TYPES
# ============================================================


class PermissionEngineError(Exception):
    """Base exception for permission engine errors."""
    pass


class InvalidGateResultError(PermissionEngineError):
    """Raised when an assessment is requested without four gate verdicts."""
    pass


class AssetMismatchError(PermissionEngineError):
    """Raised when assessments of two different assets are compared."""
    pass


__all__ = [
    "PermissionState",
    "UncertaintyLevel",
    "ConflictSeverity",
    "ConflictType",
    "StateChangeDirection",
    "LayerSignal",
    "LayerConflict",
    "ConflictSummary",
    "PermissionExplanation",
    "PermissionAssessment",
    "PermissionStateChange",
    "PermissionEngineError",
    "InvalidGateResultError",
    "AssetMismatchError",
    "ConfigurationError",
]
