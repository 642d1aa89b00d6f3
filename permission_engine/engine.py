"""
Permission Engine - Main Orchestrator.

============================================================
PURPOSE
============================================================
The PermissionStateEngine is the main entry point for
permission assessment.

It orchestrates:
1. Conflict detection
2. Permission state calculation
3. Uncertainty assessment
4. Explanation generation
5. Assessment packaging

============================================================
DESIGN PRINCIPLES
============================================================
- Orchestration only, rules live in the components
- Deterministic per call apart from id and timestamps
- No shared mutable state, safe across assets
- Never emits a direction, a size or an instruction

============================================================
USAGE
============================================================
    from permission_engine import PermissionStateEngine

    engine = PermissionStateEngine()
    assessment = engine.assess_snapshot(snapshot)

    print(f"State: {assessment.permission_state.value}")
    print(assessment.explanation.current_observation)

============================================================
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from gate_evaluator.engine import GateEvaluator
from gate_evaluator.types import GateEvaluationResult, MarketSnapshot

from .config import PermissionEngineConfig
from .conflicts import ConflictDetector
from .explanation import ExplanationGenerator
from .state_calculator import StateCalculator, compare_states
from .types import (
    AssetMismatchError,
    InvalidGateResultError,
    PermissionAssessment,
    PermissionState,
    PermissionStateChange,
    StateChangeDirection,
)
from .uncertainty import UncertaintyAssessor

logger = logging.getLogger(__name__)


class PermissionStateEngine:
    """
    Facade over the permission pipeline.

    ============================================================
    PIPELINE
    ============================================================
    GateEvaluationResult
        -> ConflictDetector
        -> StateCalculator
        -> UncertaintyAssessor
        -> ExplanationGenerator
        -> PermissionAssessment

    Conflicts are detected before the state is calculated
    because the WAIT step reads conflict severity.

    ============================================================
    """

    def __init__(self, config: Optional[PermissionEngineConfig] = None):
        """
        Initialize the Permission State Engine.

        Args:
            config: Engine configuration. Uses defaults if not provided.

        Raises:
            ConfigurationError: If the configuration is contradictory
        """
        self.config = (config or PermissionEngineConfig()).ensure_valid()

        self._gate_evaluator = GateEvaluator(self.config.gates)
        self._conflict_detector = ConflictDetector()
        self._state_calculator = StateCalculator(self.config.wait_weak_pass_threshold)
        self._uncertainty_assessor = UncertaintyAssessor()
        self._explanation_generator = ExplanationGenerator()

        logger.info(
            f"PermissionStateEngine initialized "
            f"(validity={self.config.validity_seconds:.0f}s, version={self.config.engine_version})"
        )

    def assess(self, asset: str, gate_result: GateEvaluationResult) -> PermissionAssessment:
        """
        Assess the permission state for an asset.

        Args:
            asset: Asset symbol (e.g. "BTCUSDT")
            gate_result: All four gate verdicts

        Returns:
            Complete PermissionAssessment

        Raises:
            InvalidGateResultError: If a gate verdict is missing
        """
        if gate_result is None or any(g is None for g in gate_result.gates):
            raise InvalidGateResultError(f"Incomplete gate result for {asset}")

        assessed_at = datetime.now(timezone.utc)

        # --------------------------------------------------
        # Step 1: Detect conflicts between layers
        # --------------------------------------------------
        conflicts = self._conflict_detector.detect(gate_result)

        # --------------------------------------------------
        # Step 2: Calculate permission state
        # --------------------------------------------------
        state = self._state_calculator.calculate(gate_result, conflicts)

        # --------------------------------------------------
        # Step 3: Assess uncertainty
        # --------------------------------------------------
        uncertainty = self._uncertainty_assessor.assess(gate_result, conflicts)

        # --------------------------------------------------
        # Step 4: Generate explanation
        # --------------------------------------------------
        explanation = self._explanation_generator.generate(gate_result, state, conflicts)

        # --------------------------------------------------
        # Step 5: Package assessment
        # --------------------------------------------------
        assessment = PermissionAssessment(
            id=str(uuid.uuid4()),
            asset=asset.upper(),
            permission_state=state,
            gate_evaluations=gate_result,
            conflicts=tuple(conflicts),
            uncertainty_level=uncertainty,
            explanation=explanation,
            primary_reason=self._state_calculator.primary_reason(gate_result, state),
            assessed_at=assessed_at,
            valid_until=assessed_at + timedelta(seconds=self.config.validity_seconds),
        )

        logger.info(
            f"Permission assessed for {assessment.asset}: {state.value} "
            f"(uncertainty={uncertainty.value}, conflicts={len(conflicts)}, "
            f"reason={assessment.primary_reason})"
        )

        return assessment

    def assess_snapshot(self, snapshot: MarketSnapshot) -> PermissionAssessment:
        """
        Evaluate gates on a snapshot, then assess.

        Raises:
            MalformedSnapshotError: If the snapshot cannot be evaluated
        """
        gate_result = self._gate_evaluator.evaluate(snapshot)
        return self.assess(snapshot.asset, gate_result)

    def detect_state_change(
        self,
        previous: Optional[PermissionAssessment],
        current: PermissionAssessment,
    ) -> Optional[PermissionStateChange]:
        """
        Compare two assessments of the same asset.

        Returns:
            PermissionStateChange if the state differs, None otherwise
            (including when there is no previous assessment)

        Raises:
            AssetMismatchError: If the assessments belong to different assets
        """
        if previous is None:
            return None

        if previous.asset != current.asset:
            raise AssetMismatchError(
                f"Cannot compare {previous.asset} assessment with {current.asset} assessment"
            )

        if previous.permission_state == current.permission_state:
            return None

        direction = compare_states(previous.permission_state, current.permission_state)
        change = PermissionStateChange(
            asset=current.asset,
            previous_state=previous.permission_state,
            current_state=current.permission_state,
            direction=direction,
            trigger=current.primary_reason,
            changed_at=current.assessed_at,
        )

        log = logger.warning if direction == StateChangeDirection.DOWNGRADE else logger.info
        log(f"Permission state change: {change.change_description}")

        return change


# ============================================================
# CONSUMER HELPERS
# ============================================================


def is_trade_allowed(assessment: PermissionAssessment) -> bool:
    """
    True for TRADE_ALLOWED and TRADE_ALLOWED_REDUCED_RISK.

    Note: This is a helper for downstream consumers.
    The engine itself does NOT decide trade execution.
    """
    return assessment.permission_state in (
        PermissionState.TRADE_ALLOWED,
        PermissionState.TRADE_ALLOWED_REDUCED_RISK,
    )


def is_any_trading_permitted(assessment: PermissionAssessment) -> bool:
    """True for every state except WAIT and NO_TRADE."""
    return assessment.permission_state not in (PermissionState.WAIT, PermissionState.NO_TRADE)


def is_blocking(assessment: PermissionAssessment) -> bool:
    return assessment.permission_state == PermissionState.NO_TRADE


def is_suggestion_eligible(assessment: PermissionAssessment, now: Optional[datetime] = None) -> bool:
    """
    Eligibility gate for downstream suggestion components.

    NO_TRADE and WAIT hard-block regardless of any other
    heuristic. An expired assessment is never eligible.
    """
    if assessment.is_expired(now):
        return False
    return is_any_trading_permitted(assessment)


def format_assessment_summary(assessment: PermissionAssessment) -> str:
    """
    Format a human-readable assessment summary.

    Useful for logging, alerts, and dashboards.
    """
    gates = assessment.gate_evaluations
    lines = [
        "=" * 50,
        f"PERMISSION ASSESSMENT: {assessment.asset}",
        "=" * 50,
        f"State: {assessment.permission_state.value}",
        f"Uncertainty: {assessment.uncertainty_level.value}",
        f"Reason: {assessment.primary_reason}",
        f"Assessed: {assessment.assessed_at.isoformat()}",
        f"Valid until: {assessment.valid_until.isoformat()}",
        "-" * 50,
    ]

    for gate in gates.gates:
        lines.append(
            f"  {gate.gate_name.value:<8} {gate.status.value:<10} "
            f"confidence={gate.confidence.value} freshness={gate.data_freshness.value}"
        )

    if assessment.conflicts:
        lines.append("-" * 50)
        lines.append(f"Conflicts ({len(assessment.conflicts)}):")
        for conflict in assessment.conflicts:
            lines.append(f"  [{conflict.severity.value}] {conflict.conflict_type.value}")

    lines.append("-" * 50)
    lines.append(assessment.explanation.current_observation)
    lines.append("=" * 50)

    return "\n".join(lines)
