"""
Permission Engine - State Calculator.

============================================================
PURPOSE
============================================================
Maps four gate verdicts plus detected conflicts to exactly
one permission state.

============================================================
CASCADE
============================================================
Strict order, first match wins. The order must not change.

1. Hard failures        -> NO_TRADE
   Regime FAIL, Risk FAIL (Tier-1), or Flow AND Context FAIL
2. Transitional         -> WAIT
   >= 3 gates at WEAK_PASS, or any HIGH severity conflict
3. Flow quality         -> SCALP_ONLY
   Flow FAIL or WEAK_PASS
4. Risk-factor discount -> TRADE_ALLOWED_REDUCED_RISK
   Any remaining WEAK_PASS, or a lone Context FAIL
5. Full permission      -> TRADE_ALLOWED

The calculator is total: every combination of statuses and
conflicts resolves to one state. It never raises for
well-formed verdicts.

============================================================
"""

import logging
from typing import Callable, Optional, Sequence, Tuple

from gate_evaluator.types import GateEvaluationResult, GateStatus

from .types import (
    ConflictSeverity,
    LayerConflict,
    PermissionState,
    StateChangeDirection,
)

logger = logging.getLogger(__name__)

DEFAULT_WAIT_WEAK_PASS_THRESHOLD = 3


def _weak_pass_count(result: GateEvaluationResult) -> int:
    return len(result.gates_with_status(GateStatus.WEAK_PASS))


# ============================================================
# CASCADE STEPS
# ============================================================


def hard_failure_step(
    result: GateEvaluationResult,
    conflicts: Sequence[LayerConflict],
    weak_pass_threshold: int,
) -> Optional[PermissionState]:
    """Step 1: Tier-1 and structural failures block everything."""
    if result.regime.status == GateStatus.FAIL:
        return PermissionState.NO_TRADE

    if result.risk.status == GateStatus.FAIL:
        return PermissionState.NO_TRADE

    if result.flow.status == GateStatus.FAIL and result.context.status == GateStatus.FAIL:
        return PermissionState.NO_TRADE

    return None


def transitional_step(
    result: GateEvaluationResult,
    conflicts: Sequence[LayerConflict],
    weak_pass_threshold: int,
) -> Optional[PermissionState]:
    """Step 2: Too many weak gates or a HIGH conflict means WAIT."""
    if _weak_pass_count(result) >= weak_pass_threshold:
        return PermissionState.WAIT

    if any(c.severity == ConflictSeverity.HIGH for c in conflicts):
        return PermissionState.WAIT

    return None


def flow_quality_step(
    result: GateEvaluationResult,
    conflicts: Sequence[LayerConflict],
    weak_pass_threshold: int,
) -> Optional[PermissionState]:
    """Step 3: Flow not fully passing restricts to short-term activity."""
    if result.flow.status in (GateStatus.FAIL, GateStatus.WEAK_PASS):
        return PermissionState.SCALP_ONLY
    return None


def risk_factor_step(
    result: GateEvaluationResult,
    conflicts: Sequence[LayerConflict],
    weak_pass_threshold: int,
) -> Optional[PermissionState]:
    """
    Step 4: Any remaining WEAK_PASS discounts the permission.

    A lone Context FAIL also lands here: only four PASS gates
    reach full permission.
    """
    if any(g.status != GateStatus.PASS for g in result.gates):
        return PermissionState.TRADE_ALLOWED_REDUCED_RISK
    return None


def full_permission_step(
    result: GateEvaluationResult,
    conflicts: Sequence[LayerConflict],
    weak_pass_threshold: int,
) -> Optional[PermissionState]:
    """Step 5: Terminal step, always matches."""
    return PermissionState.TRADE_ALLOWED


CascadeStep = Callable[
    [GateEvaluationResult, Sequence[LayerConflict], int],
    Optional[PermissionState],
]

CASCADE: Tuple[CascadeStep, ...] = (
    hard_failure_step,
    transitional_step,
    flow_quality_step,
    risk_factor_step,
    full_permission_step,
)


# ============================================================
# CALCULATOR
# ============================================================


class StateCalculator:
    """
    Runs the permission cascade.

    Stateless; one instance can be shared across assets.
    """

    def __init__(self, wait_weak_pass_threshold: int = DEFAULT_WAIT_WEAK_PASS_THRESHOLD):
        self.wait_weak_pass_threshold = wait_weak_pass_threshold

    def calculate(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict] = (),
    ) -> PermissionState:
        """
        Calculate the permission state.

        Args:
            result: All four gate verdicts
            conflicts: Conflicts detected on the same verdicts

        Returns:
            Exactly one PermissionState
        """
        for step in CASCADE:
            state = step(result, conflicts, self.wait_weak_pass_threshold)
            if state is not None:
                logger.debug(f"Cascade matched at {step.__name__}: {state.value}")
                return state

        # full_permission_step always matches
        raise AssertionError("Permission cascade did not terminate")

    def primary_reason(self, result: GateEvaluationResult, state: PermissionState) -> str:
        """Short reason naming what put the assessment in this state."""
        regime, flow, risk, context = result.regime, result.flow, result.risk, result.context

        if state == PermissionState.NO_TRADE:
            if risk.status == GateStatus.FAIL:
                return "Risk Gate FAIL (Tier 1 constraint)"
            if regime.status == GateStatus.FAIL:
                return "Regime Gate FAIL"
            if flow.status == GateStatus.FAIL and context.status == GateStatus.FAIL:
                return "Both Flow and Context Gates FAIL"
            return "Multiple gate failures"

        if state == PermissionState.WAIT:
            return "Multiple gates at WEAK_PASS or high severity conflict"

        if state == PermissionState.SCALP_ONLY:
            if flow.status == GateStatus.FAIL:
                return "Flow Gate FAIL"
            return "Flow Gate WEAK_PASS"

        if state == PermissionState.TRADE_ALLOWED_REDUCED_RISK:
            weak = [g.gate_name.value for g in result.gates_with_status(GateStatus.WEAK_PASS)]
            if weak:
                return f"WEAK_PASS on: {', '.join(weak)}"
            return "Context Gate FAIL"

        return "All gates PASS"


# ============================================================
# STATE COMPARISON
# ============================================================


def compare_states(previous: PermissionState, current: PermissionState) -> StateChangeDirection:
    """
    Classify a transition by rank.

    Used only for change notification; it plays no part in
    calculating a state.
    """
    if current.rank > previous.rank:
        return StateChangeDirection.UPGRADE
    if current.rank < previous.rank:
        return StateChangeDirection.DOWNGRADE
    return StateChangeDirection.SAME
