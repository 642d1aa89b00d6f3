"""
Permission Engine - Conflict Detector.

============================================================
PURPOSE
============================================================
Identifies named disagreement patterns between gate verdicts.

Conflicts are never averaged or hidden. Every check runs
independently and each fired check is reported with its own
severity and both sides of the disagreement.

============================================================
CHECKS
============================================================
1. Regime vs Flow       - vol stance against flow direction
2. Flow vs Risk         - flow direction against funding bias
3. Risk vs Context      - low crowding at a band extreme
4. Flow 24H vs 7D       - opposite clearly-signed CVD
5. Context vs Flow      - zone against flow direction

============================================================
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gate_evaluator.types import (
    BandPosition,
    ContextGateEvaluation,
    ContextZone,
    CrowdingLevel,
    CvdDirection,
    FlowDirection,
    FlowGateEvaluation,
    FundingBias,
    GateEvaluationResult,
    RegimeGateEvaluation,
    RiskGateEvaluation,
    TimeframeAlignment,
    VolStance,
)

from .types import (
    ConflictSeverity,
    ConflictSummary,
    ConflictType,
    LayerConflict,
    LayerSignal,
)

logger = logging.getLogger(__name__)


# ============================================================
# INDIVIDUAL CHECKS
# ============================================================


def check_regime_flow(result: GateEvaluationResult) -> Optional[LayerConflict]:
    """Option stance against whale flow direction."""
    regime: RegimeGateEvaluation = result.regime
    flow: FlowGateEvaluation = result.flow

    regime_signal = LayerSignal("Regime", f"Vol stance: {regime.vol_stance.value}", regime.confidence)
    flow_signal = LayerSignal("Flow", f"Direction: {flow.flow_direction.value}", flow.confidence)

    if regime.vol_stance == VolStance.LONG_VOL and flow.flow_direction == FlowDirection.DISTRIBUTION:
        return LayerConflict(
            conflict_type=ConflictType.REGIME_FLOW_DIVERGENCE,
            layer_a=regime_signal,
            layer_b=flow_signal,
            severity=ConflictSeverity.HIGH,
            description=(
                "Option stance (Long Vol) suggests preparing for movement, "
                "but whale flow shows distribution"
            ),
        )

    if regime.vol_stance == VolStance.SHORT_VOL and flow.flow_direction == FlowDirection.ACCUMULATION:
        return LayerConflict(
            conflict_type=ConflictType.REGIME_FLOW_DIVERGENCE,
            layer_a=regime_signal,
            layer_b=flow_signal,
            severity=ConflictSeverity.MEDIUM,
            description=(
                "Option stance (Short Vol) suggests range expectations, "
                "but whale flow shows accumulation"
            ),
        )

    return None


def check_flow_risk(result: GateEvaluationResult) -> Optional[LayerConflict]:
    """Flow direction against crowded positioning on the same side."""
    flow: FlowGateEvaluation = result.flow
    risk: RiskGateEvaluation = result.risk

    if flow.flow_direction == FlowDirection.ACCUMULATION and risk.funding_bias == FundingBias.LONG_CROWDED:
        return LayerConflict(
            conflict_type=ConflictType.FLOW_RISK_DIVERGENCE,
            layer_a=LayerSignal("Flow", "Accumulation detected", flow.confidence),
            layer_b=LayerSignal("Risk", "Longs are crowded", risk.confidence),
            severity=ConflictSeverity.MEDIUM,
            description="Whale accumulation occurring but positioning is already long-crowded",
        )

    if flow.flow_direction == FlowDirection.DISTRIBUTION and risk.funding_bias == FundingBias.SHORT_CROWDED:
        return LayerConflict(
            conflict_type=ConflictType.FLOW_RISK_DIVERGENCE,
            layer_a=LayerSignal("Flow", "Distribution detected", flow.confidence),
            layer_b=LayerSignal("Risk", "Shorts are crowded", risk.confidence),
            severity=ConflictSeverity.MEDIUM,
            description="Whale distribution occurring but positioning is already short-crowded",
        )

    return None


def check_risk_context(result: GateEvaluationResult) -> Optional[LayerConflict]:
    """Low crowding while price sits at a band extreme. Informational."""
    risk: RiskGateEvaluation = result.risk
    context: ContextGateEvaluation = result.context

    if risk.crowding_level != CrowdingLevel.LOW:
        return None

    if context.band_position == BandPosition.UPPER_BAND:
        band_signal, description = (
            "Upper band position",
            "Low crowding but price at upper band - potential for squeeze or reversal",
        )
    elif context.band_position == BandPosition.LOWER_BAND:
        band_signal, description = (
            "Lower band position",
            "Low crowding but price at lower band - potential for bounce or continuation",
        )
    else:
        return None

    return LayerConflict(
        conflict_type=ConflictType.RISK_CONTEXT_DIVERGENCE,
        layer_a=LayerSignal("Risk", "Low crowding", risk.confidence),
        layer_b=LayerSignal("Context", band_signal, context.confidence),
        severity=ConflictSeverity.LOW,
        description=description,
    )


def check_flow_timeframes(result: GateEvaluationResult) -> Optional[LayerConflict]:
    """24H and 7D whale CVD pointing opposite ways. FLAT never fires."""
    flow: FlowGateEvaluation = result.flow
    cvd = flow.cvd_whale

    if cvd.alignment != TimeframeAlignment.DIVERGING:
        return None

    opposite = {
        (CvdDirection.POSITIVE, CvdDirection.NEGATIVE),
        (CvdDirection.NEGATIVE, CvdDirection.POSITIVE),
    }
    if (cvd.h24.direction, cvd.d7.direction) not in opposite:
        return None

    h24, d7 = cvd.h24.direction.value, cvd.d7.direction.value
    return LayerConflict(
        conflict_type=ConflictType.FLOW_TIMEFRAME_DIVERGENCE,
        layer_a=LayerSignal("Flow (24H)", f"CVD direction: {h24}", flow.confidence),
        layer_b=LayerSignal("Flow (7D)", f"CVD direction: {d7}", flow.confidence),
        severity=ConflictSeverity.MEDIUM,
        description=f"24H flow ({h24}) contradicts 7D flow ({d7}) - possible trend change",
    )


def check_zone_flow(result: GateEvaluationResult) -> Optional[LayerConflict]:
    """Context zone contradicting flow direction."""
    context: ContextGateEvaluation = result.context
    flow: FlowGateEvaluation = result.flow

    if context.current_zone == ContextZone.ACCUMULATION_ZONE and flow.flow_direction == FlowDirection.DISTRIBUTION:
        return LayerConflict(
            conflict_type=ConflictType.ZONE_FLOW_DIVERGENCE,
            layer_a=LayerSignal("Context", "Accumulation zone", context.confidence),
            layer_b=LayerSignal("Flow", "Distribution detected", flow.confidence),
            severity=ConflictSeverity.HIGH,
            description="Price in accumulation zone but flow shows distribution - significant divergence",
        )

    if context.current_zone == ContextZone.DISTRIBUTION_ZONE and flow.flow_direction == FlowDirection.ACCUMULATION:
        return LayerConflict(
            conflict_type=ConflictType.ZONE_FLOW_DIVERGENCE,
            layer_a=LayerSignal("Context", "Distribution zone", context.confidence),
            layer_b=LayerSignal("Flow", "Accumulation detected", flow.confidence),
            severity=ConflictSeverity.HIGH,
            description="Price in distribution zone but flow shows accumulation - significant divergence",
        )

    return None


ConflictCheck = Callable[[GateEvaluationResult], Optional[LayerConflict]]

CONFLICT_CHECKS: Tuple[ConflictCheck, ...] = (
    check_regime_flow,
    check_flow_risk,
    check_risk_context,
    check_flow_timeframes,
    check_zone_flow,
)


# ============================================================
# DETECTOR
# ============================================================


class ConflictDetector:
    """
    Runs every conflict check against a gate evaluation result.

    Checks are pure predicates over the verdicts; the detector
    never reads the snapshot and never modifies a verdict.
    """

    def __init__(self, checks: Sequence[ConflictCheck] = CONFLICT_CHECKS):
        self._checks = tuple(checks)

    def detect(self, result: GateEvaluationResult) -> List[LayerConflict]:
        """
        Detect all conflicts in the gate evaluations.

        Args:
            result: All four gate verdicts

        Returns:
            Every fired conflict, in check order (may be empty)
        """
        conflicts: List[LayerConflict] = []

        for check in self._checks:
            conflict = check(result)
            if conflict is not None:
                conflicts.append(conflict)

        if conflicts:
            logger.debug(
                f"Detected {len(conflicts)} conflict(s): "
                f"{', '.join(c.conflict_type.value for c in conflicts)}"
            )

        return conflicts

    @staticmethod
    def summarize(conflicts: Sequence[LayerConflict]) -> ConflictSummary:
        """
        Summarize conflicts by severity.

        The input sequence is left untouched.
        """
        by_severity: Dict[ConflictSeverity, int] = {severity: 0 for severity in ConflictSeverity}
        for conflict in conflicts:
            by_severity[conflict.severity] += 1

        # max() keeps the first of equally severe conflicts
        most_severe = max(conflicts, key=lambda c: c.severity.rank) if conflicts else None

        return ConflictSummary(
            total=len(conflicts),
            by_severity=by_severity,
            most_severe=most_severe,
        )
