"""
Permission Engine - Explanation Generator.

============================================================
PURPOSE
============================================================
Builds the human-readable explanation attached to every
permission assessment.

============================================================
LANGUAGE POLICY
============================================================
Explanations are composed from fixed templates and already
computed fields only (gate statuses, gate notes, conflict
descriptions). They:

- NEVER use directional language
- NEVER suggest specific actions
- NEVER imply certainty
- NEVER use urgency language

FORBIDDEN_LANGUAGE lists the phrases that must not appear.
find_forbidden_language() lets tests and renderers verify
any text against it.

============================================================
"""

import logging
import re
from typing import Callable, Dict, List, Sequence, Tuple

from gate_evaluator.types import (
    BandPosition,
    ConfidenceLevel,
    CrowdingLevel,
    DataFreshness,
    FlowQuality,
    FundingBias,
    GateEvaluationResult,
    GateStatus,
    StressRangeStatus,
    TimeframeAlignment,
    VolStance,
    ZoneFlowAlignment,
)

from .types import (
    ConflictSeverity,
    LayerConflict,
    PermissionExplanation,
    PermissionState,
)

logger = logging.getLogger(__name__)


FORBIDDEN_LANGUAGE: Tuple[str, ...] = (
    "bullish",
    "bearish",
    "will go up",
    "will go down",
    "you should buy",
    "you should sell",
    "consider entering",
    "consider exiting",
    "will happen",
    "guaranteed",
    "certain",
    "act now",
    "don't miss",
    "last chance",
    "buy signal",
    "sell signal",
    "entry point",
    "exit point",
)

_FORBIDDEN_PATTERNS = tuple(
    (phrase, re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE))
    for phrase in FORBIDDEN_LANGUAGE
)

HUMAN_AUTHORITY_NOTE = "Human judgment remains the final authority on all decisions"

ObservationBuilder = Callable[[GateEvaluationResult, Sequence[LayerConflict]], str]


def find_forbidden_language(text: str) -> List[str]:
    """
    Return every forbidden phrase found in text.

    Matching is case-insensitive on word boundaries, so
    "uncertain" does not match "certain".
    """
    return [phrase for phrase, pattern in _FORBIDDEN_PATTERNS if pattern.search(text)]


class ExplanationGenerator:
    """
    Creates the explanation layer for an assessment.

    One observation template per permission state; the other
    sections are shared.
    """

    def __init__(self) -> None:
        self._observations: Dict[PermissionState, ObservationBuilder] = {
            PermissionState.TRADE_ALLOWED: self._trade_allowed_observation,
            PermissionState.TRADE_ALLOWED_REDUCED_RISK: self._reduced_risk_observation,
            PermissionState.SCALP_ONLY: self._scalp_only_observation,
            PermissionState.WAIT: self._wait_observation,
            PermissionState.NO_TRADE: self._no_trade_observation,
        }

    def generate(
        self,
        result: GateEvaluationResult,
        state: PermissionState,
        conflicts: Sequence[LayerConflict] = (),
    ) -> PermissionExplanation:
        """
        Generate the complete explanation.

        Args:
            result: All four gate verdicts
            state: Calculated permission state
            conflicts: Detected conflicts

        Returns:
            PermissionExplanation
        """
        explanation = PermissionExplanation(
            current_observation=self._observations[state](result, conflicts),
            alignment_assessment=self._alignment_assessment(result),
            conflict_assessment=self._conflict_assessment(conflicts),
            risk_factors=tuple(self._risk_factors(result)),
            caution_points=tuple(self._caution_points(result, conflicts)),
        )

        found = find_forbidden_language(explanation.all_text())
        if found:
            logger.warning(f"Explanation contains restricted phrasing: {found}")

        return explanation

    # ========================================================
    # OBSERVATIONS
    # ========================================================

    def _trade_allowed_observation(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> str:
        regime, flow = result.regime, result.flow
        parts = ["System observes:"]

        if regime.vol_stance != VolStance.UNCLEAR:
            stance = regime.vol_stance.value.lower().replace("_", " ")
            parts.append(f"Option market indicates {stance} stance.")

        parts.append(f"Whale activity shows {flow.flow_direction.value.lower()} pattern.")

        if flow.flow_quality == FlowQuality.WHALE_DRIVEN:
            parts.append("Flow quality is whale-driven.")

        parts.append("All gates pass - full discretion permitted under framework.")
        return " ".join(parts)

    def _reduced_risk_observation(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> str:
        parts = ["System observes: Core conditions met with some factors requiring attention."]

        for gate in result.gates:
            if gate.status != GateStatus.PASS:
                parts.append(f"{gate.gate_name.value} gate shows: {gate.human_note}")

        parts.append("Framework permits participation at reduced exposure.")
        return " ".join(parts)

    def _scalp_only_observation(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> str:
        flow = result.flow
        parts = ["System observes:"]

        if flow.status == GateStatus.FAIL:
            parts.append("Flow gate indicates insufficient support for extended exposure.")
        elif flow.flow_quality == FlowQuality.MIXED:
            parts.append("Flow quality is uncertain - mixed participation between whales and retail.")
        elif flow.cvd_whale.alignment == TimeframeAlignment.DIVERGING:
            parts.append("Flow quality is uncertain - 24H and 7D timeframes diverge.")

        parts.append("Short-term activity only if any.")
        return " ".join(parts)

    def _wait_observation(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> str:
        parts = ["System observes: Multiple factors indicate transitional conditions."]

        weak = result.gates_with_status(GateStatus.WEAK_PASS)
        if weak:
            parts.append(f"{len(weak)} of 4 gates show weak conditions.")
        if any(c.severity == ConflictSeverity.HIGH for c in conflicts):
            parts.append("A high severity conflict between layers is present.")

        parts.append("Current environment does not support new position initiation.")
        return " ".join(parts)

    def _no_trade_observation(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> str:
        regime, flow, risk, context = result.regime, result.flow, result.risk, result.context

        if risk.status == GateStatus.FAIL:
            return (
                f"System observes: Risk gate conditions not met - {risk.human_note} "
                "This is a framework constraint that blocks exposure."
            )

        if regime.status == GateStatus.FAIL:
            return (
                f"System observes: Regime conditions unclear - {regime.human_note} "
                "Cannot establish market context for framework application."
            )

        if flow.status == GateStatus.FAIL and context.status == GateStatus.FAIL:
            return (
                "System observes: Both flow and context gates indicate unfavorable conditions. "
                "Multiple secondary gates failing blocks exposure under framework."
            )

        return "System observes: Framework conditions block exposure."

    # ========================================================
    # SHARED SECTIONS
    # ========================================================

    def _alignment_assessment(self, result: GateEvaluationResult) -> str:
        failing = [g.gate_name.value for g in result.gates_with_status(GateStatus.FAIL)]
        weak = [g.gate_name.value for g in result.gates_with_status(GateStatus.WEAK_PASS)]

        if failing:
            return f"Layer misalignment detected. Failing gates: {', '.join(failing)}."
        if weak:
            return f"Partial alignment. Weak conditions on: {', '.join(weak)}."
        return "All layers are aligned with passing conditions."

    def _conflict_assessment(self, conflicts: Sequence[LayerConflict]) -> str:
        if not conflicts:
            return "No significant conflicts detected between layers."

        high = [c for c in conflicts if c.severity == ConflictSeverity.HIGH]
        medium = [c for c in conflicts if c.severity == ConflictSeverity.MEDIUM]

        parts = [f"{len(conflicts)} conflict(s) identified."]
        if high:
            parts.append(f"High severity: {', '.join(c.conflict_type.value for c in high)}.")
        if medium:
            parts.append(f"Medium severity: {', '.join(c.conflict_type.value for c in medium)}.")

        most_significant = (high or medium or list(conflicts))[0]
        parts.append(most_significant.description)

        return " ".join(parts)

    def _risk_factors(self, result: GateEvaluationResult) -> List[str]:
        risk, flow, context = result.risk, result.flow, result.context
        factors: List[str] = []

        if risk.crowding_level == CrowdingLevel.EXTREME:
            factors.append("Extreme positioning crowding detected")
        elif risk.crowding_level == CrowdingLevel.ELEVATED:
            factors.append("Elevated positioning crowding")

        if risk.stress_range_status == StressRangeStatus.INSIDE:
            factors.append("Price currently in stress range")
        elif risk.stress_range_status == StressRangeStatus.AT_BOUNDARY:
            factors.append("Price approaching stress range boundary")

        if risk.funding_bias == FundingBias.LONG_CROWDED:
            factors.append("Long positions are crowded (elevated funding)")
        elif risk.funding_bias == FundingBias.SHORT_CROWDED:
            factors.append("Short positions are crowded (negative funding)")

        if flow.flow_quality == FlowQuality.RETAIL_DRIVEN:
            factors.append("Flow appears retail-driven, not whale-driven")

        if flow.cvd_whale.alignment == TimeframeAlignment.DIVERGING:
            factors.append("Short-term and long-term flow are diverging")

        if context.band_position in (BandPosition.UPPER_BAND, BandPosition.LOWER_BAND):
            factors.append(f"Price at {context.band_position.value.lower().replace('_', ' ')}")

        if context.zone_flow_alignment == ZoneFlowAlignment.MISALIGNED:
            factors.append("Zone position does not align with flow direction")

        return factors

    def _caution_points(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict],
    ) -> List[str]:
        cautions: List[str] = []

        for gate in result.gates:
            if gate.data_freshness != DataFreshness.CURRENT:
                cautions.append(f"{gate.gate_name.value.title()} data may not be current")

        for gate in result.gates:
            if gate.confidence == ConfidenceLevel.LOW:
                cautions.append(f"{gate.gate_name.value.title()} assessment has low confidence")

        for conflict in conflicts:
            if conflict.severity == ConflictSeverity.HIGH:
                cautions.append(
                    f"High severity conflict: {conflict.layer_a.name} vs {conflict.layer_b.name}"
                )

        if result.regime.vol_stance == VolStance.UNCLEAR:
            cautions.append("Option market stance is unclear - context may shift")

        if cautions:
            cautions.append(HUMAN_AUTHORITY_NOTE)

        return cautions
