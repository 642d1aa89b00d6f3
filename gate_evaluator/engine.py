"""
Gate Evaluator - Coordinator.

============================================================
PURPOSE
============================================================
The GateEvaluator is the entry point for gate evaluation.

It orchestrates:
1. Snapshot validation
2. Regime, Flow and Risk gates (independent)
3. Context gate (consumes the other three verdicts)
4. Result packaging with the data quality summary

============================================================
DESIGN PRINCIPLES
============================================================
- Orchestration only, all rules live in the gates
- Deterministic and stateless per call
- Raises only when the Risk gate cannot even attempt
  evaluation; every other data gap degrades a verdict

============================================================
USAGE
============================================================
    from gate_evaluator import GateEvaluator

    evaluator = GateEvaluator()
    result = evaluator.evaluate(snapshot)

    print(f"Risk: {result.risk.status.value}")

============================================================
"""

import logging
import math
from typing import Optional

from .config import GateEvaluatorConfig
from .gates import ContextGate, FlowGate, RegimeGate, RiskGate
from .types import (
    DataQualitySummary,
    GateEvaluationResult,
    GateName,
    MalformedSnapshotError,
    MarketSnapshot,
)

logger = logging.getLogger(__name__)


class GateEvaluator:
    """
    Runs the four gates over one snapshot.

    ============================================================
    EVALUATION ORDER
    ============================================================
    Regime, Flow and Risk read only the snapshot. Context is
    always last because it reads their verdicts.

    ============================================================
    """

    def __init__(self, config: Optional[GateEvaluatorConfig] = None):
        """
        Initialize the gate evaluator.

        Args:
            config: Gate thresholds. Uses defaults if not provided.

        Raises:
            ConfigurationError: If the thresholds contradict each other
        """
        self.config = (config or GateEvaluatorConfig()).ensure_valid()

        self._regime_gate = RegimeGate(self.config.regime)
        self._flow_gate = FlowGate(self.config.flow)
        self._risk_gate = RiskGate(self.config.risk)
        self._context_gate = ContextGate(self.config.context)

    def evaluate(self, snapshot: MarketSnapshot) -> GateEvaluationResult:
        """
        Evaluate all four gates.

        Args:
            snapshot: Normalized market snapshot

        Returns:
            GateEvaluationResult with all four verdicts

        Raises:
            MalformedSnapshotError: If the snapshot cannot be evaluated at all
        """
        # --------------------------------------------------
        # Step 1: Validate snapshot
        # --------------------------------------------------
        self._validate_snapshot(snapshot)

        # --------------------------------------------------
        # Step 2: Independent gates
        # --------------------------------------------------
        regime = self._regime_gate.evaluate(snapshot)
        flow = self._flow_gate.evaluate(snapshot)
        risk = self._risk_gate.evaluate(snapshot)

        # --------------------------------------------------
        # Step 3: Context gate
        # --------------------------------------------------
        context = self._context_gate.evaluate(snapshot, regime, flow, risk)

        # --------------------------------------------------
        # Step 4: Package result
        # --------------------------------------------------
        result = GateEvaluationResult(
            regime=regime,
            flow=flow,
            risk=risk,
            context=context,
            data_quality=DataQualitySummary.from_report(snapshot.data_quality),
        )

        logger.info(
            f"Gates evaluated for {snapshot.asset}: "
            f"regime={regime.status.value} flow={flow.status.value} "
            f"risk={risk.status.value} context={context.status.value} "
            f"quality={snapshot.data_quality.overall_score:.0f}"
        )

        return result

    def _validate_snapshot(self, snapshot: MarketSnapshot) -> None:
        """
        Reject snapshots the Risk gate cannot evaluate.

        Raises:
            MalformedSnapshotError: On missing exchange metrics, missing
                data quality report, or a non-finite price, funding rate
                or open interest figure
        """
        if snapshot is None:
            raise MalformedSnapshotError("Snapshot is None")

        if not snapshot.asset:
            raise MalformedSnapshotError("Snapshot asset is required")

        if snapshot.exchange is None:
            raise MalformedSnapshotError(
                f"Exchange metrics missing for {snapshot.asset}", gate=GateName.RISK
            )

        if snapshot.data_quality is None:
            raise MalformedSnapshotError(
                f"Data quality report missing for {snapshot.asset}", gate=GateName.RISK
            )

        if snapshot.price is None or not math.isfinite(snapshot.price) or snapshot.price <= 0:
            raise MalformedSnapshotError(
                f"Invalid price for {snapshot.asset}: {snapshot.price}", gate=GateName.RISK
            )

        funding_rate = snapshot.exchange.funding_rate
        if funding_rate is None or not math.isfinite(funding_rate):
            raise MalformedSnapshotError(
                f"Invalid funding rate for {snapshot.asset}: {funding_rate}", gate=GateName.RISK
            )

        open_interest = snapshot.exchange.open_interest
        if open_interest is None or not math.isfinite(open_interest):
            raise MalformedSnapshotError(
                f"Invalid open interest for {snapshot.asset}: {open_interest}", gate=GateName.RISK
            )

        oi_change = snapshot.exchange.oi_change_24h_pct
        if oi_change is not None and not math.isfinite(oi_change):
            raise MalformedSnapshotError(
                f"Invalid 24h OI change for {snapshot.asset}: {oi_change}", gate=GateName.RISK
            )


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================


def evaluate_gates(
    snapshot: MarketSnapshot,
    config: Optional[GateEvaluatorConfig] = None,
) -> GateEvaluationResult:
    """
    Convenience function to evaluate gates in one call.

    For repeated evaluation, prefer a persistent GateEvaluator.
    """
    return GateEvaluator(config=config).evaluate(snapshot)
