"""
Permission Engine - Uncertainty Assessor.

Rates how much trust an assessment deserves, independently of
the permission state it carries. A NO_TRADE can be LOW
uncertainty and a TRADE_ALLOWED can be CRITICAL.

Cascade (first match wins):
1. CRITICAL - any gate STALE, or >= 2 gates UNKNOWN freshness
2. HIGH     - >= 2 gates LOW confidence, or any HIGH conflict
3. MODERATE - exactly 1 LOW confidence, any conflict, or
              >= 2 gates MEDIUM confidence
4. LOW      - otherwise
"""

import logging
from typing import Sequence

from gate_evaluator.types import ConfidenceLevel, DataFreshness, GateEvaluationResult

from .types import ConflictSeverity, LayerConflict, UncertaintyLevel

logger = logging.getLogger(__name__)


class UncertaintyAssessor:
    """Derives an UncertaintyLevel from gate confidence, freshness and conflicts."""

    def assess(
        self,
        result: GateEvaluationResult,
        conflicts: Sequence[LayerConflict] = (),
    ) -> UncertaintyLevel:
        gates = result.gates

        stale = sum(1 for g in gates if g.data_freshness == DataFreshness.STALE)
        unknown = sum(1 for g in gates if g.data_freshness == DataFreshness.UNKNOWN)
        if stale > 0 or unknown >= 2:
            logger.debug(f"Uncertainty CRITICAL: stale={stale} unknown={unknown}")
            return UncertaintyLevel.CRITICAL

        low = sum(1 for g in gates if g.confidence == ConfidenceLevel.LOW)
        medium = sum(1 for g in gates if g.confidence == ConfidenceLevel.MEDIUM)
        has_high_conflict = any(c.severity == ConflictSeverity.HIGH for c in conflicts)

        if low >= 2 or has_high_conflict:
            return UncertaintyLevel.HIGH

        if low == 1 or conflicts or medium >= 2:
            return UncertaintyLevel.MODERATE

        return UncertaintyLevel.LOW
