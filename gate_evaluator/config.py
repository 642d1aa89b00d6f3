"""
Gate Evaluator - Configuration.

============================================================
PURPOSE
============================================================
Threshold values for the four gates.

Every numeric tuning constant used by a gate lives here so it
can be reviewed, overridden and validated at startup. Gates
never hard-code thresholds.

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable configurations
- Conservative defaults
- Funding rates are fractions (0.0005 == 0.05%)
- Contradictory thresholds are rejected at construction time
  by GateEvaluatorConfig.validate()

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

from dotenv import load_dotenv

from .types import ConfigurationError


# ============================================================
# REGIME GATE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class RegimeGateConfig:
    """
    Configuration for the Regime gate.

    ============================================================
    THRESHOLD RATIONALE
    ============================================================
    Boundary band:
    - Price within 10% of the comfort range width from either
      edge is AT_BOUNDARY

    Confidence:
    - HIGH needs at least 2 key expiries sharing the same bias

    ============================================================
    """

    boundary_fraction: float = 0.10
    """Fraction of comfort range width treated as the boundary band."""

    max_key_expiries: int = 3
    """Number of upcoming expiries carried on the verdict."""

    min_consistent_expiries: int = 2
    """Expiries with a common bias required for HIGH confidence."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boundary_fraction": self.boundary_fraction,
            "max_key_expiries": self.max_key_expiries,
            "min_consistent_expiries": self.min_consistent_expiries,
        }


# ============================================================
# FLOW GATE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class FlowGateConfig:
    """
    Configuration for the Flow gate.

    ============================================================
    THRESHOLD RATIONALE
    ============================================================
    CVD/Volume ratio:
    - >= 0.30: Whale-driven
    - <= 0.10: Retail-driven
    - Between: Mixed

    Timeframe tie-break:
    - When 24h and 7d deltas disagree in sign and |24h| is
      below 10% of |7d|, the 24h reading is insignificant and
      the 7d sign decides

    ============================================================
    """

    whale_driven_ratio: float = 0.30
    retail_driven_ratio: float = 0.10

    insignificance_ratio: float = 0.10
    """|24h| below this fraction of |7d| follows the 7d sign."""

    cvd_flat_threshold: float = 10_000.0
    """CVD magnitude below which a timeframe reads FLAT."""

    # Magnitude labels (absolute CVD, quote currency)
    magnitude_very_strong: float = 10_000_000.0
    magnitude_strong: float = 1_000_000.0
    magnitude_moderate: float = 100_000.0
    magnitude_weak: float = 10_000.0

    vwap_at_tolerance: float = 0.005
    """Relative distance from whale VWAP still treated as AT."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "whale_driven_ratio": self.whale_driven_ratio,
            "retail_driven_ratio": self.retail_driven_ratio,
            "insignificance_ratio": self.insignificance_ratio,
            "cvd_flat_threshold": self.cvd_flat_threshold,
            "magnitude_very_strong": self.magnitude_very_strong,
            "magnitude_strong": self.magnitude_strong,
            "magnitude_moderate": self.magnitude_moderate,
            "magnitude_weak": self.magnitude_weak,
            "vwap_at_tolerance": self.vwap_at_tolerance,
        }


# ============================================================
# RISK GATE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class RiskGateConfig:
    """
    Configuration for the Risk gate.

    ============================================================
    THRESHOLD RATIONALE
    ============================================================
    Funding (absolute, fraction per interval):
    - > 0.0010: EXTREME crowding (Tier-1 FAIL)
    - > 0.0005: ELEVATED crowding, and long/short crowded bias
    - > 0.0001: NORMAL
    - else: LOW

    Open interest 24h change:
    - > +5%: EXPANDING, < -5%: CONTRACTING

    Liquidation clusters:
    - < 2% away: PROXIMATE, < 5%: MODERATE

    ============================================================
    FAIL-SAFE BEHAVIOR
    ============================================================
    No comfort range means stress status cannot be established.
    The gate then reports INSIDE (in stress) and FAILS.

    ============================================================
    """

    funding_crowded: float = 0.0005
    funding_extreme: float = 0.0010
    funding_elevated: float = 0.0005
    funding_normal: float = 0.0001

    oi_change_threshold_pct: float = 5.0

    boundary_fraction: float = 0.10

    liquidation_proximate_pct: float = 2.0
    liquidation_moderate_pct: float = 5.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "funding_crowded": self.funding_crowded,
            "funding_extreme": self.funding_extreme,
            "funding_elevated": self.funding_elevated,
            "funding_normal": self.funding_normal,
            "oi_change_threshold_pct": self.oi_change_threshold_pct,
            "boundary_fraction": self.boundary_fraction,
            "liquidation_proximate_pct": self.liquidation_proximate_pct,
            "liquidation_moderate_pct": self.liquidation_moderate_pct,
        }


# ============================================================
# CONTEXT GATE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class ContextGateConfig:
    """
    Configuration for the Context gate.

    zone_split and band_split are the fraction of the distance
    between VWAP and a band at which the zone / band position
    changes. They are tuned separately.

    PASS needs a price inside a zone yet still in the mid band,
    which only exists when zone_split < band_split. With the
    default equal splits the Context gate tops out at WEAK_PASS.
    """

    synthetic_band_pct: float = 0.03
    """Half-width of the fallback band around price without whale VWAP."""

    zone_split: float = 0.5
    band_split: float = 0.5

    fair_value_tolerance: float = 0.01
    """Relative distance from whale VWAP still treated as FAIR."""

    high_confidence_score: float = 80.0
    """Minimum overall data quality score for HIGH confidence."""

    @property
    def allows_pass(self) -> bool:
        """True when the split points leave room for a PASS verdict."""
        return self.zone_split < self.band_split

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synthetic_band_pct": self.synthetic_band_pct,
            "zone_split": self.zone_split,
            "band_split": self.band_split,
            "fair_value_tolerance": self.fair_value_tolerance,
            "high_confidence_score": self.high_confidence_score,
        }


# ============================================================
# MASTER CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class GateEvaluatorConfig:
    """
    Master configuration for the gate evaluator.

    Aggregates all gate configs.
    """

    regime: RegimeGateConfig = field(default_factory=RegimeGateConfig)
    flow: FlowGateConfig = field(default_factory=FlowGateConfig)
    risk: RiskGateConfig = field(default_factory=RiskGateConfig)
    context: ContextGateConfig = field(default_factory=ContextGateConfig)

    @classmethod
    def from_env(cls) -> "GateEvaluatorConfig":
        """Load threshold overrides from environment variables."""
        load_dotenv()

        flow_defaults = FlowGateConfig()
        risk_defaults = RiskGateConfig()

        return cls(
            flow=FlowGateConfig(
                whale_driven_ratio=float(os.getenv(
                    "FLOW_WHALE_DRIVEN_RATIO", str(flow_defaults.whale_driven_ratio)
                )),
                retail_driven_ratio=float(os.getenv(
                    "FLOW_RETAIL_DRIVEN_RATIO", str(flow_defaults.retail_driven_ratio)
                )),
            ),
            risk=RiskGateConfig(
                funding_elevated=float(os.getenv(
                    "RISK_FUNDING_ELEVATED", str(risk_defaults.funding_elevated)
                )),
                funding_crowded=float(os.getenv(
                    "RISK_FUNDING_CROWDED", str(risk_defaults.funding_crowded)
                )),
                funding_extreme=float(os.getenv(
                    "RISK_FUNDING_EXTREME", str(risk_defaults.funding_extreme)
                )),
            ),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not 0 < self.regime.boundary_fraction < 0.5:
            errors.append("regime.boundary_fraction must be in (0, 0.5)")
        if self.regime.max_key_expiries < 1:
            errors.append("regime.max_key_expiries must be at least 1")

        if self.flow.retail_driven_ratio >= self.flow.whale_driven_ratio:
            errors.append("flow.retail_driven_ratio must be below flow.whale_driven_ratio")
        if not 0 <= self.flow.insignificance_ratio < 1:
            errors.append("flow.insignificance_ratio must be in [0, 1)")
        if not (
            self.flow.magnitude_weak
            < self.flow.magnitude_moderate
            < self.flow.magnitude_strong
            < self.flow.magnitude_very_strong
        ):
            errors.append("flow magnitude thresholds must be strictly increasing")

        if not self.risk.funding_normal < self.risk.funding_elevated < self.risk.funding_extreme:
            errors.append("risk funding thresholds must satisfy normal < elevated < extreme")
        if self.risk.funding_crowded <= 0:
            errors.append("risk.funding_crowded must be positive")
        if self.risk.liquidation_proximate_pct >= self.risk.liquidation_moderate_pct:
            errors.append("risk.liquidation_proximate_pct must be below liquidation_moderate_pct")
        if not 0 < self.risk.boundary_fraction < 0.5:
            errors.append("risk.boundary_fraction must be in (0, 0.5)")

        if self.context.synthetic_band_pct <= 0:
            errors.append("context.synthetic_band_pct must be positive")
        for name in ("zone_split", "band_split"):
            value = getattr(self.context, name)
            if not 0 < value < 1:
                errors.append(f"context.{name} must be in (0, 1)")

        return errors

    def ensure_valid(self) -> "GateEvaluatorConfig":
        """Raise ConfigurationError if validate() reports anything."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(tuple(errors))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.to_dict(),
            "flow": self.flow.to_dict(),
            "risk": self.risk.to_dict(),
            "context": self.context.to_dict(),
        }


# ============================================================
# DEFAULT CONFIGURATION
# ============================================================


def get_default_config() -> GateEvaluatorConfig:
    """Return the default gate evaluator configuration."""
    return GateEvaluatorConfig()


def get_conservative_config() -> GateEvaluatorConfig:
    """
    Return a more conservative configuration.

    Wider boundary bands and lower funding thresholds move
    verdicts toward WEAK_PASS / FAIL earlier.
    """
    return GateEvaluatorConfig(
        regime=RegimeGateConfig(boundary_fraction=0.15),
        flow=FlowGateConfig(
            whale_driven_ratio=0.40,
            retail_driven_ratio=0.15,
        ),
        risk=RiskGateConfig(
            funding_crowded=0.0004,
            funding_elevated=0.0004,
            funding_extreme=0.0008,
            boundary_fraction=0.15,
        ),
    )
