"""
Gate Evaluator - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the four-gate evaluation pipeline.

This module defines the normalized market snapshot consumed
by the gates, the verdict records each gate produces, and the
packaged evaluation result handed to the permission engine.

============================================================
DESIGN PRINCIPLES
============================================================
- All types are immutable (frozen dataclasses, tuples)
- Enums for every discrete classification
- Four verdict variants sharing one base contract
- Snapshot is read-only to the gates

============================================================
GATES
============================================================
1. REGIME  - Macro context from options positioning
2. FLOW    - Whale order-flow direction and quality
3. RISK    - Crowding and stress range (Tier-1 constraint)
4. CONTEXT - Price position vs whale reference levels

Each gate outputs a status: PASS, WEAK_PASS or FAIL.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# GATE ENUMS
# ============================================================


class GateName(str, Enum):
    """The four gates, in evaluation order."""

    REGIME = "REGIME"
    FLOW = "FLOW"
    RISK = "RISK"
    CONTEXT = "CONTEXT"

    @classmethod
    def evaluation_order(cls) -> Tuple["GateName", ...]:
        """Context consumes the other three, so it always runs last."""
        return (cls.REGIME, cls.FLOW, cls.RISK, cls.CONTEXT)


class GateStatus(str, Enum):
    """
    Verdict of a single gate.

    - PASS: Gate conditions fully met
    - WEAK_PASS: Conditions met with concerns
    - FAIL: Conditions not met
    """

    PASS = "PASS"
    WEAK_PASS = "WEAK_PASS"
    FAIL = "FAIL"


class ConfidenceLevel(str, Enum):
    """Confidence a gate has in its own verdict."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DataFreshness(str, Enum):
    """Freshness of the data a gate relied on."""

    CURRENT = "CURRENT"
    STALE = "STALE"
    UNKNOWN = "UNKNOWN"      # Source absent entirely


class DataQualityLevel(str, Enum):
    """Overall data quality classification of a snapshot."""

    GOOD = "GOOD"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_score(
        cls,
        score: float,
        good_threshold: float = 80.0,
        degraded_threshold: float = 50.0,
    ) -> "DataQualityLevel":
        """
        Classify an overall quality score (0-100).

        Args:
            score: Overall quality score
            good_threshold: Minimum score for GOOD
            degraded_threshold: Minimum score for DEGRADED

        Returns:
            DataQualityLevel classification
        """
        if score >= good_threshold:
            return cls.GOOD
        elif score >= degraded_threshold:
            return cls.DEGRADED
        return cls.CRITICAL


# ============================================================
# MARKET ENUMS
# ============================================================


class VolStance(str, Enum):
    """Options-market volatility stance."""

    LONG_VOL = "LONG_VOL"      # Positioned for large moves
    SHORT_VOL = "SHORT_VOL"    # Positioned for range
    UNCLEAR = "UNCLEAR"


class TermStructure(str, Enum):
    CONTANGO = "CONTANGO"
    BACKWARDATION = "BACKWARDATION"
    FLAT = "FLAT"
    UNCLEAR = "UNCLEAR"


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PricePosition(str, Enum):
    """Price position relative to the options comfort range."""

    INSIDE_COMFORT = "INSIDE_COMFORT"
    AT_BOUNDARY = "AT_BOUNDARY"
    IN_STRESS = "IN_STRESS"
    UNKNOWN = "UNKNOWN"


class FlowDirection(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    DISTRIBUTION = "DISTRIBUTION"
    NEUTRAL = "NEUTRAL"
    UNCLEAR = "UNCLEAR"


class FlowQuality(str, Enum):
    """Who is driving the observed flow."""

    WHALE_DRIVEN = "WHALE_DRIVEN"
    MIXED = "MIXED"
    RETAIL_DRIVEN = "RETAIL_DRIVEN"


class CvdDirection(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    FLAT = "FLAT"


class CvdMagnitude(str, Enum):
    VERY_STRONG = "VERY_STRONG"
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    INSIGNIFICANT = "INSIGNIFICANT"
    UNKNOWN = "UNKNOWN"


class TimeframeAlignment(str, Enum):
    CONSISTENT = "CONSISTENT"
    DIVERGING = "DIVERGING"


class VwapRelation(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    AT = "AT"


class VwapBandPosition(str, Enum):
    LOWER_BAND = "LOWER_BAND"
    MID_RANGE = "MID_RANGE"
    UPPER_BAND = "UPPER_BAND"


class OiTrend(str, Enum):
    EXPANDING = "EXPANDING"
    STABLE = "STABLE"
    CONTRACTING = "CONTRACTING"


class FundingBias(str, Enum):
    LONG_CROWDED = "LONG_CROWDED"
    SHORT_CROWDED = "SHORT_CROWDED"
    BALANCED = "BALANCED"


class CrowdingLevel(str, Enum):
    """Positioning crowding derived from funding magnitude."""

    EXTREME = "EXTREME"
    ELEVATED = "ELEVATED"
    NORMAL = "NORMAL"
    LOW = "LOW"


class StressRangeStatus(str, Enum):
    """
    Price relative to the stress range.

    INSIDE means price has left the comfort range and sits in
    the stress range. OUTSIDE is the safe state.
    """

    OUTSIDE = "OUTSIDE"
    AT_BOUNDARY = "AT_BOUNDARY"
    INSIDE = "INSIDE"


class ClusterSide(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"


class ClusterDistance(str, Enum):
    DISTANT = "DISTANT"
    MODERATE = "MODERATE"
    PROXIMATE = "PROXIMATE"


class ContextZone(str, Enum):
    ACCUMULATION_ZONE = "ACCUMULATION_ZONE"
    NEUTRAL_ZONE = "NEUTRAL_ZONE"
    DISTRIBUTION_ZONE = "DISTRIBUTION_ZONE"


class VwapValuation(str, Enum):
    DISCOUNT = "DISCOUNT"
    FAIR = "FAIR"
    PREMIUM = "PREMIUM"


class BandPosition(str, Enum):
    LOWER_BAND = "LOWER_BAND"
    MID_BAND = "MID_BAND"
    UPPER_BAND = "UPPER_BAND"


class ZoneFlowAlignment(str, Enum):
    ALIGNED = "ALIGNED"
    NEUTRAL = "NEUTRAL"
    MISALIGNED = "MISALIGNED"


# ============================================================
# INPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class PriceRange:
    """Closed price interval (options comfort range)."""

    lower: float
    upper: float

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def contains(self, price: float) -> bool:
        return self.lower <= price <= self.upper


@dataclass(frozen=True)
class LiquidationLevels:
    """Known liquidation price clusters."""

    longs: Tuple[float, ...] = ()
    shorts: Tuple[float, ...] = ()


@dataclass(frozen=True)
class ExchangeMetrics:
    """
    Perpetual futures metrics for one asset.

    Funding is a fraction per interval: 0.0005 == 0.05%.
    """

    funding_rate: float
    open_interest: float

    # 24h change of open interest, in percent
    oi_change_24h_pct: Optional[float] = None

    liquidation_levels: Optional[LiquidationLevels] = None

    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class KeyExpiry:
    """A major upcoming options expiry."""

    date: datetime
    bias: str
    notional: str = ""
    max_pain: Optional[float] = None


@dataclass(frozen=True)
class OptionsMetrics:
    """Options-market positioning for one asset."""

    vol_stance: VolStance
    comfort_range: Optional[PriceRange] = None
    stress_range_lower: Optional[float] = None
    stress_range_upper: Optional[float] = None
    term_structure: TermStructure = TermStructure.UNCLEAR
    key_expiries: Tuple[KeyExpiry, ...] = ()
    implied_volatility: Optional[float] = None
    put_call_ratio: Optional[float] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class VwapBands:
    lower: float
    upper: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class BubbleSignal:
    """A recent large ("bubble") trade print."""

    price: float
    side: TradeSide
    size: str
    timestamp: datetime


@dataclass(frozen=True)
class WhaleMetrics:
    """
    Large-trade order flow for one asset.

    CVD values are signed quote-currency deltas.
    cvd_volume_ratio is whale CVD relative to total volume (0-1).
    """

    cvd_whale_24h: float
    cvd_whale_7d: float
    cvd_volume_ratio: float
    whale_vwap: Optional[float] = None
    vwap_bands: Optional[VwapBands] = None
    bubble_signals: Tuple[BubbleSignal, ...] = ()
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SourceQuality:
    """Freshness and availability of one upstream source."""

    fresh: bool
    available: bool = True
    last_update: Optional[datetime] = None
    source: str = ""


@dataclass(frozen=True)
class DataQualityReport:
    """Data quality of a snapshot, produced by the data layer."""

    overall_score: float
    exchange: SourceQuality
    options: SourceQuality = field(default_factory=lambda: SourceQuality(fresh=False, available=False))
    whale: SourceQuality = field(default_factory=lambda: SourceQuality(fresh=False, available=False))
    issues: Tuple[str, ...] = ()

    @property
    def level(self) -> DataQualityLevel:
        return DataQualityLevel.from_score(self.overall_score)


@dataclass(frozen=True)
class MarketSnapshot:
    """
    Normalized market state for one asset at one evaluation cycle.

    Built once per cycle by the data layer. exchange and
    data_quality are mandatory for evaluation; options and whale
    are optional and their absence degrades the related gates.
    """

    asset: str
    price: float
    exchange: Optional[ExchangeMetrics]
    data_quality: Optional[DataQualityReport]
    options: Optional[OptionsMetrics] = None
    whale: Optional[WhaleMetrics] = None
    timestamp: datetime = field(default_factory=_utcnow)


# ============================================================
# VERDICT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class GateEvidence:
    """One observation supporting or contradicting a verdict."""

    observation: str
    source: str
    timestamp: datetime


@dataclass(frozen=True)
class BaseGateEvaluation:
    """
    Fields shared by all four gate verdicts.

    Verdicts are created once per cycle and never mutated.
    evaluated_at is excluded from equality so identical
    snapshots produce equal verdicts.
    """

    gate_name: ClassVar[GateName]

    status: GateStatus
    confidence: ConfidenceLevel
    data_freshness: DataFreshness
    human_note: str
    supporting_evidence: Tuple[GateEvidence, ...] = ()
    conflicting_evidence: Tuple[GateEvidence, ...] = ()
    evaluated_at: datetime = field(default_factory=_utcnow, compare=False)

    def _detail_dict(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for audit serialization."""
        return {
            "gate_name": self.gate_name.value,
            "status": self.status.value,
            "confidence": self.confidence.value,
            "data_freshness": self.data_freshness.value,
            "human_note": self.human_note,
            "supporting_evidence": [
                {"observation": e.observation, "source": e.source, "timestamp": e.timestamp.isoformat()}
                for e in self.supporting_evidence
            ],
            "conflicting_evidence": [
                {"observation": e.observation, "source": e.source, "timestamp": e.timestamp.isoformat()}
                for e in self.conflicting_evidence
            ],
            "evaluated_at": self.evaluated_at.isoformat(),
            "details": self._detail_dict(),
        }


@dataclass(frozen=True)
class RegimeGateEvaluation(BaseGateEvaluation):
    """Regime gate verdict."""

    gate_name: ClassVar[GateName] = GateName.REGIME

    vol_stance: VolStance = VolStance.UNCLEAR
    comfort_range: Optional[PriceRange] = None
    price_position: PricePosition = PricePosition.UNKNOWN
    key_expiries: Tuple[KeyExpiry, ...] = ()

    def _detail_dict(self) -> Dict[str, Any]:
        return {
            "vol_stance": self.vol_stance.value,
            "comfort_range": (
                {"lower": self.comfort_range.lower, "upper": self.comfort_range.upper}
                if self.comfort_range else None
            ),
            "price_position": self.price_position.value,
            "key_expiries": [
                {"date": e.date.isoformat(), "bias": e.bias, "notional": e.notional}
                for e in self.key_expiries
            ],
        }


@dataclass(frozen=True)
class CvdTimeframe:
    direction: CvdDirection = CvdDirection.FLAT
    magnitude: CvdMagnitude = CvdMagnitude.UNKNOWN


@dataclass(frozen=True)
class CvdWhaleAssessment:
    """Per-timeframe whale CVD reading and their agreement."""

    h24: CvdTimeframe = field(default_factory=CvdTimeframe)
    d7: CvdTimeframe = field(default_factory=CvdTimeframe)
    alignment: TimeframeAlignment = TimeframeAlignment.DIVERGING


@dataclass(frozen=True)
class WhaleVwapPosition:
    price_vs_vwap: VwapRelation = VwapRelation.AT
    band_position: VwapBandPosition = VwapBandPosition.MID_RANGE


@dataclass(frozen=True)
class FlowGateEvaluation(BaseGateEvaluation):
    """Flow gate verdict."""

    gate_name: ClassVar[GateName] = GateName.FLOW

    flow_direction: FlowDirection = FlowDirection.UNCLEAR
    flow_quality: FlowQuality = FlowQuality.RETAIL_DRIVEN
    cvd_whale: CvdWhaleAssessment = field(default_factory=CvdWhaleAssessment)
    whale_vwap_position: WhaleVwapPosition = field(default_factory=WhaleVwapPosition)

    def _detail_dict(self) -> Dict[str, Any]:
        return {
            "flow_direction": self.flow_direction.value,
            "flow_quality": self.flow_quality.value,
            "cvd_whale": {
                "h24": {
                    "direction": self.cvd_whale.h24.direction.value,
                    "magnitude": self.cvd_whale.h24.magnitude.value,
                },
                "d7": {
                    "direction": self.cvd_whale.d7.direction.value,
                    "magnitude": self.cvd_whale.d7.magnitude.value,
                },
                "alignment": self.cvd_whale.alignment.value,
            },
            "whale_vwap_position": {
                "price_vs_vwap": self.whale_vwap_position.price_vs_vwap.value,
                "band_position": self.whale_vwap_position.band_position.value,
            },
        }


@dataclass(frozen=True)
class LiquidationContext:
    nearest_cluster: ClusterSide = ClusterSide.ABOVE
    distance: ClusterDistance = ClusterDistance.DISTANT


@dataclass(frozen=True)
class RiskGateEvaluation(BaseGateEvaluation):
    """Risk gate verdict. A FAIL here is a Tier-1 constraint."""

    gate_name: ClassVar[GateName] = GateName.RISK

    oi_trend: OiTrend = OiTrend.STABLE
    funding_bias: FundingBias = FundingBias.BALANCED
    crowding_level: CrowdingLevel = CrowdingLevel.LOW
    stress_range_status: StressRangeStatus = StressRangeStatus.INSIDE
    liquidation_context: LiquidationContext = field(default_factory=LiquidationContext)

    @property
    def is_tier_one_block(self) -> bool:
        return self.status == GateStatus.FAIL

    def _detail_dict(self) -> Dict[str, Any]:
        return {
            "oi_trend": self.oi_trend.value,
            "funding_bias": self.funding_bias.value,
            "crowding_level": self.crowding_level.value,
            "stress_range_status": self.stress_range_status.value,
            "liquidation_context": {
                "nearest_cluster": self.liquidation_context.nearest_cluster.value,
                "distance": self.liquidation_context.distance.value,
            },
        }


@dataclass(frozen=True)
class ReferenceLevel:
    """Whale VWAP reference, or a synthetic band when VWAP is unavailable."""

    whale_vwap: float
    lower_band: float
    upper_band: float
    synthetic: bool = False


@dataclass(frozen=True)
class ContextGateEvaluation(BaseGateEvaluation):
    """Context gate verdict. An alignment check, not a signal."""

    gate_name: ClassVar[GateName] = GateName.CONTEXT

    current_zone: ContextZone = ContextZone.NEUTRAL_ZONE
    price_vs_whale_vwap: VwapValuation = VwapValuation.FAIR
    band_position: BandPosition = BandPosition.MID_BAND
    zone_flow_alignment: ZoneFlowAlignment = ZoneFlowAlignment.NEUTRAL
    reference_level: Optional[ReferenceLevel] = None

    def _detail_dict(self) -> Dict[str, Any]:
        return {
            "current_zone": self.current_zone.value,
            "price_vs_whale_vwap": self.price_vs_whale_vwap.value,
            "band_position": self.band_position.value,
            "zone_flow_alignment": self.zone_flow_alignment.value,
            "reference_level": (
                {
                    "whale_vwap": self.reference_level.whale_vwap,
                    "lower_band": self.reference_level.lower_band,
                    "upper_band": self.reference_level.upper_band,
                    "synthetic": self.reference_level.synthetic,
                }
                if self.reference_level else None
            ),
        }


# ============================================================
# EVALUATION RESULT
# ============================================================


@dataclass(frozen=True)
class DataQualitySummary:
    """Data quality copied from the snapshot for audit."""

    overall_score: float
    level: DataQualityLevel
    exchange_fresh: bool
    options_fresh: bool
    whale_fresh: bool
    issues: Tuple[str, ...] = ()

    @classmethod
    def from_report(cls, report: DataQualityReport) -> "DataQualitySummary":
        return cls(
            overall_score=report.overall_score,
            level=report.level,
            exchange_fresh=report.exchange.fresh,
            options_fresh=report.options.fresh,
            whale_fresh=report.whale.fresh,
            issues=tuple(report.issues),
        )


@dataclass(frozen=True)
class GateEvaluationResult:
    """
    Packaged output of one evaluation cycle.

    ============================================================
    OUTPUT GUARANTEES
    ============================================================
    - All four verdicts always present
    - Context verdict computed after the other three
    - Data quality summary always attached

    ============================================================
    """

    regime: RegimeGateEvaluation
    flow: FlowGateEvaluation
    risk: RiskGateEvaluation
    context: ContextGateEvaluation
    data_quality: DataQualitySummary
    evaluated_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def gates(self) -> Tuple[BaseGateEvaluation, ...]:
        """All verdicts in evaluation order."""
        return (self.regime, self.flow, self.risk, self.context)

    def get_gate(self, name: GateName) -> BaseGateEvaluation:
        mapping = {
            GateName.REGIME: self.regime,
            GateName.FLOW: self.flow,
            GateName.RISK: self.risk,
            GateName.CONTEXT: self.context,
        }
        return mapping[name]

    def gates_with_status(self, status: GateStatus) -> Tuple[BaseGateEvaluation, ...]:
        return tuple(g for g in self.gates if g.status == status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for audit serialization."""
        return {
            "regime": self.regime.to_dict(),
            "flow": self.flow.to_dict(),
            "risk": self.risk.to_dict(),
            "context": self.context.to_dict(),
            "data_quality": {
                "overall_score": self.data_quality.overall_score,
                "level": self.data_quality.level.value,
                "exchange_fresh": self.data_quality.exchange_fresh,
                "options_fresh": self.data_quality.options_fresh,
                "whale_fresh": self.data_quality.whale_fresh,
                "issues": list(self.data_quality.issues),
            },
            "evaluated_at": self.evaluated_at.isoformat(),
        }


# ============================================================
# ERROR TYPES
# ============================================================


class GateEvaluationError(Exception):
    """Base exception for gate evaluation errors."""

    def __init__(self, message: str, gate: Optional[GateName] = None) -> None:
        super().__init__(message)
        self.gate = gate


class MalformedSnapshotError(GateEvaluationError):
    """
    Raised when a snapshot is too incomplete for the Risk gate
    to even attempt evaluation.

    NOTE: Missing options or whale data is NOT malformed. Those
    gaps degrade the affected verdicts instead.
    """
    pass


class ConfigurationError(ValueError):
    """Raised when thresholds contradict each other."""

    def __init__(self, errors: Tuple[str, ...]) -> None:
        super().__init__("; ".join(errors))
        self.errors = tuple(errors)
