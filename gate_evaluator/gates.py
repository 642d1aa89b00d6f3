"""
Gate Evaluator - Gates.

============================================================
PURPOSE
============================================================
The four gates that turn a MarketSnapshot into verdicts.

Each gate:
1. Reads only the snapshot (Context also reads the other verdicts)
2. Applies threshold-based classification
3. Returns an immutable verdict with status, confidence,
   freshness, evidence and a human-readable note

============================================================
DESIGN PRINCIPLES
============================================================
- Pure: same snapshot = same verdict
- No I/O, no shared state between calls
- Degraded verdicts over exceptions: missing options or whale
  data produces FAIL / WEAK_PASS with LOW confidence
- Unknown is never treated as safe
- Notes describe observations only; no directional wording

============================================================
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import replace
from typing import List, Optional, Tuple

from .config import (
    ContextGateConfig,
    FlowGateConfig,
    RegimeGateConfig,
    RiskGateConfig,
)
from .types import (
    BandPosition,
    ClusterDistance,
    ClusterSide,
    ConfidenceLevel,
    ContextGateEvaluation,
    ContextZone,
    CrowdingLevel,
    CvdDirection,
    CvdMagnitude,
    CvdTimeframe,
    CvdWhaleAssessment,
    DataFreshness,
    DataQualityLevel,
    FlowDirection,
    FlowGateEvaluation,
    FlowQuality,
    FundingBias,
    GateEvidence,
    GateName,
    GateStatus,
    LiquidationContext,
    LiquidationLevels,
    MarketSnapshot,
    OiTrend,
    OptionsMetrics,
    PricePosition,
    PriceRange,
    ReferenceLevel,
    RegimeGateEvaluation,
    RiskGateEvaluation,
    StressRangeStatus,
    TermStructure,
    TimeframeAlignment,
    TradeSide,
    VolStance,
    VwapBandPosition,
    VwapRelation,
    VwapValuation,
    WhaleMetrics,
    WhaleVwapPosition,
    ZoneFlowAlignment,
)

logger = logging.getLogger(__name__)


def _is_finite(value) -> bool:
    return value is not None and math.isfinite(value)


def _with_usable_whale(snapshot: MarketSnapshot) -> MarketSnapshot:
    """
    Drop whale metrics that cannot be read as numbers.

    A whale block with a missing or non-finite CVD figure, or a
    non-finite VWAP or band edge, is treated as no whale data.
    """
    whale = snapshot.whale
    if whale is None:
        return snapshot

    usable = all(
        _is_finite(value)
        for value in (whale.cvd_whale_24h, whale.cvd_whale_7d, whale.cvd_volume_ratio)
    )
    if whale.whale_vwap is not None and not _is_finite(whale.whale_vwap):
        usable = False
    if whale.vwap_bands is not None and not (
        _is_finite(whale.vwap_bands.lower) and _is_finite(whale.vwap_bands.upper)
    ):
        usable = False

    if usable:
        return snapshot

    logger.warning(f"Unusable whale metrics for {snapshot.asset}, treating as missing")
    return replace(snapshot, whale=None)


# ============================================================
# BASE GATE
# ============================================================


class BaseGate(ABC):
    """
    Abstract base class for gates.

    Provides the comfort-range geometry shared by the Regime and
    Risk gates.
    """

    @property
    @abstractmethod
    def gate_name(self) -> GateName:
        """Return the gate this evaluator implements."""
        pass

    @staticmethod
    def _classify_against_range(
        price: float,
        comfort_range: Optional[PriceRange],
        boundary_fraction: float,
    ) -> PricePosition:
        """
        Place price relative to a comfort range.

        Args:
            price: Current price
            comfort_range: Options comfort range, if known
            boundary_fraction: Fraction of range width forming the boundary band

        Returns:
            IN_STRESS outside the range, AT_BOUNDARY inside the
            boundary band, INSIDE_COMFORT otherwise, UNKNOWN without a range
        """
        if comfort_range is None:
            return PricePosition.UNKNOWN

        if not comfort_range.contains(price):
            return PricePosition.IN_STRESS

        threshold = comfort_range.width * boundary_fraction
        if price < comfort_range.lower + threshold or price > comfort_range.upper - threshold:
            return PricePosition.AT_BOUNDARY

        return PricePosition.INSIDE_COMFORT

    def _log_verdict(self, snapshot: MarketSnapshot, status: GateStatus, confidence: ConfidenceLevel) -> None:
        logger.debug(
            f"{self.gate_name.value} gate {snapshot.asset}: "
            f"status={status.value} confidence={confidence.value}"
        )


# ============================================================
# REGIME GATE
# ============================================================


class RegimeGate(BaseGate):
    """
    Establishes macro context from options positioning.

    FAIL when no usable regime exists (vol stance UNCLEAR or no
    comfort range). WEAK_PASS when the regime exists but price
    challenges it.
    """

    def __init__(self, config: Optional[RegimeGateConfig] = None):
        self.config = config or RegimeGateConfig()

    @property
    def gate_name(self) -> GateName:
        return GateName.REGIME

    def evaluate(self, snapshot: MarketSnapshot) -> RegimeGateEvaluation:
        options = snapshot.options

        vol_stance = options.vol_stance if options else VolStance.UNCLEAR
        comfort_range = options.comfort_range if options else None
        price_position = self._classify_against_range(
            snapshot.price, comfort_range, self.config.boundary_fraction
        )
        key_expiries = tuple(options.key_expiries[: self.config.max_key_expiries]) if options else ()

        status = self._determine_status(vol_stance, comfort_range, price_position)
        confidence = self._determine_confidence(snapshot, vol_stance, comfort_range)
        supporting, conflicting = self._build_evidence(snapshot, vol_stance, price_position)

        self._log_verdict(snapshot, status, confidence)

        return RegimeGateEvaluation(
            status=status,
            confidence=confidence,
            data_freshness=self._assess_freshness(snapshot),
            human_note=self._human_note(status, vol_stance, price_position, comfort_range),
            supporting_evidence=supporting,
            conflicting_evidence=conflicting,
            vol_stance=vol_stance,
            comfort_range=comfort_range,
            price_position=price_position,
            key_expiries=key_expiries,
        )

    def _determine_status(
        self,
        vol_stance: VolStance,
        comfort_range: Optional[PriceRange],
        price_position: PricePosition,
    ) -> GateStatus:
        if vol_stance == VolStance.UNCLEAR or comfort_range is None:
            return GateStatus.FAIL

        # Regime exists, price is challenging it
        if price_position in (PricePosition.AT_BOUNDARY, PricePosition.IN_STRESS):
            return GateStatus.WEAK_PASS

        return GateStatus.PASS

    def _determine_confidence(
        self,
        snapshot: MarketSnapshot,
        vol_stance: VolStance,
        comfort_range: Optional[PriceRange],
    ) -> ConfidenceLevel:
        options = snapshot.options

        if options is None or not snapshot.data_quality.options.fresh:
            return ConfidenceLevel.LOW

        if vol_stance == VolStance.UNCLEAR:
            return ConfidenceLevel.LOW

        if comfort_range is None:
            return ConfidenceLevel.MEDIUM

        if self._consistent_expiry_count(options) >= self.config.min_consistent_expiries:
            return ConfidenceLevel.HIGH

        return ConfidenceLevel.MEDIUM

    @staticmethod
    def _consistent_expiry_count(options: OptionsMetrics) -> int:
        """Size of the largest group of expiries sharing a bias."""
        biases = Counter(e.bias.strip().upper() for e in options.key_expiries if e.bias)
        if not biases:
            return 0
        return biases.most_common(1)[0][1]

    def _assess_freshness(self, snapshot: MarketSnapshot) -> DataFreshness:
        if snapshot.options is None:
            return DataFreshness.UNKNOWN
        return DataFreshness.CURRENT if snapshot.data_quality.options.fresh else DataFreshness.STALE

    def _build_evidence(
        self,
        snapshot: MarketSnapshot,
        vol_stance: VolStance,
        price_position: PricePosition,
    ) -> Tuple[Tuple[GateEvidence, ...], Tuple[GateEvidence, ...]]:
        supporting: List[GateEvidence] = []
        conflicting: List[GateEvidence] = []
        options = snapshot.options
        ts = options.timestamp if options else snapshot.timestamp

        if options is None:
            conflicting.append(GateEvidence("Options data unavailable", "Options Data", snapshot.timestamp))
            return tuple(supporting), tuple(conflicting)

        if vol_stance != VolStance.UNCLEAR:
            supporting.append(GateEvidence(f"Vol stance identified: {vol_stance.value}", "Options Data", ts))
        else:
            conflicting.append(GateEvidence("Vol stance unclear from options data", "Options Data", ts))

        if options.comfort_range is not None:
            supporting.append(GateEvidence(
                f"Comfort range: {options.comfort_range.lower:,.0f} - {options.comfort_range.upper:,.0f}",
                "Options Data",
                ts,
            ))
        else:
            conflicting.append(GateEvidence("Comfort range not identifiable", "Options Data", ts))

        if price_position == PricePosition.INSIDE_COMFORT:
            supporting.append(GateEvidence("Price inside comfort range", "Price Analysis", snapshot.timestamp))
        elif price_position == PricePosition.AT_BOUNDARY:
            conflicting.append(GateEvidence("Price at comfort range boundary", "Price Analysis", snapshot.timestamp))
        elif price_position == PricePosition.IN_STRESS:
            conflicting.append(GateEvidence(
                "Price in stress range, large option holders under pressure",
                "Price Analysis",
                snapshot.timestamp,
            ))

        if options.term_structure != TermStructure.UNCLEAR:
            supporting.append(GateEvidence(f"Term structure: {options.term_structure.value}", "Options Data", ts))

        return tuple(supporting), tuple(conflicting)

    def _human_note(
        self,
        status: GateStatus,
        vol_stance: VolStance,
        price_position: PricePosition,
        comfort_range: Optional[PriceRange],
    ) -> str:
        if status == GateStatus.FAIL:
            if vol_stance == VolStance.UNCLEAR:
                return "Regime unclear: options data does not show a clear vol stance."
            return "Regime unclear: comfort/stress range not identifiable from options positioning."

        if status == GateStatus.WEAK_PASS:
            if price_position == PricePosition.IN_STRESS:
                return f"Regime identified ({vol_stance.value}) but price is in the stress range."
            return f"Regime identified ({vol_stance.value}) but price is at the comfort range boundary."

        return (
            f"Regime clear: {vol_stance.value}. "
            f"Comfort range {comfort_range.lower:,.0f}-{comfort_range.upper:,.0f} contains price."
        )


# ============================================================
# FLOW GATE
# ============================================================


class FlowGate(BaseGate):
    """
    Determines whether capital flow is whale-driven and
    consistent across the 24h and 7d timeframes.
    """

    def __init__(self, config: Optional[FlowGateConfig] = None):
        self.config = config or FlowGateConfig()

    @property
    def gate_name(self) -> GateName:
        return GateName.FLOW

    def evaluate(self, snapshot: MarketSnapshot) -> FlowGateEvaluation:
        snapshot = _with_usable_whale(snapshot)
        whale = snapshot.whale

        flow_direction = self._determine_direction(whale)
        flow_quality = self._determine_quality(whale)
        cvd_whale = self._assess_cvd(whale)
        vwap_position = self._assess_vwap_position(snapshot.price, whale)

        status = self._determine_status(flow_direction, flow_quality, cvd_whale)
        confidence = self._determine_confidence(snapshot, flow_quality)
        supporting, conflicting = self._build_evidence(snapshot, flow_direction, flow_quality, cvd_whale)

        self._log_verdict(snapshot, status, confidence)

        return FlowGateEvaluation(
            status=status,
            confidence=confidence,
            data_freshness=self._assess_freshness(snapshot),
            human_note=self._human_note(status, flow_direction, flow_quality, cvd_whale),
            supporting_evidence=supporting,
            conflicting_evidence=conflicting,
            flow_direction=flow_direction,
            flow_quality=flow_quality,
            cvd_whale=cvd_whale,
            whale_vwap_position=vwap_position,
        )

    def _determine_direction(self, whale: Optional[WhaleMetrics]) -> FlowDirection:
        if whale is None:
            return FlowDirection.UNCLEAR

        h24 = whale.cvd_whale_24h
        d7 = whale.cvd_whale_7d

        if h24 > 0 and d7 > 0:
            return FlowDirection.ACCUMULATION
        if h24 < 0 and d7 < 0:
            return FlowDirection.DISTRIBUTION

        # 24h is insignificant next to 7d: follow 7d
        if abs(h24) < abs(d7) * self.config.insignificance_ratio:
            return FlowDirection.ACCUMULATION if d7 > 0 else FlowDirection.DISTRIBUTION

        if (h24 > 0 and d7 < 0) or (h24 < 0 and d7 > 0):
            return FlowDirection.UNCLEAR

        return FlowDirection.NEUTRAL

    def _determine_quality(self, whale: Optional[WhaleMetrics]) -> FlowQuality:
        if whale is None:
            return FlowQuality.RETAIL_DRIVEN

        ratio = whale.cvd_volume_ratio
        if ratio >= self.config.whale_driven_ratio:
            return FlowQuality.WHALE_DRIVEN
        elif ratio <= self.config.retail_driven_ratio:
            return FlowQuality.RETAIL_DRIVEN
        return FlowQuality.MIXED

    def _cvd_direction(self, cvd: float) -> CvdDirection:
        if cvd > self.config.cvd_flat_threshold:
            return CvdDirection.POSITIVE
        if cvd < -self.config.cvd_flat_threshold:
            return CvdDirection.NEGATIVE
        return CvdDirection.FLAT

    def _cvd_magnitude(self, cvd: float) -> CvdMagnitude:
        value = abs(cvd)
        if value >= self.config.magnitude_very_strong:
            return CvdMagnitude.VERY_STRONG
        if value >= self.config.magnitude_strong:
            return CvdMagnitude.STRONG
        if value >= self.config.magnitude_moderate:
            return CvdMagnitude.MODERATE
        if value >= self.config.magnitude_weak:
            return CvdMagnitude.WEAK
        return CvdMagnitude.INSIGNIFICANT

    def _assess_cvd(self, whale: Optional[WhaleMetrics]) -> CvdWhaleAssessment:
        if whale is None:
            return CvdWhaleAssessment()

        h24 = CvdTimeframe(
            direction=self._cvd_direction(whale.cvd_whale_24h),
            magnitude=self._cvd_magnitude(whale.cvd_whale_24h),
        )
        d7 = CvdTimeframe(
            direction=self._cvd_direction(whale.cvd_whale_7d),
            magnitude=self._cvd_magnitude(whale.cvd_whale_7d),
        )
        alignment = (
            TimeframeAlignment.CONSISTENT
            if h24.direction == d7.direction
            else TimeframeAlignment.DIVERGING
        )
        return CvdWhaleAssessment(h24=h24, d7=d7, alignment=alignment)

    def _assess_vwap_position(self, price: float, whale: Optional[WhaleMetrics]) -> WhaleVwapPosition:
        if whale is None or not whale.whale_vwap:
            return WhaleVwapPosition()

        diff = (price - whale.whale_vwap) / whale.whale_vwap
        if diff > self.config.vwap_at_tolerance:
            relation = VwapRelation.ABOVE
        elif diff < -self.config.vwap_at_tolerance:
            relation = VwapRelation.BELOW
        else:
            relation = VwapRelation.AT

        band = VwapBandPosition.MID_RANGE
        if whale.vwap_bands is not None:
            if price <= whale.vwap_bands.lower:
                band = VwapBandPosition.LOWER_BAND
            elif price >= whale.vwap_bands.upper:
                band = VwapBandPosition.UPPER_BAND

        return WhaleVwapPosition(price_vs_vwap=relation, band_position=band)

    def _determine_status(
        self,
        flow_direction: FlowDirection,
        flow_quality: FlowQuality,
        cvd_whale: CvdWhaleAssessment,
    ) -> GateStatus:
        if flow_direction == FlowDirection.UNCLEAR or flow_quality == FlowQuality.RETAIL_DRIVEN:
            return GateStatus.FAIL

        if flow_quality == FlowQuality.MIXED or cvd_whale.alignment == TimeframeAlignment.DIVERGING:
            return GateStatus.WEAK_PASS

        return GateStatus.PASS

    def _determine_confidence(self, snapshot: MarketSnapshot, flow_quality: FlowQuality) -> ConfidenceLevel:
        whale = snapshot.whale

        if whale is None or not snapshot.data_quality.whale.fresh:
            return ConfidenceLevel.LOW

        if flow_quality == FlowQuality.RETAIL_DRIVEN:
            return ConfidenceLevel.LOW

        if flow_quality == FlowQuality.MIXED:
            return ConfidenceLevel.MEDIUM

        if whale.bubble_signals:
            return ConfidenceLevel.HIGH

        return ConfidenceLevel.MEDIUM

    def _assess_freshness(self, snapshot: MarketSnapshot) -> DataFreshness:
        if snapshot.whale is None:
            return DataFreshness.UNKNOWN
        return DataFreshness.CURRENT if snapshot.data_quality.whale.fresh else DataFreshness.STALE

    def _build_evidence(
        self,
        snapshot: MarketSnapshot,
        flow_direction: FlowDirection,
        flow_quality: FlowQuality,
        cvd_whale: CvdWhaleAssessment,
    ) -> Tuple[Tuple[GateEvidence, ...], Tuple[GateEvidence, ...]]:
        supporting: List[GateEvidence] = []
        conflicting: List[GateEvidence] = []
        whale = snapshot.whale

        if whale is None:
            conflicting.append(GateEvidence("Whale data unavailable", "Whale Data", snapshot.timestamp))
            return tuple(supporting), tuple(conflicting)

        ts = whale.timestamp

        if flow_direction != FlowDirection.UNCLEAR:
            supporting.append(GateEvidence(f"Flow direction: {flow_direction.value}", "CVD Analysis", ts))
        else:
            conflicting.append(GateEvidence("Flow direction unclear, 24H and 7D disagree", "CVD Analysis", ts))

        ratio_pct = whale.cvd_volume_ratio * 100
        if flow_quality == FlowQuality.WHALE_DRIVEN:
            supporting.append(GateEvidence(f"CVD/Volume ratio: {ratio_pct:.1f}% (whale-driven)", "Volume Analysis", ts))
        elif flow_quality == FlowQuality.RETAIL_DRIVEN:
            conflicting.append(GateEvidence(f"CVD/Volume ratio: {ratio_pct:.1f}% (retail-driven)", "Volume Analysis", ts))
        else:
            conflicting.append(GateEvidence(f"CVD/Volume ratio: {ratio_pct:.1f}% (mixed)", "Volume Analysis", ts))

        if cvd_whale.alignment == TimeframeAlignment.CONSISTENT:
            supporting.append(GateEvidence(
                f"24H and 7D CVD aligned: both {cvd_whale.h24.direction.value}",
                "Timeframe Analysis",
                ts,
            ))
        else:
            conflicting.append(GateEvidence(
                f"Timeframe divergence: 24H {cvd_whale.h24.direction.value}, 7D {cvd_whale.d7.direction.value}",
                "Timeframe Analysis",
                ts,
            ))

        if whale.bubble_signals:
            buys = sum(1 for b in whale.bubble_signals if b.side == TradeSide.BUY)
            sells = len(whale.bubble_signals) - buys
            supporting.append(GateEvidence(
                f"Large prints: {buys} BUY-side / {sells} SELL-side",
                "Whale Activity",
                ts,
            ))

        return tuple(supporting), tuple(conflicting)

    def _human_note(
        self,
        status: GateStatus,
        flow_direction: FlowDirection,
        flow_quality: FlowQuality,
        cvd_whale: CvdWhaleAssessment,
    ) -> str:
        direction = flow_direction.value.lower()

        if status == GateStatus.FAIL:
            if flow_direction == FlowDirection.UNCLEAR:
                return "Flow unclear: 24H and 7D whale CVD disagree or whale data is missing."
            return "Flow is retail-driven: whale participation is below threshold."

        if status == GateStatus.WEAK_PASS:
            if cvd_whale.alignment == TimeframeAlignment.DIVERGING:
                return f"Flow shows {direction} but 24H and 7D timeframes are diverging."
            return f"Flow shows {direction} with mixed quality, not fully whale-driven."

        return f"Flow shows {direction}, whale-driven, with consistent timeframes."


# ============================================================
# RISK GATE
# ============================================================


class RiskGate(BaseGate):
    """
    Assesses positioning crowding and price stress.

    ============================================================
    TIER-1 CONSTRAINT
    ============================================================
    A FAIL from this gate forces NO_TRADE. Nothing downstream
    can override it.

    Without a comfort range the stress status defaults to
    INSIDE (in stress), so the gate FAILS. Safety is never
    assumed without data.

    ============================================================
    """

    def __init__(self, config: Optional[RiskGateConfig] = None):
        self.config = config or RiskGateConfig()

    @property
    def gate_name(self) -> GateName:
        return GateName.RISK

    def evaluate(self, snapshot: MarketSnapshot) -> RiskGateEvaluation:
        exchange = snapshot.exchange
        comfort_range = snapshot.options.comfort_range if snapshot.options else None

        oi_trend = self._assess_oi_trend(exchange.oi_change_24h_pct)
        funding_bias = self._assess_funding_bias(exchange.funding_rate)
        crowding_level = self._assess_crowding(exchange.funding_rate)
        stress_status = self._assess_stress_range(snapshot.price, comfort_range)
        liquidation_context = self._assess_liquidations(snapshot.price, exchange.liquidation_levels)

        status = self._determine_status(crowding_level, stress_status)
        confidence = self._determine_confidence(snapshot)
        supporting, conflicting = self._build_evidence(
            snapshot, oi_trend, funding_bias, crowding_level, stress_status, liquidation_context
        )

        self._log_verdict(snapshot, status, confidence)
        if status == GateStatus.FAIL:
            logger.info(
                f"Risk gate FAIL for {snapshot.asset}: "
                f"crowding={crowding_level.value} stress={stress_status.value}"
            )

        return RiskGateEvaluation(
            status=status,
            confidence=confidence,
            data_freshness=(
                DataFreshness.CURRENT if snapshot.data_quality.exchange.fresh else DataFreshness.STALE
            ),
            human_note=self._human_note(status, crowding_level, stress_status, funding_bias),
            supporting_evidence=supporting,
            conflicting_evidence=conflicting,
            oi_trend=oi_trend,
            funding_bias=funding_bias,
            crowding_level=crowding_level,
            stress_range_status=stress_status,
            liquidation_context=liquidation_context,
        )

    def _assess_oi_trend(self, oi_change_pct: Optional[float]) -> OiTrend:
        if oi_change_pct is None:
            return OiTrend.STABLE
        if oi_change_pct > self.config.oi_change_threshold_pct:
            return OiTrend.EXPANDING
        if oi_change_pct < -self.config.oi_change_threshold_pct:
            return OiTrend.CONTRACTING
        return OiTrend.STABLE

    def _assess_funding_bias(self, funding_rate: float) -> FundingBias:
        if funding_rate > self.config.funding_crowded:
            return FundingBias.LONG_CROWDED
        if funding_rate < -self.config.funding_crowded:
            return FundingBias.SHORT_CROWDED
        return FundingBias.BALANCED

    def _assess_crowding(self, funding_rate: float) -> CrowdingLevel:
        magnitude = abs(funding_rate)
        if magnitude > self.config.funding_extreme:
            return CrowdingLevel.EXTREME
        if magnitude > self.config.funding_elevated:
            return CrowdingLevel.ELEVATED
        if magnitude > self.config.funding_normal:
            return CrowdingLevel.NORMAL
        return CrowdingLevel.LOW

    def _assess_stress_range(self, price: float, comfort_range: Optional[PriceRange]) -> StressRangeStatus:
        position = self._classify_against_range(price, comfort_range, self.config.boundary_fraction)

        # No range: conservative default
        if position in (PricePosition.UNKNOWN, PricePosition.IN_STRESS):
            return StressRangeStatus.INSIDE
        if position == PricePosition.AT_BOUNDARY:
            return StressRangeStatus.AT_BOUNDARY
        return StressRangeStatus.OUTSIDE

    def _assess_liquidations(
        self,
        price: float,
        levels: Optional[LiquidationLevels],
    ) -> LiquidationContext:
        """Nearest long cluster below price vs nearest short cluster above it."""
        if levels is None:
            return LiquidationContext()

        longs_below = [level for level in levels.longs if level < price]
        shorts_above = [level for level in levels.shorts if level > price]

        distance_below = price - max(longs_below) if longs_below else None
        distance_above = min(shorts_above) - price if shorts_above else None

        if distance_below is None and distance_above is None:
            return LiquidationContext()

        if distance_above is None or (distance_below is not None and distance_below < distance_above):
            side, distance = ClusterSide.BELOW, distance_below
        else:
            side, distance = ClusterSide.ABOVE, distance_above

        distance_pct = distance / price * 100
        if distance_pct < self.config.liquidation_proximate_pct:
            label = ClusterDistance.PROXIMATE
        elif distance_pct < self.config.liquidation_moderate_pct:
            label = ClusterDistance.MODERATE
        else:
            label = ClusterDistance.DISTANT

        return LiquidationContext(nearest_cluster=side, distance=label)

    def _determine_status(self, crowding: CrowdingLevel, stress: StressRangeStatus) -> GateStatus:
        if crowding == CrowdingLevel.EXTREME or stress == StressRangeStatus.INSIDE:
            return GateStatus.FAIL

        if crowding == CrowdingLevel.ELEVATED or stress == StressRangeStatus.AT_BOUNDARY:
            return GateStatus.WEAK_PASS

        return GateStatus.PASS

    def _determine_confidence(self, snapshot: MarketSnapshot) -> ConfidenceLevel:
        quality = snapshot.data_quality

        if quality.level == DataQualityLevel.CRITICAL or not quality.exchange.fresh:
            return ConfidenceLevel.LOW

        # Stress range cannot be established without options
        if snapshot.options is None:
            return ConfidenceLevel.MEDIUM

        if quality.level == DataQualityLevel.GOOD:
            return ConfidenceLevel.HIGH

        return ConfidenceLevel.MEDIUM

    def _build_evidence(
        self,
        snapshot: MarketSnapshot,
        oi_trend: OiTrend,
        funding_bias: FundingBias,
        crowding: CrowdingLevel,
        stress: StressRangeStatus,
        liquidation_context: LiquidationContext,
    ) -> Tuple[Tuple[GateEvidence, ...], Tuple[GateEvidence, ...]]:
        supporting: List[GateEvidence] = []
        conflicting: List[GateEvidence] = []
        exchange = snapshot.exchange
        ts = exchange.timestamp

        funding = GateEvidence(
            f"Funding rate: {exchange.funding_rate * 100:.4f}% ({funding_bias.value})", "Exchange", ts
        )
        (supporting if funding_bias == FundingBias.BALANCED else conflicting).append(funding)

        supporting.append(GateEvidence(
            f"Open interest: {exchange.open_interest:,.0f} ({oi_trend.value})", "Exchange", ts
        ))

        crowding_evidence = GateEvidence(f"Crowding assessment: {crowding.value}", "Calculated", snapshot.timestamp)
        if crowding in (CrowdingLevel.EXTREME, CrowdingLevel.ELEVATED):
            conflicting.append(crowding_evidence)
        else:
            supporting.append(crowding_evidence)

        options = snapshot.options
        if options is not None and options.comfort_range is not None:
            supporting.append(GateEvidence(
                f"Comfort range: {options.comfort_range.lower:,.0f} - {options.comfort_range.upper:,.0f}",
                "Options Data",
                options.timestamp,
            ))
        else:
            conflicting.append(GateEvidence(
                "Comfort range unavailable, stress status defaults to INSIDE",
                "Options Data",
                snapshot.timestamp,
            ))

        if stress == StressRangeStatus.INSIDE:
            conflicting.append(GateEvidence("Price in stress range", "Price Analysis", snapshot.timestamp))

        if liquidation_context.distance == ClusterDistance.PROXIMATE:
            conflicting.append(GateEvidence(
                f"Liquidation cluster {liquidation_context.nearest_cluster.value.lower()} price is proximate",
                "Exchange",
                ts,
            ))

        return tuple(supporting), tuple(conflicting)

    def _human_note(
        self,
        status: GateStatus,
        crowding: CrowdingLevel,
        stress: StressRangeStatus,
        funding_bias: FundingBias,
    ) -> str:
        if status == GateStatus.FAIL:
            reasons = []
            if crowding == CrowdingLevel.EXTREME:
                reasons.append("extreme crowding detected")
            if stress == StressRangeStatus.INSIDE:
                reasons.append("price in stress range")
            return (
                f"Risk Gate FAIL: {', '.join(reasons)}. "
                "Tier 1 constraint, trading not permitted under framework rules."
            )

        if status == GateStatus.WEAK_PASS:
            factors = []
            if crowding == CrowdingLevel.ELEVATED:
                factors.append(f"elevated crowding ({funding_bias.value.lower().replace('_', ' ')})")
            if stress == StressRangeStatus.AT_BOUNDARY:
                factors.append("price approaching stress range boundary")
            return f"Risk factors present: {', '.join(factors)}."

        return "Risk metrics within normal parameters. Positioning balanced and price within comfort range."


# ============================================================
# CONTEXT GATE
# ============================================================


class ContextGate(BaseGate):
    """
    Cross-checks price position against whale reference levels
    and the Flow verdict.

    This is an alignment check, NOT a signal. It is evaluated
    last because it reads the Regime, Flow and Risk verdicts.
    """

    def __init__(self, config: Optional[ContextGateConfig] = None):
        self.config = config or ContextGateConfig()

        if not self.config.allows_pass:
            logger.warning(
                f"Context zone_split {self.config.zone_split} >= band_split "
                f"{self.config.band_split}: Context gate is capped at WEAK_PASS"
            )

    @property
    def gate_name(self) -> GateName:
        return GateName.CONTEXT

    def evaluate(
        self,
        snapshot: MarketSnapshot,
        regime: RegimeGateEvaluation,
        flow: FlowGateEvaluation,
        risk: RiskGateEvaluation,
    ) -> ContextGateEvaluation:
        snapshot = _with_usable_whale(snapshot)
        price = snapshot.price
        reference = self._reference_level(price, snapshot.whale)

        zone = self._determine_zone(price, reference, flow.flow_direction)
        valuation = self._assess_valuation(price, reference.whale_vwap)
        band_position = self._determine_band_position(price, reference)
        alignment = self._assess_alignment(zone, flow.flow_direction)

        status = self._determine_status(alignment, band_position, flow)
        confidence = self._determine_confidence(snapshot)
        supporting, conflicting = self._build_evidence(
            snapshot, reference, zone, valuation, band_position, alignment, regime, risk
        )

        self._log_verdict(snapshot, status, confidence)

        return ContextGateEvaluation(
            status=status,
            confidence=confidence,
            data_freshness=self._assess_freshness(snapshot),
            human_note=self._human_note(status, zone, valuation, alignment),
            supporting_evidence=supporting,
            conflicting_evidence=conflicting,
            current_zone=zone,
            price_vs_whale_vwap=valuation,
            band_position=band_position,
            zone_flow_alignment=alignment,
            reference_level=reference,
        )

    def _reference_level(self, price: float, whale: Optional[WhaleMetrics]) -> ReferenceLevel:
        if whale is not None and whale.whale_vwap and whale.vwap_bands is not None:
            return ReferenceLevel(
                whale_vwap=whale.whale_vwap,
                lower_band=whale.vwap_bands.lower,
                upper_band=whale.vwap_bands.upper,
            )

        half_width = price * self.config.synthetic_band_pct
        return ReferenceLevel(
            whale_vwap=price,
            lower_band=price - half_width,
            upper_band=price + half_width,
            synthetic=True,
        )

    def _split_points(self, reference: ReferenceLevel, split: float) -> Tuple[float, float]:
        """Lower and upper split points at `split` of the VWAP-to-band distance."""
        lower = reference.whale_vwap - (reference.whale_vwap - reference.lower_band) * split
        upper = reference.whale_vwap + (reference.upper_band - reference.whale_vwap) * split
        return lower, upper

    def _determine_zone(
        self,
        price: float,
        reference: ReferenceLevel,
        flow_direction: FlowDirection,
    ) -> ContextZone:
        lower, upper = self._split_points(reference, self.config.zone_split)

        if price < lower and flow_direction == FlowDirection.ACCUMULATION:
            return ContextZone.ACCUMULATION_ZONE
        if price > upper and flow_direction == FlowDirection.DISTRIBUTION:
            return ContextZone.DISTRIBUTION_ZONE
        return ContextZone.NEUTRAL_ZONE

    def _assess_valuation(self, price: float, whale_vwap: float) -> VwapValuation:
        deviation = (price - whale_vwap) / whale_vwap
        if deviation < -self.config.fair_value_tolerance:
            return VwapValuation.DISCOUNT
        if deviation > self.config.fair_value_tolerance:
            return VwapValuation.PREMIUM
        return VwapValuation.FAIR

    def _determine_band_position(self, price: float, reference: ReferenceLevel) -> BandPosition:
        lower, upper = self._split_points(reference, self.config.band_split)
        if price <= lower:
            return BandPosition.LOWER_BAND
        if price >= upper:
            return BandPosition.UPPER_BAND
        return BandPosition.MID_BAND

    @staticmethod
    def _assess_alignment(zone: ContextZone, flow_direction: FlowDirection) -> ZoneFlowAlignment:
        pairs = {
            (ContextZone.ACCUMULATION_ZONE, FlowDirection.ACCUMULATION): ZoneFlowAlignment.ALIGNED,
            (ContextZone.DISTRIBUTION_ZONE, FlowDirection.DISTRIBUTION): ZoneFlowAlignment.ALIGNED,
            (ContextZone.ACCUMULATION_ZONE, FlowDirection.DISTRIBUTION): ZoneFlowAlignment.MISALIGNED,
            (ContextZone.DISTRIBUTION_ZONE, FlowDirection.ACCUMULATION): ZoneFlowAlignment.MISALIGNED,
        }
        return pairs.get((zone, flow_direction), ZoneFlowAlignment.NEUTRAL)

    def _determine_status(
        self,
        alignment: ZoneFlowAlignment,
        band_position: BandPosition,
        flow: FlowGateEvaluation,
    ) -> GateStatus:
        if alignment == ZoneFlowAlignment.MISALIGNED:
            return GateStatus.FAIL

        # At a band extreme the flow does not support, with Flow already failing
        unsupported_extreme = (
            (band_position == BandPosition.UPPER_BAND and flow.flow_direction != FlowDirection.ACCUMULATION)
            or (band_position == BandPosition.LOWER_BAND and flow.flow_direction != FlowDirection.DISTRIBUTION)
        )
        if unsupported_extreme and flow.status == GateStatus.FAIL:
            return GateStatus.FAIL

        if alignment == ZoneFlowAlignment.NEUTRAL or band_position != BandPosition.MID_BAND:
            return GateStatus.WEAK_PASS

        return GateStatus.PASS

    def _determine_confidence(self, snapshot: MarketSnapshot) -> ConfidenceLevel:
        if snapshot.whale is None:
            return ConfidenceLevel.LOW

        if not snapshot.data_quality.whale.fresh:
            return ConfidenceLevel.MEDIUM

        if snapshot.data_quality.overall_score >= self.config.high_confidence_score:
            return ConfidenceLevel.HIGH

        return ConfidenceLevel.MEDIUM

    def _assess_freshness(self, snapshot: MarketSnapshot) -> DataFreshness:
        if snapshot.whale is None:
            return DataFreshness.UNKNOWN
        return DataFreshness.CURRENT if snapshot.data_quality.whale.fresh else DataFreshness.STALE

    def _build_evidence(
        self,
        snapshot: MarketSnapshot,
        reference: ReferenceLevel,
        zone: ContextZone,
        valuation: VwapValuation,
        band_position: BandPosition,
        alignment: ZoneFlowAlignment,
        regime: RegimeGateEvaluation,
        risk: RiskGateEvaluation,
    ) -> Tuple[Tuple[GateEvidence, ...], Tuple[GateEvidence, ...]]:
        supporting: List[GateEvidence] = []
        conflicting: List[GateEvidence] = []
        ts = snapshot.timestamp

        supporting.append(GateEvidence(
            f"Current price: {snapshot.price:,.2f} ({valuation.value} vs whale VWAP)", "Exchange", ts
        ))
        supporting.append(GateEvidence(f"Zone assessment: {zone.value.replace('_', ' ')}", "Calculated", ts))
        supporting.append(GateEvidence(f"Band position: {band_position.value.replace('_', ' ')}", "Calculated", ts))

        if reference.synthetic:
            conflicting.append(GateEvidence(
                f"Whale VWAP unavailable, using synthetic ±{self.config.synthetic_band_pct:.0%} band",
                "Calculated",
                ts,
            ))
        else:
            supporting.append(GateEvidence(
                f"Whale VWAP: {reference.whale_vwap:,.2f}", "Whale Data", snapshot.whale.timestamp
            ))

        if alignment == ZoneFlowAlignment.MISALIGNED:
            conflicting.append(GateEvidence("Zone position conflicts with flow direction", "Analysis", ts))

        if regime.status == GateStatus.FAIL or risk.status == GateStatus.FAIL:
            conflicting.append(GateEvidence(
                "Upstream gate failure: context is informational only this cycle", "Analysis", ts
            ))

        return tuple(supporting), tuple(conflicting)

    def _human_note(
        self,
        status: GateStatus,
        zone: ContextZone,
        valuation: VwapValuation,
        alignment: ZoneFlowAlignment,
    ) -> str:
        zone_name = zone.value.replace("_", " ").lower()

        if status == GateStatus.FAIL:
            if alignment == ZoneFlowAlignment.MISALIGNED:
                return f"Context observation: price position ({zone_name}) does not align with observed flow."
            return "Context observation: price at a band extreme without flow support."

        if status == GateStatus.WEAK_PASS:
            return (
                f"Context observation: price at {valuation.value.lower()} vs whale VWAP in {zone_name}. "
                "Some factors warrant attention."
            )

        return (
            f"Context observation: price in {zone_name} at {valuation.value.lower()} vs whale VWAP. "
            f"Zone and flow are {alignment.value.lower()}."
        )
