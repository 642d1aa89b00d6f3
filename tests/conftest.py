"""
Shared fixtures for gate evaluator and permission engine tests.

Two kinds of factories:
- make_snapshot: builds MarketSnapshot inputs for the gates
- make_gate_result: builds GateEvaluationResult directly from
  statuses, for exercising the permission pipeline without the gates
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

from gate_evaluator.config import ContextGateConfig, GateEvaluatorConfig
from gate_evaluator.types import (
    BandPosition,
    BubbleSignal,
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
    DataQualityReport,
    DataQualitySummary,
    ExchangeMetrics,
    FlowDirection,
    FlowGateEvaluation,
    FlowQuality,
    FundingBias,
    GateEvaluationResult,
    GateStatus,
    KeyExpiry,
    MarketSnapshot,
    OptionsMetrics,
    PriceRange,
    PricePosition,
    RegimeGateEvaluation,
    RiskGateEvaluation,
    SourceQuality,
    StressRangeStatus,
    TermStructure,
    TimeframeAlignment,
    TradeSide,
    VolStance,
    VwapBands,
    WhaleMetrics,
    ZoneFlowAlignment,
)


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

_DEFAULT = object()


# ============================================================
# SNAPSHOT FIXTURES
# ============================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def default_options() -> OptionsMetrics:
    """LONG_VOL regime, comfort range 90k-110k, two expiries with the same bias."""
    return OptionsMetrics(
        vol_stance=VolStance.LONG_VOL,
        comfort_range=PriceRange(lower=90_000.0, upper=110_000.0),
        stress_range_lower=85_000.0,
        stress_range_upper=115_000.0,
        term_structure=TermStructure.CONTANGO,
        key_expiries=(
            KeyExpiry(date=NOW + timedelta(days=2), bias="call-heavy", notional="$2.1B"),
            KeyExpiry(date=NOW + timedelta(days=9), bias="CALL-HEAVY", notional="$1.4B"),
            KeyExpiry(date=NOW + timedelta(days=16), bias="put-heavy", notional="$0.9B"),
            KeyExpiry(date=NOW + timedelta(days=30), bias="call-heavy", notional="$3.0B"),
        ),
        timestamp=NOW,
    )


@pytest.fixture
def default_whale() -> WhaleMetrics:
    """Whale-driven accumulation on both timeframes, VWAP 100k with bands 96k-104k."""
    return WhaleMetrics(
        cvd_whale_24h=2_000_000.0,
        cvd_whale_7d=15_000_000.0,
        cvd_volume_ratio=0.45,
        whale_vwap=100_000.0,
        vwap_bands=VwapBands(lower=96_000.0, upper=104_000.0),
        bubble_signals=(
            BubbleSignal(price=97_500.0, side=TradeSide.BUY, size="$4.2M", timestamp=NOW),
            BubbleSignal(price=98_200.0, side=TradeSide.SELL, size="$1.1M", timestamp=NOW),
        ),
        timestamp=NOW,
    )


@pytest.fixture
def make_snapshot(default_options, default_whale):
    """
    Factory for MarketSnapshot.

    Defaults produce PASS on every gate under aligned_config:
    price 98k sits inside the comfort range, in the lower part
    of the whale band, with accumulation flow.
    """

    def _make(
        price: float = 98_000.0,
        funding_rate: float = 0.0002,
        oi_change_24h_pct: Optional[float] = 2.0,
        liquidation_levels=None,
        options: Any = _DEFAULT,
        whale: Any = _DEFAULT,
        exchange: Any = _DEFAULT,
        data_quality: Any = _DEFAULT,
        overall_score: float = 90.0,
        exchange_fresh: bool = True,
        options_fresh: bool = True,
        whale_fresh: bool = True,
        asset: str = "BTC",
    ):
        if options is _DEFAULT:
            options = default_options
        if whale is _DEFAULT:
            whale = default_whale
        if exchange is _DEFAULT:
            exchange = ExchangeMetrics(
                funding_rate=funding_rate,
                open_interest=12_000_000_000.0,
                oi_change_24h_pct=oi_change_24h_pct,
                liquidation_levels=liquidation_levels,
                timestamp=NOW,
            )
        if data_quality is _DEFAULT:
            data_quality = DataQualityReport(
                overall_score=overall_score,
                exchange=SourceQuality(fresh=exchange_fresh, last_update=NOW, source="binance"),
                options=SourceQuality(fresh=options_fresh, available=options is not None),
                whale=SourceQuality(fresh=whale_fresh, available=whale is not None),
            )

        return MarketSnapshot(
            asset=asset,
            price=price,
            exchange=exchange,
            data_quality=data_quality,
            options=options,
            whale=whale,
            timestamp=NOW,
        )

    return _make


@pytest.fixture
def aligned_config() -> GateEvaluatorConfig:
    """
    Context splits that leave room for an ALIGNED, MID_BAND position.

    With zone_split < band_split a price can be deep enough to be
    in the accumulation zone while still inside the mid band.
    """
    return GateEvaluatorConfig(context=ContextGateConfig(zone_split=0.3, band_split=0.6))


# ============================================================
# VERDICT FIXTURES
# ============================================================


@pytest.fixture
def make_gate_result():
    """
    Factory for GateEvaluationResult built from statuses.

    Default detail fields trigger no conflicts: LONG_VOL regime,
    consistent accumulation flow, balanced NORMAL crowding and a
    neutral mid-band context. Override any field with the
    *_fields dicts.
    """

    def _make(
        regime: GateStatus = GateStatus.PASS,
        flow: GateStatus = GateStatus.PASS,
        risk: GateStatus = GateStatus.PASS,
        context: GateStatus = GateStatus.PASS,
        confidence: ConfidenceLevel = ConfidenceLevel.HIGH,
        freshness: DataFreshness = DataFreshness.CURRENT,
        regime_fields: Optional[Dict[str, Any]] = None,
        flow_fields: Optional[Dict[str, Any]] = None,
        risk_fields: Optional[Dict[str, Any]] = None,
        context_fields: Optional[Dict[str, Any]] = None,
    ) -> GateEvaluationResult:
        common = dict(confidence=confidence, data_freshness=freshness, evaluated_at=NOW)

        regime_kwargs = dict(
            common,
            status=regime,
            human_note="Regime clear: LONG_VOL.",
            vol_stance=VolStance.LONG_VOL,
            comfort_range=PriceRange(90_000.0, 110_000.0),
            price_position=PricePosition.INSIDE_COMFORT,
        )
        regime_kwargs.update(regime_fields or {})

        flow_kwargs = dict(
            common,
            status=flow,
            human_note="Flow shows accumulation, whale-driven, with consistent timeframes.",
            flow_direction=FlowDirection.ACCUMULATION,
            flow_quality=FlowQuality.WHALE_DRIVEN,
            cvd_whale=CvdWhaleAssessment(
                h24=CvdTimeframe(CvdDirection.POSITIVE, CvdMagnitude.STRONG),
                d7=CvdTimeframe(CvdDirection.POSITIVE, CvdMagnitude.VERY_STRONG),
                alignment=TimeframeAlignment.CONSISTENT,
            ),
        )
        flow_kwargs.update(flow_fields or {})

        risk_kwargs = dict(
            common,
            status=risk,
            human_note="Risk metrics within normal parameters.",
            funding_bias=FundingBias.BALANCED,
            crowding_level=CrowdingLevel.NORMAL,
            stress_range_status=StressRangeStatus.OUTSIDE,
        )
        risk_kwargs.update(risk_fields or {})

        context_kwargs = dict(
            common,
            status=context,
            human_note="Context observation: price in neutral zone.",
            current_zone=ContextZone.NEUTRAL_ZONE,
            band_position=BandPosition.MID_BAND,
            zone_flow_alignment=ZoneFlowAlignment.NEUTRAL,
        )
        context_kwargs.update(context_fields or {})

        return GateEvaluationResult(
            regime=RegimeGateEvaluation(**regime_kwargs),
            flow=FlowGateEvaluation(**flow_kwargs),
            risk=RiskGateEvaluation(**risk_kwargs),
            context=ContextGateEvaluation(**context_kwargs),
            data_quality=DataQualitySummary(
                overall_score=90.0,
                level=DataQualityLevel.GOOD,
                exchange_fresh=True,
                options_fresh=True,
                whale_fresh=True,
            ),
            evaluated_at=NOW,
        )

    return _make
