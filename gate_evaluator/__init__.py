"""
Gate Evaluator - Package.

============================================================
PURPOSE
============================================================
Turns a normalized market snapshot into four independent gate
verdicts: Regime, Flow, Risk and Context.

============================================================
WHAT IT IS
============================================================
- Deterministic, threshold-based classification
- Produces discrete statuses: PASS, WEAK_PASS, FAIL
- Each verdict carries confidence, freshness and evidence
- Purely informational - does NOT decide permission states

============================================================
WHAT IT IS NOT
============================================================
- NOT a signal generator
- NOT a trade direction recommender
- NOT using ML or probabilistic models
- NOT performing any network I/O

============================================================
FOUR GATES
============================================================
1. REGIME: Is there a clear options-market regime?
2. FLOW: Is capital flow whale-driven and consistent?
3. RISK: Is positioning crowded or price in stress? (Tier-1)
4. CONTEXT: Does price position align with the flow?

============================================================
USAGE
============================================================
    from gate_evaluator import (
        GateEvaluator,
        MarketSnapshot,
        ExchangeMetrics,
        DataQualityReport,
        SourceQuality,
    )

    evaluator = GateEvaluator()

    snapshot = MarketSnapshot(
        asset="BTC",
        price=95_000.0,
        exchange=ExchangeMetrics(funding_rate=0.0002, open_interest=1.2e10),
        data_quality=DataQualityReport(
            overall_score=85.0,
            exchange=SourceQuality(fresh=True),
        ),
    )

    result = evaluator.evaluate(snapshot)

    for gate in result.gates:
        print(f"{gate.gate_name.value}: {gate.status.value} ({gate.human_note})")

============================================================
"""

# Types
from .types import (
    # Gate enums
    GateName,
    GateStatus,
    ConfidenceLevel,
    DataFreshness,
    DataQualityLevel,

    # Market enums
    VolStance,
    TermStructure,
    TradeSide,
    PricePosition,
    FlowDirection,
    FlowQuality,
    CvdDirection,
    CvdMagnitude,
    TimeframeAlignment,
    VwapRelation,
    VwapBandPosition,
    OiTrend,
    FundingBias,
    CrowdingLevel,
    StressRangeStatus,
    ClusterSide,
    ClusterDistance,
    ContextZone,
    VwapValuation,
    BandPosition,
    ZoneFlowAlignment,

    # Input types
    PriceRange,
    LiquidationLevels,
    ExchangeMetrics,
    KeyExpiry,
    OptionsMetrics,
    VwapBands,
    BubbleSignal,
    WhaleMetrics,
    SourceQuality,
    DataQualityReport,
    MarketSnapshot,

    # Verdict types
    GateEvidence,
    BaseGateEvaluation,
    RegimeGateEvaluation,
    CvdTimeframe,
    CvdWhaleAssessment,
    WhaleVwapPosition,
    FlowGateEvaluation,
    LiquidationContext,
    RiskGateEvaluation,
    ReferenceLevel,
    ContextGateEvaluation,

    # Result types
    DataQualitySummary,
    GateEvaluationResult,

    # Exceptions
    GateEvaluationError,
    MalformedSnapshotError,
    ConfigurationError,
)

# Configuration
from .config import (
    RegimeGateConfig,
    FlowGateConfig,
    RiskGateConfig,
    ContextGateConfig,
    GateEvaluatorConfig,
    get_default_config,
    get_conservative_config,
)

# Gates
from .gates import (
    BaseGate,
    RegimeGate,
    FlowGate,
    RiskGate,
    ContextGate,
)

# Coordinator
from .engine import (
    GateEvaluator,
    evaluate_gates,
)


__all__ = [
    # Gate enums
    "GateName",
    "GateStatus",
    "ConfidenceLevel",
    "DataFreshness",
    "DataQualityLevel",

    # Market enums
    "VolStance",
    "TermStructure",
    "TradeSide",
    "PricePosition",
    "FlowDirection",
    "FlowQuality",
    "CvdDirection",
    "CvdMagnitude",
    "TimeframeAlignment",
    "VwapRelation",
    "VwapBandPosition",
    "OiTrend",
    "FundingBias",
    "CrowdingLevel",
    "StressRangeStatus",
    "ClusterSide",
    "ClusterDistance",
    "ContextZone",
    "VwapValuation",
    "BandPosition",
    "ZoneFlowAlignment",

    # Input types
    "PriceRange",
    "LiquidationLevels",
    "ExchangeMetrics",
    "KeyExpiry",
    "OptionsMetrics",
    "VwapBands",
    "BubbleSignal",
    "WhaleMetrics",
    "SourceQuality",
    "DataQualityReport",
    "MarketSnapshot",

    # Verdict types
    "GateEvidence",
    "BaseGateEvaluation",
    "RegimeGateEvaluation",
    "CvdTimeframe",
    "CvdWhaleAssessment",
    "WhaleVwapPosition",
    "FlowGateEvaluation",
    "LiquidationContext",
    "RiskGateEvaluation",
    "ReferenceLevel",
    "ContextGateEvaluation",

    # Result types
    "DataQualitySummary",
    "GateEvaluationResult",

    # Exceptions
    "GateEvaluationError",
    "MalformedSnapshotError",
    "ConfigurationError",

    # Configuration
    "RegimeGateConfig",
    "FlowGateConfig",
    "RiskGateConfig",
    "ContextGateConfig",
    "GateEvaluatorConfig",
    "get_default_config",
    "get_conservative_config",

    # Gates
    "BaseGate",
    "RegimeGate",
    "FlowGate",
    "RiskGate",
    "ContextGate",

    # Coordinator
    "GateEvaluator",
    "evaluate_gates",
]


__version__ = "1.0.0"
