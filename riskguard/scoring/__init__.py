# Scoring Module
from .trust_score import (
    TrustScoreCalculator,
    calculate_trust_score,
    get_trust_tier,
    describe_tier,
)
from .engine import (
    EngineThresholds,
    FraudDetectionEngine,
    detect_fraud,
    decision_label,
    format_explanation,
)
from .composite import (
    calculate_composite_score,
    quick_composite_score,
    calculate_batch_composite_scores,
    sort_by_composite_risk,
    get_risk_level,
    determine_primary_source,
)

__all__ = [
    "TrustScoreCalculator",
    "calculate_trust_score",
    "get_trust_tier",
    "describe_tier",
    "EngineThresholds",
    "FraudDetectionEngine",
    "detect_fraud",
    "decision_label",
    "format_explanation",
    "calculate_composite_score",
    "quick_composite_score",
    "calculate_batch_composite_scores",
    "sort_by_composite_risk",
    "get_risk_level",
    "determine_primary_source",
]
