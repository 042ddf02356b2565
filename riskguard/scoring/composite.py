"""
Composite Risk Score

Merges the fraud engine risk score with the card testing suspicion
score into one display-level number and risk level.

This is a summary transform only. The decision and confidence are
passed through from whichever component was authoritative (custom rule
or fraud engine); they are never re-derived from the composite score.
"""

from typing import Optional

from ..config import settings
from ..schemas import (
    CompositeRiskLevel,
    CompositeRiskScore,
    CompositeScoreBreakdown,
    CompositeScoreWeights,
    CompositeSummary,
    Confidence,
    Decision,
    RiskSource,
    ScoredDetection,
)

# (upper bound inclusive, level)
RISK_LEVEL_BREAKPOINTS = [
    (20, CompositeRiskLevel.MINIMAL),
    (35, CompositeRiskLevel.LOW),
    (50, CompositeRiskLevel.MODERATE),
    (65, CompositeRiskLevel.ELEVATED),
    (80, CompositeRiskLevel.HIGH),
]

PRIMARY_SOURCE_THRESHOLD = 30
BOTH_SOURCES_BAND = 10

LEVEL_LABELS = {
    CompositeRiskLevel.MINIMAL: "Minimal risk",
    CompositeRiskLevel.LOW: "Low risk",
    CompositeRiskLevel.MODERATE: "Moderate risk",
    CompositeRiskLevel.ELEVATED: "Elevated risk",
    CompositeRiskLevel.HIGH: "High risk",
    CompositeRiskLevel.CRITICAL: "Critical risk",
}


def default_weights() -> CompositeScoreWeights:
    """Weights configured in settings."""
    return CompositeScoreWeights(
        risk_score=settings.composite_risk_weight,
        card_testing_score=settings.composite_card_testing_weight,
    )


def _clamp(score: float) -> int:
    return max(0, min(100, round(score)))


def get_risk_level(score: int) -> CompositeRiskLevel:
    """Map a composite score to its level."""
    for upper, level in RISK_LEVEL_BREAKPOINTS:
        if score <= upper:
            return level
    return CompositeRiskLevel.CRITICAL


def determine_primary_source(risk_score: int, card_testing_score: int) -> RiskSource:
    """Which input dominates; 'both' when they are high and within 10 points."""
    risk_high = risk_score > PRIMARY_SOURCE_THRESHOLD
    card_testing_high = card_testing_score > PRIMARY_SOURCE_THRESHOLD

    if not risk_high and not card_testing_high:
        return RiskSource.NONE
    if risk_high and card_testing_high:
        if abs(risk_score - card_testing_score) <= BOTH_SOURCES_BAND:
            return RiskSource.BOTH
        return RiskSource.GENERAL if risk_score > card_testing_score else RiskSource.CARD_TESTING
    return RiskSource.GENERAL if risk_high else RiskSource.CARD_TESTING


def _summary(level: CompositeRiskLevel, source: RiskSource, breakdown: CompositeScoreBreakdown) -> CompositeSummary:
    descriptions = {
        RiskSource.NONE: "No significant risk signal detected.",
        RiskSource.GENERAL: f"The general risk score ({breakdown.risk_score}/100) is the main contributor.",
        RiskSource.CARD_TESTING: (
            f"Card testing pattern ({breakdown.card_testing_score}/100) is the main risk factor."
        ),
        RiskSource.BOTH: (
            f"Multiple risks: general score ({breakdown.risk_score}/100) "
            f"and card testing ({breakdown.card_testing_score}/100)."
        ),
    }
    return CompositeSummary(
        label=LEVEL_LABELS[level],
        description=descriptions[source],
        primary_risk_source=source,
    )


def calculate_composite_score(
    risk_score: int,
    decision: Decision,
    confidence: Confidence,
    card_testing_score: int = 0,
    card_testing_tracker_id: Optional[str] = None,
    weights: Optional[CompositeScoreWeights] = None,
) -> CompositeRiskScore:
    """
    Merge the two scores.

    Args:
        risk_score: Fraud engine score (0-100)
        decision: Authoritative decision, passed through
        confidence: Authoritative confidence, passed through
        card_testing_score: Tracker suspicion score (0-100)
        card_testing_tracker_id: Tracker the suspicion score came from
        weights: Input weights (default from settings)

    Returns:
        CompositeRiskScore; without card testing data the risk score
        carries full weight
    """
    weights = weights or default_weights()
    risk = _clamp(risk_score)
    card_testing = _clamp(card_testing_score)
    has_card_testing_data = card_testing_score > 0 or card_testing_tracker_id is not None

    if has_card_testing_data:
        risk_contribution = risk * weights.risk_score
        card_testing_contribution = card_testing * weights.card_testing_score
    else:
        risk_contribution = float(risk)
        card_testing_contribution = 0.0

    total = _clamp(risk_contribution + card_testing_contribution)
    level = get_risk_level(total)

    breakdown = CompositeScoreBreakdown(
        risk_score=risk,
        card_testing_score=card_testing,
        risk_score_contribution=round(risk_contribution),
        card_testing_contribution=round(card_testing_contribution),
        has_card_testing_data=has_card_testing_data,
        card_testing_tracker_id=card_testing_tracker_id,
    )

    return CompositeRiskScore(
        total_score=total,
        risk_level=level,
        breakdown=breakdown,
        decision=decision,
        confidence=confidence,
        summary=_summary(level, determine_primary_source(risk, card_testing), breakdown),
    )


def quick_composite_score(
    risk_score: int,
    card_testing_score: int = 0,
    weights: Optional[CompositeScoreWeights] = None,
) -> int:
    """Just the number, for sorting."""
    if card_testing_score <= 0:
        return _clamp(risk_score)
    weights = weights or default_weights()
    return _clamp(risk_score * weights.risk_score + card_testing_score * weights.card_testing_score)


def calculate_batch_composite_scores(
    detections: list[ScoredDetection],
    weights: Optional[CompositeScoreWeights] = None,
) -> dict[str, CompositeRiskScore]:
    """Composite score per detection id."""
    weights = weights or default_weights()
    return {
        d.id: calculate_composite_score(
            d.risk_score,
            d.decision,
            d.confidence,
            card_testing_score=d.card_testing_suspicion_score,
            card_testing_tracker_id=d.card_testing_tracker_id,
            weights=weights,
        )
        for d in detections
    }


def sort_by_composite_risk(
    detections: list[ScoredDetection],
    weights: Optional[CompositeScoreWeights] = None,
) -> list[ScoredDetection]:
    """Highest composite risk first; input list is not modified."""
    weights = weights or default_weights()
    return sorted(
        detections,
        key=lambda d: quick_composite_score(d.risk_score, d.card_testing_suspicion_score, weights),
        reverse=True,
    )
