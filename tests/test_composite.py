"""
Composite Score Tests

Tests for merging the fraud and card testing scores.
"""

import pytest
from pydantic import ValidationError

from riskguard.schemas import (
    CompositeRiskLevel,
    CompositeScoreWeights,
    Confidence,
    Decision,
    RiskSource,
    ScoredDetection,
)
from riskguard.scoring import (
    calculate_batch_composite_scores,
    calculate_composite_score,
    determine_primary_source,
    get_risk_level,
    quick_composite_score,
    sort_by_composite_risk,
)

WEIGHTS = CompositeScoreWeights(risk_score=0.6, card_testing_score=0.4)


class TestCompositeScore:
    """Tests for calculate_composite_score."""

    def test_without_card_testing_data(self):
        """The risk score carries full weight."""
        composite = calculate_composite_score(40, Decision.REVIEW, Confidence.MEDIUM, weights=WEIGHTS)

        assert composite.total_score == 40
        assert composite.risk_level == CompositeRiskLevel.MODERATE
        assert not composite.breakdown.has_card_testing_data
        assert composite.breakdown.card_testing_contribution == 0
        assert composite.summary.primary_risk_source == RiskSource.GENERAL

    def test_weighted_merge(self):
        composite = calculate_composite_score(
            40, Decision.REVIEW, Confidence.MEDIUM,
            card_testing_score=100, card_testing_tracker_id="trk_1", weights=WEIGHTS,
        )

        assert composite.total_score == 64
        assert composite.breakdown.risk_score_contribution == 24
        assert composite.breakdown.card_testing_contribution == 40
        assert composite.risk_level == CompositeRiskLevel.ELEVATED
        assert composite.summary.primary_risk_source == RiskSource.CARD_TESTING
        assert composite.summary.label == "Elevated risk"

    def test_tracker_with_zero_suspicion_still_weights(self):
        composite = calculate_composite_score(
            40, Decision.REVIEW, Confidence.MEDIUM, card_testing_tracker_id="trk_1", weights=WEIGHTS,
        )

        assert composite.breakdown.has_card_testing_data
        assert composite.total_score == 24

    def test_decision_is_passed_through(self):
        """A high composite never changes the authoritative decision."""
        composite = calculate_composite_score(
            10, Decision.ALLOW, Confidence.HIGH, card_testing_score=100, weights=WEIGHTS,
        )

        assert composite.total_score == 46
        assert composite.decision == Decision.ALLOW
        assert composite.confidence == Confidence.HIGH

    def test_both_sources(self):
        composite = calculate_composite_score(
            70, Decision.REVIEW, Confidence.MEDIUM, card_testing_score=65, weights=WEIGHTS,
        )

        assert composite.total_score == 68
        assert composite.summary.primary_risk_source == RiskSource.BOTH
        assert "Multiple risks" in composite.summary.description

    @pytest.mark.parametrize(
        "score,level",
        [
            (0, CompositeRiskLevel.MINIMAL),
            (20, CompositeRiskLevel.MINIMAL),
            (21, CompositeRiskLevel.LOW),
            (35, CompositeRiskLevel.LOW),
            (50, CompositeRiskLevel.MODERATE),
            (65, CompositeRiskLevel.ELEVATED),
            (80, CompositeRiskLevel.HIGH),
            (81, CompositeRiskLevel.CRITICAL),
            (100, CompositeRiskLevel.CRITICAL),
        ],
    )
    def test_risk_levels(self, score, level):
        assert get_risk_level(score) == level

    @pytest.mark.parametrize(
        "risk,card_testing,source",
        [
            (10, 20, RiskSource.NONE),
            (30, 30, RiskSource.NONE),
            (31, 0, RiskSource.GENERAL),
            (0, 31, RiskSource.CARD_TESTING),
            (80, 70, RiskSource.BOTH),
            (90, 40, RiskSource.GENERAL),
            (40, 90, RiskSource.CARD_TESTING),
        ],
    )
    def test_primary_source(self, risk, card_testing, source):
        assert determine_primary_source(risk, card_testing) == source

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            CompositeScoreWeights(risk_score=0.7, card_testing_score=0.7)


class TestBatchHelpers:
    """Tests for the batch and sorting helpers."""

    @pytest.fixture
    def detections(self):
        return [
            ScoredDetection(id="det_low", risk_score=10, decision=Decision.ALLOW, confidence=Confidence.HIGH),
            ScoredDetection(
                id="det_testing", risk_score=40, decision=Decision.REVIEW, confidence=Confidence.MEDIUM,
                card_testing_suspicion_score=100, card_testing_tracker_id="trk_1",
            ),
            ScoredDetection(id="det_high", risk_score=55, decision=Decision.REVIEW, confidence=Confidence.MEDIUM),
        ]

    def test_quick_score(self):
        assert quick_composite_score(40, weights=WEIGHTS) == 40
        assert quick_composite_score(40, 100, weights=WEIGHTS) == 64

    def test_batch(self, detections):
        scores = calculate_batch_composite_scores(detections, weights=WEIGHTS)

        assert set(scores) == {"det_low", "det_testing", "det_high"}
        assert scores["det_testing"].total_score == 64

    def test_sort(self, detections):
        ordered = sort_by_composite_risk(detections, weights=WEIGHTS)

        assert [d.id for d in ordered] == ["det_testing", "det_high", "det_low"]
        assert detections[0].id == "det_low"
