"""
Trust Score Tests

Tests for the customer trust score calculator and tier mapping.
"""

import pytest

from riskguard.schemas import CustomerMetrics, CustomerTier
from riskguard.scoring import (
    TrustScoreCalculator,
    calculate_trust_score,
    describe_tier,
    get_trust_tier,
)


@pytest.fixture
def calculator():
    return TrustScoreCalculator()


class TestTrustTiers:
    """Tests for score-to-tier breakpoints."""

    @pytest.mark.parametrize(
        "score,tier",
        [
            (0, CustomerTier.BLOCKED),
            (19, CustomerTier.BLOCKED),
            (20, CustomerTier.SUSPICIOUS),
            (39, CustomerTier.SUSPICIOUS),
            (40, CustomerTier.NEW),
            (59, CustomerTier.NEW),
            (60, CustomerTier.TRUSTED),
            (79, CustomerTier.TRUSTED),
            (80, CustomerTier.VIP),
            (100, CustomerTier.VIP),
        ],
    )
    def test_breakpoints(self, score, tier):
        assert get_trust_tier(score) == tier

    def test_describe_tier(self):
        info = describe_tier(CustomerTier.VIP)
        assert info["label"] == "VIP"
        assert "whitelist" in info["description"]


class TestTrustScoreCalculator:
    """Tests for the trust score calculation."""

    def test_new_customer_is_neutral(self, calculator):
        """A customer with no history stays at the baseline."""
        result = calculator.calculate(CustomerMetrics())

        assert result.score == 50
        assert result.tier == CustomerTier.NEW
        assert result.factors == []
        assert not result.should_whitelist
        assert not result.should_blacklist

    def test_excellent_customer_clamped_to_100(self, calculator):
        """All positive factors at their top tier exceed 100 and clamp."""
        metrics = CustomerMetrics(
            account_age_days=400,
            total_purchases=60,
            total_spent=12000,
            has_active_subscription=True,
            purchase_frequency=5,
            device_consistency=90,
            location_consistency=90,
        )

        result = calculator.calculate(metrics)

        assert result.score == 100
        assert result.tier == CustomerTier.VIP
        assert result.should_whitelist
        assert result.breakdown.positive_points == 70
        assert result.breakdown.negative_points == 0

    def test_disputes_are_unbounded(self, calculator):
        """Each dispute removes 30 points with no cap."""
        result = calculator.calculate(CustomerMetrics(dispute_count=3))

        assert result.score == 0
        assert result.tier == CustomerTier.BLOCKED
        assert result.should_blacklist
        assert result.factors[0].type == "dispute_history"
        assert result.factors[0].impact == -90

    def test_failure_rate_needs_a_successful_purchase(self, calculator):
        """Failures alone do not count while there are no purchases."""
        result = calculator.calculate(CustomerMetrics(failed_payment_count=10))

        assert result.score == 50
        assert all(not f.type.startswith("failure_rate") for f in result.factors)

    def test_failure_rate_penalty(self, calculator):
        """failed / (purchases + failed) of 0.5 costs 20 points."""
        metrics = CustomerMetrics(total_purchases=5, failed_payment_count=5)

        result = calculator.calculate(metrics)

        # +8 purchases, -20 failure rate
        assert result.score == 38
        assert result.tier == CustomerTier.SUSPICIOUS
        assert result.factors[0].type == "failure_rate_critical"

    def test_refund_rate_penalty(self, calculator):
        metrics = CustomerMetrics(total_purchases=10, refund_count=3)

        result = calculator.calculate(metrics)

        # +12 purchases, -15 refund rate 0.3
        assert result.score == 47
        assert any(f.type == "refund_rate_high" for f in result.factors)

    def test_payment_methods_and_inactivity(self, calculator):
        metrics = CustomerMetrics(unique_payment_methods=5, days_since_last_purchase=200)

        result = calculator.calculate(metrics)

        assert result.score == 50 - 15 - 5
        types = [f.type for f in result.factors]
        assert types == ["many_payment_methods_critical", "inactivity_moderate"]

    def test_factors_sorted_by_absolute_impact(self, calculator):
        metrics = CustomerMetrics(
            account_age_days=40,
            total_purchases=2,
            dispute_count=1,
            has_active_subscription=True,
        )

        result = calculator.calculate(metrics)
        impacts = [abs(f.impact) for f in result.factors]

        assert impacts == sorted(impacts, reverse=True)

    def test_deterministic(self):
        metrics = CustomerMetrics(
            account_age_days=120,
            total_purchases=12,
            total_spent=900,
            refund_count=1,
            device_consistency=60,
            location_consistency=100,
        )

        assert calculate_trust_score(metrics) == calculate_trust_score(metrics)

    @pytest.mark.parametrize("disputes", [0, 1, 2, 5, 20])
    def test_score_always_in_bounds(self, calculator, disputes):
        metrics = CustomerMetrics(
            account_age_days=1000,
            total_purchases=100,
            total_spent=50000,
            dispute_count=disputes,
            refund_count=disputes,
        )

        result = calculator.calculate(metrics)

        assert 0 <= result.score <= 100
