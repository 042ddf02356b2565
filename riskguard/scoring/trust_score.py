"""
Customer Trust Score

Scores a customer 0-100 from transaction history, behavior and risk
indicators. Starts neutral at 50; positive history adds trust, disputes,
refunds, failures and card churn remove it.

Pure: same metrics in, same result out.
"""

from ..schemas import (
    CustomerMetrics,
    CustomerTier,
    TrustFactor,
    TrustScoreBreakdown,
    TrustScoreResult,
)

BASE_SCORE = 50

# (minimum, points, factor type, description template)
ACCOUNT_AGE_TIERS = [
    (365, 15, "account_age_excellent", "Customer for over 1 year"),
    (180, 12, "account_age_good", "Customer for over 6 months"),
    (90, 8, "account_age_moderate", "Customer for over 3 months"),
    (30, 4, "account_age_new", "Customer for over 1 month"),
    (7, 2, "account_age_very_new", "Customer for over 1 week"),
]

PURCHASE_TIERS = [
    (50, 20, "purchase_history_power_user", "{n} successful purchases - power user"),
    (20, 15, "purchase_history_regular", "{n} successful purchases - regular customer"),
    (10, 12, "purchase_history_returning", "{n} successful purchases - returning customer"),
    (5, 8, "purchase_history_multiple", "{n} successful purchases"),
    (2, 4, "purchase_history_second", "Customer with purchase history"),
]

SPENDING_TIERS = [
    (10000, 10, "spending_vip", "{spent:.0f} spent - VIP customer"),
    (5000, 8, "spending_high", "{spent:.0f} spent"),
    (1000, 6, "spending_moderate", "{spent:.0f} spent"),
    (500, 4, "spending_normal", "{spent:.0f} spent"),
    (100, 2, "spending_low", "{spent:.0f} spent"),
]

FREQUENCY_TIERS = [
    (4, 5, "frequency_very_high"),
    (2, 3, "frequency_high"),
    (1, 2, "frequency_moderate"),
]

CONSISTENCY_TIERS = [
    (80, 10, "consistency_excellent", "Very consistent behavior (device and location)"),
    (60, 6, "consistency_good", "Consistent behavior"),
    (40, 3, "consistency_moderate", "Partially consistent behavior"),
]

REFUND_RATE_TIERS = [
    (0.5, 25, "refund_rate_critical"),
    (0.3, 15, "refund_rate_high"),
    (0.2, 10, "refund_rate_moderate"),
    (0.1, 5, "refund_rate_low"),
]

FAILURE_RATE_TIERS = [
    (0.5, 20, "failure_rate_critical"),
    (0.3, 10, "failure_rate_high"),
    (0.2, 5, "failure_rate_moderate"),
]

DISPUTE_PENALTY = 30

# (upper bound exclusive, tier)
TIER_BREAKPOINTS = [
    (20, CustomerTier.BLOCKED),
    (40, CustomerTier.SUSPICIOUS),
    (60, CustomerTier.NEW),
    (80, CustomerTier.TRUSTED),
]

TIER_INFO = {
    CustomerTier.VIP: ("VIP", "Highest trust - automatic whitelist"),
    CustomerTier.TRUSTED: ("Trusted", "Trusted customer - reduced friction"),
    CustomerTier.NEW: ("New", "New customer - standard monitoring"),
    CustomerTier.SUSPICIOUS: ("Suspicious", "Suspicious customer - enhanced monitoring"),
    CustomerTier.BLOCKED: ("Blocked", "Blocked customer - automatic blacklist"),
}


def get_trust_tier(score: int) -> CustomerTier:
    """Map a 0-100 trust score to its tier."""
    for upper, tier in TIER_BREAKPOINTS:
        if score < upper:
            return tier
    return CustomerTier.VIP


def describe_tier(tier: CustomerTier) -> dict[str, str]:
    """Display label and description for a tier."""
    label, description = TIER_INFO[tier]
    return {"label": label, "description": description}


class TrustScoreCalculator:
    """
    Customer trust score calculator.

    Positive factors (max +70):
    - Account age, purchase count, total spend
    - Active subscription, purchase frequency
    - Device/location consistency

    Negative factors:
    - Disputes (-30 each, unbounded)
    - Refund and failure ratios
    - Many distinct payment methods
    - Long inactivity
    """

    def calculate(self, metrics: CustomerMetrics) -> TrustScoreResult:
        """
        Calculate trust score from customer metrics.

        Args:
            metrics: Historical customer metrics

        Returns:
            TrustScoreResult with score, tier and factors sorted by
            descending |impact|
        """
        factors: list[TrustFactor] = []

        # =======================================================================
        # Positive factors
        # =======================================================================
        for minimum, points, factor_type, description in ACCOUNT_AGE_TIERS:
            if metrics.account_age_days >= minimum:
                factors.append(self._positive(factor_type, points, description))
                break

        for minimum, points, factor_type, description in PURCHASE_TIERS:
            if metrics.total_purchases >= minimum:
                factors.append(self._positive(
                    factor_type, points, description.format(n=metrics.total_purchases)
                ))
                break

        for minimum, points, factor_type, description in SPENDING_TIERS:
            if metrics.total_spent >= minimum:
                factors.append(self._positive(
                    factor_type, points, description.format(spent=metrics.total_spent)
                ))
                break

        if metrics.has_active_subscription:
            factors.append(self._positive(
                "active_subscription", 10, "Active subscription - strong engagement"
            ))

        for minimum, points, factor_type in FREQUENCY_TIERS:
            if metrics.purchase_frequency >= minimum:
                factors.append(self._positive(
                    factor_type, points, f"{metrics.purchase_frequency:.1f} purchases/month"
                ))
                break

        avg_consistency = (metrics.device_consistency + metrics.location_consistency) / 2
        for minimum, points, factor_type, description in CONSISTENCY_TIERS:
            if avg_consistency >= minimum:
                factors.append(self._positive(factor_type, points, description))
                break

        # =======================================================================
        # Negative factors
        # =======================================================================
        if metrics.dispute_count > 0:
            penalty = metrics.dispute_count * DISPUTE_PENALTY
            factors.append(self._negative(
                "dispute_history",
                penalty,
                f"{metrics.dispute_count} dispute(s) - critical fraud signal",
            ))

        refund_rate = (
            metrics.refund_count / metrics.total_purchases
            if metrics.total_purchases > 0 else 0.0
        )
        for minimum, points, factor_type in REFUND_RATE_TIERS:
            if refund_rate >= minimum:
                factors.append(self._negative(
                    factor_type, points, f"Refund rate {refund_rate:.0%}"
                ))
                break

        # Only meaningful once the customer has at least one success
        failure_rate = (
            metrics.failed_payment_count / (metrics.total_purchases + metrics.failed_payment_count)
            if metrics.total_purchases > 0 else 0.0
        )
        for minimum, points, factor_type in FAILURE_RATE_TIERS:
            if failure_rate >= minimum:
                factors.append(self._negative(
                    factor_type, points, f"Payment failure rate {failure_rate:.0%}"
                ))
                break

        if metrics.unique_payment_methods >= 5:
            factors.append(self._negative(
                "many_payment_methods_critical",
                15,
                f"{metrics.unique_payment_methods} different cards used - suspicious pattern",
            ))
        elif metrics.unique_payment_methods >= 3:
            factors.append(self._negative(
                "many_payment_methods",
                8,
                f"{metrics.unique_payment_methods} different cards used",
            ))

        inactive_days = metrics.days_since_last_purchase or 0
        if inactive_days > 365:
            factors.append(self._negative("inactivity_long", 10, "Inactive for over 1 year"))
        elif inactive_days > 180:
            factors.append(self._negative("inactivity_moderate", 5, "Inactive for over 6 months"))

        # =======================================================================
        # Final score
        # =======================================================================
        positive_points = sum(f.impact for f in factors if f.impact > 0)
        negative_points = -sum(f.impact for f in factors if f.impact < 0)

        score = BASE_SCORE + positive_points - negative_points
        score = max(0, min(100, score))
        tier = get_trust_tier(score)

        factors.sort(key=lambda f: abs(f.impact), reverse=True)

        return TrustScoreResult(
            score=score,
            tier=tier,
            factors=factors,
            should_whitelist=tier in (CustomerTier.TRUSTED, CustomerTier.VIP),
            should_blacklist=tier == CustomerTier.BLOCKED,
            breakdown=TrustScoreBreakdown(
                base_score=BASE_SCORE,
                positive_points=positive_points,
                negative_points=negative_points,
            ),
        )

    @staticmethod
    def _positive(factor_type: str, points: int, description: str) -> TrustFactor:
        return TrustFactor(
            type=factor_type,
            impact=points,
            description=description,
            category="positive",
        )

    @staticmethod
    def _negative(factor_type: str, points: int, description: str) -> TrustFactor:
        return TrustFactor(
            type=factor_type,
            impact=-points,
            description=description,
            category="negative",
        )


def calculate_trust_score(metrics: CustomerMetrics) -> TrustScoreResult:
    """Convenience wrapper around TrustScoreCalculator."""
    return TrustScoreCalculator().calculate(metrics)
