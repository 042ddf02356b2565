"""
Fraud Detection Engine

Rule-based scorer that turns one TransactionContext into a 0-100 risk
score, an ALLOW/REVIEW/BLOCK decision and an ordered list of weighted
factors explaining it.

Scoring order:
1. Blacklisted customer: immediate BLOCK at 100
2. Risk-adding heuristics (geo, velocity, card testing, amounts, ...)
3. Risk-reducing adjustments (whitelist, trust tier, loyalty, ...)
4. Clamp to 0-100 and map to a decision

The running total may go negative between adjustments; only the
whitelist reduction floors at 0 immediately. A blocked trust tier pins
the final score to 100.
"""

from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..schemas import (
    Confidence,
    CustomerTier,
    Decision,
    FactorCategory,
    FactorTypes,
    FraudDetectionResult,
    FraudFactor,
    ScoreAdjustments,
    Severity,
    TransactionContext,
)

HIGH_CONFIDENCE_ALLOW_SCORE = 15
NEW_ACCOUNT_DAYS = 1
LOYAL_MIN_PURCHASES = 5
MAX_DISPUTE_WEIGHT = 60

RECOMMENDED_ACTIONS = {
    Decision.ALLOW: "Allow the transaction",
    Decision.REVIEW: "Manual review recommended before proceeding",
    Decision.BLOCK: "Block and flag as fraudulent",
}

DECISION_LABELS = {
    Decision.ALLOW: "Allowed",
    Decision.REVIEW: "Needs review",
    Decision.BLOCK: "Blocked",
}


@dataclass(frozen=True)
class EngineThresholds:
    """Engine thresholds. Amounts are in minor currency units."""
    risk_low: int = 30
    risk_medium: int = 50
    risk_high: int = 70
    risk_critical: int = 85
    amount_small: int = 500
    amount_high: int = 50000
    amount_very_high: int = 100000
    attempts_hour_warning: int = 3
    attempts_hour_critical: int = 5
    unique_cards_warning: int = 2
    unique_cards_suspicious: int = 3
    unique_cards_critical: int = 5

    @classmethod
    def from_settings(cls) -> "EngineThresholds":
        return cls(
            risk_low=settings.risk_threshold_low,
            risk_medium=settings.risk_threshold_medium,
            risk_high=settings.risk_threshold_high,
            risk_critical=settings.risk_threshold_critical,
            amount_small=settings.amount_small_cents,
            amount_high=settings.amount_high_cents,
            amount_very_high=settings.amount_very_high_cents,
            attempts_hour_warning=settings.velocity_attempts_hour_warning,
            attempts_hour_critical=settings.velocity_attempts_hour_critical,
            unique_cards_warning=settings.velocity_unique_cards_warning,
            unique_cards_suspicious=settings.velocity_unique_cards_suspicious,
            unique_cards_critical=settings.velocity_unique_cards_critical,
        )


def _format_amount(minor_units: float) -> str:
    return f"{minor_units / 100:.2f}"


class FraudDetectionEngine:
    """
    Main fraud detection engine.

    Pure: the result depends only on the context and the thresholds.
    """

    def __init__(self, thresholds: Optional[EngineThresholds] = None):
        """
        Initialize engine.

        Args:
            thresholds: Scoring thresholds (default from settings)
        """
        self.thresholds = thresholds or EngineThresholds.from_settings()

    def detect(self, context: TransactionContext) -> FraudDetectionResult:
        """
        Score a transaction.

        Args:
            context: Immutable transaction context

        Returns:
            FraudDetectionResult with factors sorted by descending |weight|
        """
        t = self.thresholds
        customer = context.customer
        velocity = context.velocity

        # =======================================================================
        # Instant block
        # =======================================================================
        if customer and customer.is_blacklisted:
            return FraudDetectionResult(
                decision=Decision.BLOCK,
                risk_score=100,
                confidence=Confidence.HIGH,
                factors=[FraudFactor(
                    type=FactorTypes.BLACKLISTED_CUSTOMER,
                    weight=100,
                    description="Customer is blacklisted",
                    severity=Severity.HIGH,
                    category=FactorCategory.CUSTOMER,
                )],
                recommended_action="Automatic block - blacklisted customer",
                base_score=0,
                adjustments=ScoreAdjustments(positive=0, negative=100),
            )

        score = 0
        factors: list[FraudFactor] = []

        def add(factor_type, weight, description, severity, category):
            nonlocal score
            score += weight
            factors.append(FraudFactor(
                type=factor_type,
                weight=weight,
                description=description,
                severity=severity,
                category=category,
            ))

        # =======================================================================
        # Rule 1: Geographic mismatch
        # =======================================================================
        if context.ip_country and context.card_country and context.ip_country != context.card_country:
            add(
                FactorTypes.GEOGRAPHIC_MISMATCH, 30,
                f"IP from {context.ip_country} but card issued in {context.card_country}",
                Severity.HIGH, FactorCategory.LOCATION,
            )

        # =======================================================================
        # Rule 2: Velocity
        # =======================================================================
        if velocity:
            attempts = velocity.attempts_last_hour
            if attempts >= t.attempts_hour_critical:
                add(
                    FactorTypes.VELOCITY_ABUSE, 25,
                    f"{attempts} payment attempts in the last hour",
                    Severity.HIGH, FactorCategory.VELOCITY,
                )
            elif attempts >= t.attempts_hour_warning:
                add(
                    FactorTypes.VELOCITY_ELEVATED, 15,
                    f"{attempts} payment attempts in the last hour",
                    Severity.MEDIUM, FactorCategory.VELOCITY,
                )

        # =======================================================================
        # Rule 3: Card testing signature
        # =======================================================================
        if velocity:
            cards = velocity.unique_cards_used
            if cards >= t.unique_cards_critical:
                add(
                    FactorTypes.CARD_TESTING_CRITICAL, 50,
                    f"{cards} different cards tried on the same session - card testing pattern",
                    Severity.HIGH, FactorCategory.CARD,
                )
            elif cards >= t.unique_cards_suspicious:
                add(
                    FactorTypes.CARD_TESTING, 40,
                    f"{cards} different cards tried on the same session",
                    Severity.HIGH, FactorCategory.CARD,
                )
            elif cards >= t.unique_cards_warning:
                add(
                    FactorTypes.MULTIPLE_CARDS, 20,
                    f"{cards} different cards used",
                    Severity.MEDIUM, FactorCategory.CARD,
                )

        # =======================================================================
        # Rule 4: Rapid attempts
        # =======================================================================
        if velocity and velocity.rapid_attempts:
            add(
                FactorTypes.RAPID_ATTEMPTS, 15,
                "Multiple attempts within seconds",
                Severity.HIGH, FactorCategory.VELOCITY,
            )

        # =======================================================================
        # Rule 5: Customer history
        # =======================================================================
        avg_spend_minor = self._average_spend_minor(context)
        if customer:
            if customer.account_age_days < NEW_ACCOUNT_DAYS and context.amount > t.amount_high:
                add(
                    FactorTypes.NEW_ACCOUNT_HIGH_AMOUNT, 25,
                    f"Account created less than 24h ago with a high amount ({_format_amount(context.amount)})",
                    Severity.HIGH, FactorCategory.CUSTOMER,
                )
            elif avg_spend_minor > 0 and context.amount > avg_spend_minor * 3:
                add(
                    FactorTypes.UNUSUAL_AMOUNT, 15,
                    f"Amount over 3x the customer's average "
                    f"({_format_amount(context.amount)} vs {_format_amount(avg_spend_minor)})",
                    Severity.MEDIUM, FactorCategory.AMOUNT,
                )
        else:
            add(
                FactorTypes.UNKNOWN_CUSTOMER, 10,
                "First transaction from this customer",
                Severity.LOW, FactorCategory.CUSTOMER,
            )

        # =======================================================================
        # Rule 6: Dispute history
        # =======================================================================
        if customer and customer.dispute_count > 0:
            add(
                FactorTypes.DISPUTE_HISTORY,
                min(customer.dispute_count * 20, MAX_DISPUTE_WEIGHT),
                f"Customer has {customer.dispute_count} prior dispute(s)",
                Severity.HIGH, FactorCategory.CUSTOMER,
            )

        # =======================================================================
        # Rule 7: Amount tier
        # =======================================================================
        if context.amount >= t.amount_very_high:
            add(
                FactorTypes.VERY_HIGH_AMOUNT, 15,
                f"Very high amount: {_format_amount(context.amount)}",
                Severity.MEDIUM, FactorCategory.AMOUNT,
            )
        elif context.amount >= t.amount_high:
            add(
                FactorTypes.HIGH_AMOUNT, 8,
                f"High amount: {_format_amount(context.amount)}",
                Severity.LOW, FactorCategory.AMOUNT,
            )

        # =======================================================================
        # Rule 8: Small repeated amounts
        # =======================================================================
        if context.amount <= t.amount_small and velocity and velocity.attempts_last_hour > 1:
            add(
                FactorTypes.SMALL_AMOUNT_PATTERN, 20,
                f"Repeated small amounts ({_format_amount(context.amount)}) - card testing pattern",
                Severity.MEDIUM, FactorCategory.AMOUNT,
            )

        # =======================================================================
        # Rule 9: Prepaid card
        # =======================================================================
        if context.card_funding == "prepaid":
            add(
                FactorTypes.PREPAID_CARD, 10,
                "Prepaid card used (higher risk)",
                Severity.MEDIUM, FactorCategory.CARD,
            )

        # =======================================================================
        # Rule 10: Unusual time
        # =======================================================================
        if context.hour_of_day is not None and 3 <= context.hour_of_day < 6:
            add(
                FactorTypes.UNUSUAL_TIME, 5,
                f"Transaction at {context.hour_of_day}h (unusual hour)",
                Severity.LOW, FactorCategory.BEHAVIOR,
            )

        # =======================================================================
        # Risk-reducing adjustments
        # =======================================================================
        pinned = False

        if customer and customer.is_whitelisted:
            add(
                FactorTypes.WHITELISTED_CUSTOMER, -30,
                "Customer is whitelisted - high trust",
                Severity.LOW, FactorCategory.CUSTOMER,
            )
            score = max(0, score)

        if customer and customer.trust_score is not None and customer.tier:
            trust = customer.trust_score
            if customer.tier == CustomerTier.VIP:
                add(
                    FactorTypes.VIP_CUSTOMER, -30,
                    f"VIP customer (trust score {trust}/100) - {customer.total_purchases} successful purchases",
                    Severity.LOW, FactorCategory.CUSTOMER,
                )
            elif customer.tier == CustomerTier.TRUSTED:
                add(
                    FactorTypes.TRUSTED_CUSTOMER, -20,
                    f"Trusted customer (trust score {trust}/100)",
                    Severity.LOW, FactorCategory.CUSTOMER,
                )
            elif customer.tier == CustomerTier.SUSPICIOUS:
                add(
                    FactorTypes.SUSPICIOUS_CUSTOMER, 20,
                    f"Low trust score ({trust}/100) - prior problems detected",
                    Severity.HIGH, FactorCategory.CUSTOMER,
                )
            elif customer.tier == CustomerTier.BLOCKED:
                factors.append(FraudFactor(
                    type=FactorTypes.BLOCKED_TIER_CUSTOMER,
                    weight=50,
                    description=f"Blocked customer - critical trust score ({trust}/100)",
                    severity=Severity.HIGH,
                    category=FactorCategory.CUSTOMER,
                ))
                pinned = True

        if customer and customer.total_purchases >= LOYAL_MIN_PURCHASES and customer.dispute_count == 0:
            add(
                FactorTypes.LOYAL_CUSTOMER, -15,
                f"{customer.total_purchases} successful purchases, no disputes",
                Severity.LOW, FactorCategory.CUSTOMER,
            )

        if avg_spend_minor > 0 and avg_spend_minor * 0.5 <= context.amount <= avg_spend_minor * 1.5:
            add(
                FactorTypes.NORMAL_AMOUNT, -10,
                "Amount within the customer's usual range",
                Severity.LOW, FactorCategory.AMOUNT,
            )

        if customer and customer.has_active_subscription:
            add(
                FactorTypes.ACTIVE_SUBSCRIPTION, -10,
                "Customer has an active subscription",
                Severity.LOW, FactorCategory.CUSTOMER,
            )

        # =======================================================================
        # Final decision
        # =======================================================================
        risk_score = 100 if pinned else max(0, min(100, score))
        decision, confidence = self.decide(risk_score)

        factors.sort(key=lambda f: abs(f.weight), reverse=True)

        return FraudDetectionResult(
            decision=decision,
            risk_score=risk_score,
            confidence=confidence,
            factors=factors,
            recommended_action=RECOMMENDED_ACTIONS[decision],
            base_score=0,
            adjustments=ScoreAdjustments(
                positive=sum(-f.weight for f in factors if f.weight < 0),
                negative=sum(f.weight for f in factors if f.weight > 0),
            ),
        )

    def decide(self, risk_score: int) -> tuple[Decision, Confidence]:
        """Map a clamped risk score to (decision, confidence)."""
        t = self.thresholds
        if risk_score <= t.risk_low:
            confidence = Confidence.HIGH if risk_score <= HIGH_CONFIDENCE_ALLOW_SCORE else Confidence.MEDIUM
            return Decision.ALLOW, confidence
        if risk_score <= t.risk_high:
            return Decision.REVIEW, Confidence.MEDIUM
        confidence = Confidence.HIGH if risk_score >= t.risk_critical else Confidence.MEDIUM
        return Decision.BLOCK, confidence

    @staticmethod
    def _average_spend_minor(context: TransactionContext) -> float:
        """Customer's historical average purchase in minor units (0 if none)."""
        customer = context.customer
        if not customer or customer.total_purchases <= 0:
            return 0.0
        return customer.total_spent / customer.total_purchases * 100


def detect_fraud(context: TransactionContext) -> FraudDetectionResult:
    """Convenience wrapper using default thresholds."""
    return FraudDetectionEngine().detect(context)


def decision_label(decision: Decision) -> str:
    """Short display label for a decision."""
    return DECISION_LABELS[decision]


def format_explanation(result: FraudDetectionResult) -> str:
    """
    Plain-text explanation of a result.

    Used when no richer explanation is available for an operator.
    """
    lines = [
        f"Decision: {decision_label(result.decision)} "
        f"(risk score {result.risk_score}/100, confidence {result.confidence.value})",
    ]
    if result.recommended_action:
        lines.append(f"Recommended action: {result.recommended_action}")

    risk_factors = [f for f in result.factors if f.weight > 0]
    trust_factors = [f for f in result.factors if f.weight < 0]

    if risk_factors:
        lines.append("Risk factors:")
        lines.extend(f"  +{f.weight} {f.description}" for f in risk_factors)
    if trust_factors:
        lines.append("Trust factors:")
        lines.extend(f"  {f.weight} {f.description}" for f in trust_factors)
    if not result.factors:
        lines.append("No risk factors detected.")

    return "\n".join(lines)
