"""
Card Testing Detection

Detects card testing/enumeration attacks where fraudsters:
1. Try several stolen cards on the same checkout to find a working one
2. Probe cards with small amounts
3. Fire attempts in rapid bursts

Key signals (all computed over the complete attempt list of a session):
- Number of distinct card fingerprints
- Failure ratio
- Burstiness (attempt count vs. time span)
- Repeated small amounts
- Variety of card brands
"""

from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..schemas import (
    AttemptStatus,
    CardTestingAttempt,
    CardTestingCheck,
    CardTestingMetrics,
    Decision,
    Severity,
    SuspicionReason,
)


@dataclass(frozen=True)
class CardTestingThresholds:
    """Thresholds for the suspicion score. Defaults come from settings."""
    cards_warning: int = 2
    cards_suspicious: int = 3
    cards_critical: int = 5
    failure_rate_warning: float = 0.5
    failure_rate_critical: float = 0.8
    burst_window_minutes: int = 5
    burst_count: int = 5
    rapid_window_minutes: int = 10
    rapid_count: int = 3
    small_amount_cents: int = 500
    review_score: int = 50
    block_score: int = 80

    @classmethod
    def from_settings(cls) -> "CardTestingThresholds":
        return cls(
            cards_warning=settings.card_testing_cards_warning,
            cards_suspicious=settings.card_testing_cards_suspicious,
            cards_critical=settings.card_testing_cards_critical,
            failure_rate_warning=settings.card_testing_failure_rate_warning,
            failure_rate_critical=settings.card_testing_failure_rate_critical,
            burst_window_minutes=settings.card_testing_burst_window_minutes,
            burst_count=settings.card_testing_burst_count,
            rapid_window_minutes=settings.card_testing_rapid_window_minutes,
            rapid_count=settings.card_testing_rapid_count,
            small_amount_cents=settings.card_testing_small_amount_cents,
            review_score=settings.card_testing_review_score,
            block_score=settings.card_testing_block_score,
        )


class CardTestingDetector:
    """
    Computes the 0-100 suspicion score of a card testing session.

    Card testing is characterized by:
    - Several distinct cards on one checkout
    - High failure rate as fraudsters probe for valid cards
    - Rapid succession of small transactions

    Pure: the score depends only on the attempt list passed in.
    """

    def __init__(self, thresholds: Optional[CardTestingThresholds] = None):
        """
        Initialize detector.

        Args:
            thresholds: Scoring thresholds (default from settings)
        """
        self.thresholds = thresholds or CardTestingThresholds.from_settings()

    def calculate_suspicion(
        self,
        attempts: list[CardTestingAttempt],
    ) -> tuple[int, list[SuspicionReason]]:
        """
        Score the complete attempt list of a session.

        Args:
            attempts: Every attempt recorded for the session

        Returns:
            Tuple of (suspicion_score, reasons sorted by descending weight)
        """
        t = self.thresholds
        reasons: list[SuspicionReason] = []

        # =======================================================================
        # Check 1: Distinct cards (main signal)
        # =======================================================================
        unique_cards = len({a.card_fingerprint for a in attempts})

        if unique_cards >= t.cards_critical:
            reasons.append(SuspicionReason(
                label="Critical card testing",
                description=f"{unique_cards} different cards used on the same session",
                weight=50,
                severity=Severity.HIGH,
            ))
        elif unique_cards >= t.cards_suspicious:
            reasons.append(SuspicionReason(
                label="Probable card testing",
                description=f"{unique_cards} different cards used",
                weight=35,
                severity=Severity.HIGH,
            ))
        elif unique_cards >= t.cards_warning:
            reasons.append(SuspicionReason(
                label="Multiple cards",
                description=f"{unique_cards} different cards used",
                weight=20,
                severity=Severity.MEDIUM,
            ))

        # =======================================================================
        # Check 2: Failure ratio
        # =======================================================================
        total = len(attempts)
        failed = sum(1 for a in attempts if a.status == AttemptStatus.FAILED)
        failure_rate = failed / total if total > 0 else 0.0

        if failure_rate >= t.failure_rate_critical and failed >= 3:
            reasons.append(SuspicionReason(
                label="Very high failure rate",
                description=f"{failed}/{total} attempts failed ({failure_rate:.0%})",
                weight=30,
                severity=Severity.HIGH,
            ))
        elif failure_rate >= t.failure_rate_warning and failed >= 2:
            reasons.append(SuspicionReason(
                label="High failure rate",
                description=f"{failed}/{total} attempts failed",
                weight=15,
                severity=Severity.MEDIUM,
            ))

        # =======================================================================
        # Check 3: Burstiness
        # =======================================================================
        if total >= t.rapid_count:
            ordered = sorted(attempts, key=lambda a: a.timestamp)
            span = ordered[-1].timestamp - ordered[0].timestamp
            duration_minutes = span.total_seconds() / 60

            if total >= t.burst_count and duration_minutes < t.burst_window_minutes:
                reasons.append(SuspicionReason(
                    label="Very rapid attempts",
                    description=f"{total} attempts in {round(duration_minutes)} min",
                    weight=25,
                    severity=Severity.HIGH,
                ))
            elif duration_minutes < t.rapid_window_minutes:
                reasons.append(SuspicionReason(
                    label="Rapid attempts",
                    description=f"{total} attempts in {round(duration_minutes)} min",
                    weight=15,
                    severity=Severity.MEDIUM,
                ))

        # =======================================================================
        # Check 4: Repeated small amounts
        # =======================================================================
        small = sum(
            1 for a in attempts
            if a.amount and a.amount < t.small_amount_cents
        )
        if small >= 3:
            reasons.append(SuspicionReason(
                label="Repeated small amounts",
                description=f"{small} attempts below {t.small_amount_cents} minor units",
                weight=15,
                severity=Severity.MEDIUM,
            ))

        # =======================================================================
        # Check 5: Card brand variety
        # =======================================================================
        brands = {a.card_brand.lower() for a in attempts if a.card_brand}
        if len(brands) >= 3:
            reasons.append(SuspicionReason(
                label="Varied card brands",
                description=f"{len(brands)} different card brands",
                weight=10,
                severity=Severity.LOW,
            ))

        score = max(0, min(100, sum(r.weight for r in reasons)))
        reasons.sort(key=lambda r: r.weight, reverse=True)

        return score, reasons

    def recommend(self, suspicion_score: int) -> Decision:
        """Map a suspicion score to a recommendation."""
        if suspicion_score >= self.thresholds.block_score:
            return Decision.BLOCK
        if suspicion_score >= self.thresholds.review_score:
            return Decision.REVIEW
        return Decision.ALLOW

    def calculate_metrics(self, attempts: list[CardTestingAttempt]) -> CardTestingMetrics:
        """Aggregate counts and time span over an attempt list."""
        if not attempts:
            return CardTestingMetrics()

        ordered = sorted(attempts, key=lambda a: a.timestamp)
        failed = sum(1 for a in attempts if a.status == AttemptStatus.FAILED)

        return CardTestingMetrics(
            unique_cards=len({a.card_fingerprint for a in attempts}),
            total_attempts=len(attempts),
            failure_rate=failed / len(attempts),
            timespan_seconds=int((ordered[-1].timestamp - ordered[0].timestamp).total_seconds()),
            successful_attempts=sum(1 for a in attempts if a.status == AttemptStatus.SUCCEEDED),
            failed_attempts=failed,
        )

    def check_attempt(
        self,
        history: list[CardTestingAttempt],
        candidate: CardTestingAttempt,
    ) -> CardTestingCheck:
        """
        Quick check of whether a new attempt would look like card testing.

        Does not touch storage; the candidate is scored together with the
        supplied history.
        """
        score, reasons = self.calculate_suspicion([*history, candidate])
        return CardTestingCheck(
            is_likely_card_testing=score >= self.thresholds.review_score,
            confidence=score,
            reasons=[r.description for r in reasons],
        )


def is_card_testing_attempt(
    history: list[CardTestingAttempt],
    candidate: CardTestingAttempt,
) -> CardTestingCheck:
    """Module-level shortcut using default thresholds."""
    return CardTestingDetector().check_attempt(history, candidate)
