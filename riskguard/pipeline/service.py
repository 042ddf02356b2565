"""
Risk Assessment Pipeline

Runs one transaction through the decisioning core.

Decision flow:
1. Build and enrich the transaction context
2. Blacklisted customer (immediate BLOCK)
3. Custom rules (first match decides)
4. Fraud detection engine
5. Composite score with the session's card testing suspicion

Storage failures surface as ScoringIncompleteError. They are never
turned into a low-risk result.
"""

import logging
import time
from typing import Optional

from ..errors import ScoringIncompleteError, TrackerStorageError, TrustStorageError
from ..features import ContextBuilder
from ..metrics import metrics
from ..policy import CustomRuleEvaluator
from ..schemas import (
    ActualOutcome,
    AlertSeverity,
    Confidence,
    CompositeScoreWeights,
    CustomRuleResult,
    Decision,
    DecisionSource,
    FraudDetectionResult,
    ProcessorEvent,
    RiskAssessment,
    ScoreAdjustments,
    TransactionContext,
)
from ..scoring import FraudDetectionEngine, calculate_composite_score
from ..tracking import CardTestingTrackerService

logger = logging.getLogger("riskguard.pipeline")

REFUND_SCORE_THRESHOLD = 80


def result_from_rule(rule_result: CustomRuleResult) -> FraudDetectionResult:
    """
    FraudDetectionResult for a matched custom rule.

    The score is the rule factor's weight clamped to [0, 100].
    """
    weight = sum(f.weight for f in rule_result.factors)
    rule = rule_result.matched_rule
    return FraudDetectionResult(
        decision=rule_result.decision,
        risk_score=max(0, min(100, weight)),
        confidence=Confidence.HIGH,
        factors=rule_result.factors,
        recommended_action=f"Custom rule: {rule.name}" if rule else None,
        base_score=0,
        adjustments=ScoreAdjustments(
            positive=sum(abs(f.weight) for f in rule_result.factors if f.weight < 0),
            negative=sum(f.weight for f in rule_result.factors if f.weight > 0),
        ),
    )


def is_refund_eligible(
    result: FraudDetectionResult,
    actual_outcome: Optional[ActualOutcome] = None,
) -> bool:
    """Confirmed fraud, or a high-score BLOCK."""
    if actual_outcome == ActualOutcome.FRAUD_CONFIRMED:
        return True
    return result.risk_score >= REFUND_SCORE_THRESHOLD and result.decision == Decision.BLOCK


def requires_alert(decision: Decision) -> Optional[AlertSeverity]:
    """Alert severity for a decision, or None when no alert is raised."""
    if decision == Decision.BLOCK:
        return AlertSeverity.CRITICAL
    if decision == Decision.REVIEW:
        return AlertSeverity.WARNING
    return None


class RiskAssessmentService:
    """
    Assessment orchestrator.

    All collaborators are injected so the same service runs on the
    in-memory stores in tests and on Redis in the API.
    """

    def __init__(
        self,
        context_builder: ContextBuilder,
        tracker: CardTestingTrackerService,
        engine: Optional[FraudDetectionEngine] = None,
        rule_evaluator: Optional[CustomRuleEvaluator] = None,
        weights: Optional[CompositeScoreWeights] = None,
    ):
        """
        Initialize assessment service.

        Args:
            context_builder: Builds enriched contexts
            tracker: Card testing tracker service
            engine: Fraud detection engine
            rule_evaluator: Custom rule evaluator (optional)
            weights: Composite weights (default from settings)
        """
        self.context_builder = context_builder
        self.tracker = tracker
        self.engine = engine or FraudDetectionEngine()
        self.rule_evaluator = rule_evaluator
        self.weights = weights

    async def assess(
        self,
        organization_id: str,
        event: ProcessorEvent,
        include_context: bool = False,
    ) -> RiskAssessment:
        """
        Assess one transaction.

        Args:
            organization_id: Owning organization
            event: Raw processor event
            include_context: Attach the built context to the result

        Returns:
            RiskAssessment with the authoritative result and composite

        Raises:
            ContextValidationError: event is missing required fields
            ScoringIncompleteError: a store failed during assessment
        """
        start_time = time.perf_counter()

        try:
            context = await self.context_builder.build(organization_id, event)
            result, source, matched_rule_id = await self._decide(organization_id, context)
            card_testing_score, tracker_id = await self._card_testing_signal(
                organization_id, context
            )
        except (TrackerStorageError, TrustStorageError) as e:
            metrics.assessment_failures.labels(error_type=type(e).__name__).inc()
            logger.error(
                "Assessment incomplete for payment=%s: %s", event.payment_id, e
            )
            raise ScoringIncompleteError(
                f"Unable to assess payment {event.payment_id}: {e}"
            ) from e

        composite = calculate_composite_score(
            result.risk_score,
            result.decision,
            result.confidence,
            card_testing_score=card_testing_score,
            card_testing_tracker_id=tracker_id,
            weights=self.weights,
        )

        total_time = (time.perf_counter() - start_time) * 1000

        metrics.assessments_total.labels(decision=result.decision.value).inc()
        metrics.decision_source_total.labels(source=source.value).inc()
        metrics.risk_score_distribution.observe(result.risk_score)
        metrics.assessment_latency.observe(total_time)

        logger.info(
            "Assessed payment=%s decision=%s score=%d source=%s composite=%d",
            context.payment_id, result.decision.value, result.risk_score,
            source.value, composite.total_score,
        )

        return RiskAssessment(
            result=result,
            composite=composite,
            source=source,
            matched_rule_id=matched_rule_id,
            card_testing_tracker_id=tracker_id,
            context=context if include_context else None,
            processing_time_ms=round(total_time, 2),
        )

    async def _decide(
        self,
        organization_id: str,
        context: TransactionContext,
    ) -> tuple[FraudDetectionResult, DecisionSource, Optional[str]]:
        """Blacklist, then custom rules, then the engine."""
        # =======================================================================
        # Step 1: Blacklisted customer
        # =======================================================================
        if context.customer and context.customer.is_blacklisted:
            return self.engine.detect(context), DecisionSource.BLACKLIST, None

        # =======================================================================
        # Step 2: Custom rules
        # =======================================================================
        if self.rule_evaluator is not None:
            rule_result = await self.rule_evaluator.evaluate(context, organization_id)
            if rule_result.decision is not None:
                return (
                    result_from_rule(rule_result),
                    DecisionSource.CUSTOM_RULE,
                    rule_result.matched_rule.id if rule_result.matched_rule else None,
                )

        # =======================================================================
        # Step 3: Fraud detection engine
        # =======================================================================
        return self.engine.detect(context), DecisionSource.ENGINE, None

    async def _card_testing_signal(
        self,
        organization_id: str,
        context: TransactionContext,
    ) -> tuple[int, Optional[str]]:
        if not context.invoice_id:
            return 0, None
        summary = await self.tracker.get_session_summary(
            organization_id, context.invoice_id, context.session_id
        )
        if summary is None:
            return 0, None
        return summary.suspicion_score, summary.tracker_id
