"""
Assessment Pipeline Tests

Tests for decision precedence, the composite summary and failure
handling of the end-to-end assessment.
"""

from datetime import datetime, UTC

import pytest

from riskguard.errors import (
    ContextValidationError,
    ScoringIncompleteError,
    TrackerStorageError,
    TrustStorageError,
)
from riskguard.features import ContextBuilder
from riskguard.pipeline import (
    RiskAssessmentService,
    is_refund_eligible,
    requires_alert,
    result_from_rule,
)
from riskguard.policy import CustomRuleEvaluator, InMemoryRuleStore
from riskguard.schemas import (
    ActualOutcome,
    AlertSeverity,
    AttemptStatus,
    CompositeScoreWeights,
    Confidence,
    CustomerMetrics,
    CustomRuleResult,
    Decision,
    DecisionSource,
    FraudDetectionResult,
    FraudDetectionRule,
    FraudFactor,
    RuleCondition,
)
from riskguard.customers import CustomerScoringService
from riskguard.tracking import CardTestingTrackerService

ORG = "org_test"


class FailingTrackerStore:
    """Tracker store whose every call fails."""

    async def get(self, organization_id, invoice_id, session_id=None):
        raise TrackerStorageError("redis timeout")

    async def update(self, organization_id, invoice_id, session_id, mutate):
        raise TrackerStorageError("redis timeout")

    async def list_by_organization(self, organization_id):
        raise TrackerStorageError("redis timeout")


class FailingCustomerStore:
    """Customer store whose every call fails."""

    async def get(self, organization_id, customer_id):
        raise TrustStorageError("redis timeout")

    async def update(self, organization_id, customer_id, mutate):
        raise TrustStorageError("redis timeout")

    async def list_by_organization(self, organization_id):
        raise TrustStorageError("redis timeout")


def review_rule(**kwargs) -> FraudDetectionRule:
    return FraudDetectionRule(
        id=kwargs.pop("id", "rule_review_large"),
        organization_id=ORG,
        name="Review large orders",
        action=kwargs.pop("action", "review"),
        priority=kwargs.pop("priority", 5),
        condition=RuleCondition(field="amount", operator="greater_than", value=1000),
        **kwargs,
    )


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def assessment_service(customer_service, tracker_service, engine, rule_store) -> RiskAssessmentService:
    return RiskAssessmentService(
        context_builder=ContextBuilder(customers=customer_service, velocity=tracker_service),
        tracker=tracker_service,
        engine=engine,
        rule_evaluator=CustomRuleEvaluator(rule_store),
        weights=CompositeScoreWeights(),
    )


class TestDecisionPrecedence:
    """Tests for blacklist, custom rule and engine ordering."""

    @pytest.mark.asyncio
    async def test_engine_decides_by_default(self, assessment_service, sample_event):
        assessment = await assessment_service.assess(ORG, sample_event)

        # Unknown customer only
        assert assessment.source == DecisionSource.ENGINE
        assert assessment.decision == Decision.ALLOW
        assert assessment.result.risk_score == 10
        assert assessment.action_taken == "none"
        assert assessment.composite.total_score == 10
        assert assessment.card_testing_tracker_id is None
        assert assessment.context is None

    @pytest.mark.asyncio
    async def test_custom_rule_decides_before_engine(self, assessment_service, rule_store, sample_event):
        rule_store.add_rule(review_rule())

        assessment = await assessment_service.assess(ORG, sample_event)

        assert assessment.source == DecisionSource.CUSTOM_RULE
        assert assessment.matched_rule_id == "rule_review_large"
        assert assessment.decision == Decision.REVIEW
        assert assessment.result.confidence == Confidence.HIGH
        assert assessment.result.risk_score == 20
        assert assessment.result.factors[0].type == "custom_rule"
        assert assessment.action_taken == "flagged"

    @pytest.mark.asyncio
    async def test_blacklist_beats_custom_allow(
        self, assessment_service, rule_store, customer_service, sample_event
    ):
        await customer_service.update_customer_score(ORG, "cus_123", CustomerMetrics())
        await customer_service.blacklist_customer(ORG, "cus_123", blacklisted_by="ops")
        rule_store.add_rule(review_rule(id="rule_allow_all", action="allow", priority=0))

        assessment = await assessment_service.assess(ORG, sample_event)

        assert assessment.source == DecisionSource.BLACKLIST
        assert assessment.decision == Decision.BLOCK
        assert assessment.result.risk_score == 100
        assert assessment.action_taken == "blocked"

    @pytest.mark.asyncio
    async def test_other_organization_rules_do_not_apply(self, assessment_service, rule_store, sample_event):
        rule_store.add_rule(review_rule())

        assessment = await assessment_service.assess("org_other", sample_event)

        assert assessment.source == DecisionSource.ENGINE


class TestCardTestingSignal:
    """Tests for the session's card testing signal in the assessment."""

    @pytest.mark.asyncio
    async def test_burst_on_same_session(self, assessment_service, tracker_service, sample_event, make_attempt):
        now = datetime.now(UTC)
        for i in range(5):
            await tracker_service.record_attempt(
                ORG, "inv_001",
                make_attempt(f"fp_{i}", AttemptStatus.FAILED, i * 20, base=now),
                session_id="cs_001",
            )

        assessment = await assessment_service.assess(ORG, sample_event, include_context=True)

        assert assessment.decision == Decision.BLOCK
        assert assessment.result.risk_score == 100
        assert assessment.composite.breakdown.card_testing_score == 100
        assert assessment.composite.total_score == 100
        assert assessment.card_testing_tracker_id is not None
        assert assessment.context.velocity.unique_cards_used == 5

    @pytest.mark.asyncio
    async def test_other_session_does_not_count(self, assessment_service, tracker_service, sample_event, make_attempt):
        for i in range(5):
            await tracker_service.record_attempt(
                ORG, "inv_001", make_attempt(f"fp_{i}", AttemptStatus.FAILED, i * 20), session_id="cs_other"
            )

        assessment = await assessment_service.assess(ORG, sample_event)

        assert assessment.decision == Decision.ALLOW
        assert assessment.composite.breakdown.card_testing_score == 0


class TestAssessmentFailures:
    """Tests for storage and validation failures."""

    @pytest.mark.asyncio
    async def test_tracker_failure_is_incomplete(self, customer_service, sample_event):
        tracker = CardTestingTrackerService(FailingTrackerStore())
        service = RiskAssessmentService(
            context_builder=ContextBuilder(customers=customer_service, velocity=tracker),
            tracker=tracker,
        )

        with pytest.raises(ScoringIncompleteError) as exc:
            await service.assess(ORG, sample_event)

        assert exc.value.retryable
        assert isinstance(exc.value.__cause__, TrackerStorageError)

    @pytest.mark.asyncio
    async def test_customer_failure_is_incomplete(self, tracker_service, sample_event):
        customers = CustomerScoringService(FailingCustomerStore())
        service = RiskAssessmentService(
            context_builder=ContextBuilder(customers=customers, velocity=tracker_service),
            tracker=tracker_service,
        )

        with pytest.raises(ScoringIncompleteError):
            await service.assess(ORG, sample_event)

    @pytest.mark.asyncio
    async def test_invalid_event_propagates(self, assessment_service, sample_event):
        event = sample_event.model_copy(update={"amount": None})

        with pytest.raises(ContextValidationError):
            await assessment_service.assess(ORG, event)


class TestDownstreamHelpers:
    """Tests for refund eligibility, alerts and rule results."""

    def make_result(self, decision, score) -> FraudDetectionResult:
        return FraudDetectionResult(decision=decision, risk_score=score, confidence=Confidence.HIGH)

    @pytest.mark.parametrize(
        "decision,score,outcome,eligible",
        [
            (Decision.BLOCK, 80, None, True),
            (Decision.BLOCK, 79, None, False),
            (Decision.REVIEW, 90, None, False),
            (Decision.ALLOW, 5, ActualOutcome.FRAUD_CONFIRMED, True),
            (Decision.ALLOW, 5, ActualOutcome.FRAUD_SUSPECTED, False),
        ],
    )
    def test_refund_eligibility(self, decision, score, outcome, eligible):
        assert is_refund_eligible(self.make_result(decision, score), outcome) is eligible

    @pytest.mark.parametrize(
        "decision,severity",
        [
            (Decision.BLOCK, AlertSeverity.CRITICAL),
            (Decision.REVIEW, AlertSeverity.WARNING),
            (Decision.ALLOW, None),
        ],
    )
    def test_requires_alert(self, decision, severity):
        assert requires_alert(decision) == severity

    def test_rule_result_score_is_clamped(self):
        rule_result = CustomRuleResult(
            decision=Decision.ALLOW,
            factors=[FraudFactor(type="custom_rule", weight=-20, description="Custom Rule: Staff - allow")],
        )

        result = result_from_rule(rule_result)

        assert result.risk_score == 0
        assert result.adjustments.positive == 20
        assert result.recommended_action is None
