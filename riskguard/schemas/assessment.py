"""
Assessment Schemas

What the assessment pipeline hands to downstream collaborators:
the authoritative result, the composite summary, and which component
produced the decision.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .composite import CompositeRiskScore
from .context import TransactionContext
from .decisions import Decision, FraudDetectionResult
from .events import ProcessorEvent
from .trust import ChargeSummary


class DecisionSource(str, Enum):
    """Component that produced the authoritative decision."""
    BLACKLIST = "blacklist"
    CUSTOM_RULE = "custom_rule"
    ENGINE = "engine"


class ActualOutcome(str, Enum):
    """What eventually happened to an assessed payment."""
    LEGITIMATE = "legitimate"
    PAYMENT_FAILED = "payment_failed"
    FRAUD_CONFIRMED = "fraud_confirmed"
    FRAUD_SUSPECTED = "fraud_suspected"
    REFUNDED = "refunded"


class AlertSeverity(str, Enum):
    """Severity of the operator alert raised for a decision."""
    CRITICAL = "critical"
    WARNING = "warning"


class RiskAssessment(BaseModel):
    """
    Final output for one assessed transaction.

    Ephemeral: persisted by a collaborator, never by the core.
    """
    result: FraudDetectionResult = Field(
        ...,
        description="Authoritative decision, score and factors",
    )
    composite: CompositeRiskScore = Field(
        ...,
        description="Display-level merge of fraud and card testing scores",
    )
    source: DecisionSource = Field(
        ...,
        description="Component that decided",
    )
    matched_rule_id: Optional[str] = Field(
        default=None,
        description="Custom rule that decided, when source is custom_rule",
    )
    card_testing_tracker_id: Optional[str] = None
    context: Optional[TransactionContext] = Field(
        default=None,
        description="Context the decision was made on",
    )
    processing_time_ms: float = Field(
        default=0.0,
        description="End-to-end processing time",
    )

    @property
    def decision(self) -> Decision:
        return self.result.decision

    @property
    def action_taken(self) -> str:
        """blocked / flagged / none, as recorded with the detection."""
        if self.result.decision == Decision.BLOCK:
            return "blocked"
        if self.result.decision == Decision.REVIEW:
            return "flagged"
        return "none"


# =============================================================================
# API request/response bodies
# =============================================================================

class AssessRequest(BaseModel):
    """Body of POST /assess."""
    organization_id: str = Field(
        ...,
        min_length=1,
        description="Organization the payment belongs to",
    )
    event: ProcessorEvent = Field(
        ...,
        description="Raw processor event",
    )
    include_context: bool = Field(
        default=False,
        description="Return the built context with the assessment",
    )


class UnblockRequest(BaseModel):
    """Body of POST /trackers/{org}/{invoice}/unblock."""
    actor: str = Field(
        ...,
        min_length=1,
        description="Operator performing the unblock",
    )
    session_id: Optional[str] = None


class CustomerScoreRequest(BaseModel):
    """Body of POST /customers/{org}/{customer}/score."""
    charges: list[ChargeSummary] = Field(
        default_factory=list,
        description="Customer's historical charges",
    )
    customer_created_at: Optional[datetime] = None
    dispute_count: Optional[int] = Field(default=None, ge=0)
    unique_payment_methods: Optional[int] = Field(default=None, ge=0)
    has_active_subscription: bool = False
    email: Optional[str] = None
    name: Optional[str] = None


class CustomerListRequest(BaseModel):
    """Body of the customer whitelist and blacklist routes."""
    actor: str = Field(
        ...,
        min_length=1,
        description="Operator changing the list",
    )
    reason: Optional[str] = None


class AssessmentFailure(BaseModel):
    """Body returned when an assessment cannot complete."""
    detail: str = "unable to assess this transaction"
    fallback_decision: Decision = Decision.REVIEW
    retryable: bool = True
