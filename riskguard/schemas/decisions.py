"""
Decision Schemas

Defines the decision types and result structures produced by the
fraud detection engine. Decisions follow a hierarchy:
ALLOW < REVIEW < BLOCK
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Decision(str, Enum):
    """
    Fraud decision outcomes.

    Ordered by severity (ALLOW is least severe, BLOCK is most severe):
    - ALLOW: Proceed with transaction
    - REVIEW: Hold for manual analyst review
    - BLOCK: Decline transaction
    """
    ALLOW = "ALLOW"
    REVIEW = "REVIEW"
    BLOCK = "BLOCK"


class Confidence(str, Enum):
    """Confidence level in a decision."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    """Severity level of a single factor or reason."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FactorCategory(str, Enum):
    """Broad grouping of factors for display."""
    LOCATION = "location"
    VELOCITY = "velocity"
    CUSTOMER = "customer"
    CARD = "card"
    AMOUNT = "amount"
    BEHAVIOR = "behavior"
    DEVICE = "device"


class FraudFactor(BaseModel):
    """
    One named, weighted contributor to a risk score.

    Positive weights add risk; negative weights reduce it.
    """
    type: str = Field(
        ...,
        description="Machine-readable factor type (see FactorTypes)",
    )
    weight: int = Field(
        ...,
        description="Signed points added to or removed from the risk score",
    )
    description: str = Field(
        ...,
        description="Human-readable explanation",
    )
    severity: Severity = Field(
        default=Severity.MEDIUM,
        description="Severity of the factor",
    )
    category: Optional[FactorCategory] = Field(
        default=None,
        description="Factor category",
    )


class ScoreAdjustments(BaseModel):
    """Magnitudes of risk-reducing and risk-adding contributions."""
    positive: int = Field(
        default=0,
        ge=0,
        description="Sum of |weight| over risk-reducing factors",
    )
    negative: int = Field(
        default=0,
        ge=0,
        description="Sum of weight over risk-adding factors",
    )


class FraudDetectionResult(BaseModel):
    """
    Output of the fraud detection engine for one transaction.

    Ephemeral: produced per call and persisted by a collaborator.
    """
    decision: Decision = Field(
        ...,
        description="Fraud decision",
    )
    risk_score: int = Field(
        ...,
        ge=0,
        le=100,
        description="Overall fraud risk score",
    )
    confidence: Confidence = Field(
        ...,
        description="Confidence in the decision",
    )
    factors: list[FraudFactor] = Field(
        default_factory=list,
        description="Contributing factors sorted by descending |weight|",
    )
    recommended_action: Optional[str] = Field(
        default=None,
        description="Recommended action text for operators",
    )
    base_score: int = Field(
        default=0,
        description="Score the heuristics started from",
    )
    adjustments: ScoreAdjustments = Field(
        default_factory=ScoreAdjustments,
        description="Positive vs. negative weight breakdown",
    )


# =============================================================================
# Factor Types (Constants)
# =============================================================================

class FactorTypes:
    """
    Standard factor types for fraud decisions.

    Risk-adding types come first, risk-reducing types after.
    """
    # Risk-adding
    GEOGRAPHIC_MISMATCH = "geographic_mismatch"
    VELOCITY_ABUSE = "velocity_abuse"
    VELOCITY_ELEVATED = "velocity_elevated"
    CARD_TESTING = "card_testing"
    CARD_TESTING_CRITICAL = "card_testing_critical"
    MULTIPLE_CARDS = "multiple_cards"
    RAPID_ATTEMPTS = "rapid_attempts"
    NEW_ACCOUNT_HIGH_AMOUNT = "new_account_high_amount"
    UNUSUAL_AMOUNT = "unusual_amount"
    UNKNOWN_CUSTOMER = "unknown_customer"
    DISPUTE_HISTORY = "dispute_history"
    HIGH_AMOUNT = "high_amount"
    VERY_HIGH_AMOUNT = "very_high_amount"
    SMALL_AMOUNT_PATTERN = "small_amount_pattern"
    PREPAID_CARD = "prepaid_card"
    UNUSUAL_TIME = "unusual_time"
    BLACKLISTED_CUSTOMER = "blacklisted_customer"
    BLOCKED_TIER_CUSTOMER = "blocked_tier_customer"
    SUSPICIOUS_CUSTOMER = "suspicious_customer"
    CUSTOM_RULE = "custom_rule"

    # Risk-reducing
    WHITELISTED_CUSTOMER = "whitelisted_customer"
    VIP_CUSTOMER = "vip_customer"
    TRUSTED_CUSTOMER = "trusted_customer"
    LOYAL_CUSTOMER = "loyal_customer"
    NORMAL_AMOUNT = "normal_amount"
    ACTIVE_SUBSCRIPTION = "active_subscription"
