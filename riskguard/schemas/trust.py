"""
Customer Trust Schemas

Metrics consumed by the trust score calculator, its result, and the
persisted per-customer trust record.
"""

from datetime import datetime, UTC
from typing import Optional

from pydantic import BaseModel, Field

from .context import CustomerTier


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class CustomerMetrics(BaseModel):
    """
    Historical metrics for one customer.

    Spend is in major currency units.
    """
    # History
    account_age_days: float = Field(default=0, ge=0, description="Days since first purchase")
    total_purchases: int = Field(default=0, ge=0, description="Successful payments")
    total_spent: float = Field(default=0.0, ge=0, description="Total spend")
    avg_purchase_amount: float = Field(default=0.0, ge=0, description="Average per purchase")

    # Recency
    last_purchase_at: Optional[datetime] = None
    days_since_last_purchase: Optional[int] = None

    # Problems
    dispute_count: int = Field(default=0, ge=0, description="Disputes/chargebacks")
    refund_count: int = Field(default=0, ge=0, description="Refunds")
    failed_payment_count: int = Field(default=0, ge=0, description="Failed payments")

    # Behavior
    unique_payment_methods: int = Field(default=0, ge=0, description="Distinct cards used")
    has_active_subscription: bool = False
    purchase_frequency: float = Field(default=0.0, ge=0, description="Purchases per month")

    # Consistency
    device_consistency: float = Field(default=0, ge=0, le=100)
    location_consistency: float = Field(default=0, ge=0, le=100)


class TrustFactor(BaseModel):
    """One signed contribution to a trust score."""
    type: str
    impact: int = Field(..., description="Positive = trust, negative = risk")
    description: str
    category: str = Field(..., description="positive, negative or neutral")


class TrustScoreBreakdown(BaseModel):
    """Baseline and the positive/negative point totals."""
    base_score: int = 50
    positive_points: int = 0
    negative_points: int = 0


class TrustScoreResult(BaseModel):
    """Output of the trust score calculator."""
    score: int = Field(..., ge=0, le=100)
    tier: CustomerTier
    factors: list[TrustFactor] = Field(default_factory=list)
    should_whitelist: bool = False
    should_blacklist: bool = False
    breakdown: TrustScoreBreakdown = Field(default_factory=TrustScoreBreakdown)


class ChargeSummary(BaseModel):
    """
    One historical charge for a customer, as returned by the processor
    client. Used to derive CustomerMetrics.
    """
    amount: int = Field(..., ge=0, description="Minor currency units")
    created_at: datetime
    paid: bool = True
    refunded: bool = False
    disputed: bool = False
    card_country: Optional[str] = None


class CustomerTrustRecord(BaseModel):
    """
    Persisted reputation for one (organization, customer) pair.

    Recalculated and upserted after every attributable transaction.
    The previous score and tier are kept to detect tier transitions.
    """
    organization_id: str
    customer_id: str
    email: Optional[str] = None
    name: Optional[str] = None

    metrics: CustomerMetrics = Field(default_factory=CustomerMetrics)

    trust_score: int = Field(default=50, ge=0, le=100)
    tier: CustomerTier = CustomerTier.NEW
    previous_trust_score: Optional[int] = None
    trust_score_change: int = 0
    previous_tier: Optional[CustomerTier] = None
    tier_changed_at: Optional[datetime] = None

    # Lists
    whitelisted: bool = False
    blacklisted: bool = False
    manual_override: bool = False
    whitelisted_at: Optional[datetime] = None
    whitelisted_by: Optional[str] = None
    whitelist_reason: Optional[str] = None
    blacklisted_at: Optional[datetime] = None
    blacklisted_by: Optional[str] = None
    blacklist_reason: Optional[str] = None

    # Risk alert
    risk_alert_active: bool = False
    risk_alert_reason: Optional[str] = None
    risk_alert_created_at: Optional[datetime] = None

    score_calculated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def tier_changed(self) -> bool:
        """True when the last recalculation moved the customer to a new tier."""
        return self.previous_tier is not None and self.previous_tier != self.tier
