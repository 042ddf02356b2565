"""
Transaction Context Schemas

The transaction context is the immutable, normalized snapshot of one
payment attempt that every scoring component reads. It is built fresh
per request by the context builder and never mutated afterwards.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerTier(str, Enum):
    """
    Customer trust tiers, from least to most trusted.

    Tier boundaries are fixed score breakpoints (see trust scoring).
    """
    BLOCKED = "blocked"
    SUSPICIOUS = "suspicious"
    NEW = "new"
    TRUSTED = "trusted"
    VIP = "vip"


class CustomerContext(BaseModel):
    """
    Customer history and reputation at the time of the transaction.

    Amounts here are in major currency units, matching how trust
    records store spend.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        description="Processor customer identifier",
    )
    email: Optional[str] = None
    name: Optional[str] = None

    # History
    account_age_days: float = Field(
        default=0,
        ge=0,
        description="Days since the customer was created",
    )
    total_purchases: int = Field(
        default=0,
        ge=0,
        description="Successful purchases",
    )
    total_spent: float = Field(
        default=0.0,
        ge=0,
        description="Total spend in major units",
    )
    avg_purchase_amount: float = Field(
        default=0.0,
        ge=0,
        description="Average purchase in major units",
    )
    last_purchase_at: Optional[datetime] = None
    days_since_last_purchase: Optional[int] = None

    # Risk indicators
    dispute_count: int = Field(default=0, ge=0)
    refund_count: int = Field(default=0, ge=0)
    failed_payment_count: int = Field(default=0, ge=0)
    chargeback_count: int = Field(default=0, ge=0)

    # Behavior
    purchase_frequency: float = Field(
        default=0.0,
        ge=0,
        description="Purchases per month",
    )
    has_active_subscription: bool = False
    unique_payment_methods: int = Field(default=0, ge=0)

    # Reputation
    trust_score: Optional[int] = Field(
        default=None,
        ge=0,
        le=100,
        description="Stored trust score",
    )
    tier: Optional[CustomerTier] = None
    is_whitelisted: bool = False
    is_blacklisted: bool = False

    # Consistency
    device_consistency: Optional[int] = Field(default=None, ge=0, le=100)
    location_consistency: Optional[int] = Field(default=None, ge=0, le=100)


class VelocityMetrics(BaseModel):
    """Velocity metrics read from the card testing tracker for a session."""
    model_config = ConfigDict(frozen=True)

    attempts_last_hour: int = Field(default=0, ge=0)
    attempts_last_day: int = Field(default=0, ge=0)
    unique_cards_used: int = Field(default=0, ge=0)
    unique_ips: int = Field(default=0, ge=0)
    rapid_attempts: bool = Field(
        default=False,
        description="Two attempts closer together than the rapid window",
    )
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    failed_attempts: int = Field(default=0, ge=0)
    suspicion_score: int = Field(default=0, ge=0, le=100)


class TransactionContext(BaseModel):
    """
    Normalized snapshot of one payment attempt used as scoring input.

    Frozen: any enrichment produces a new instance via model_copy().
    """
    model_config = ConfigDict(frozen=True)

    # Transaction basics
    payment_id: str = Field(
        ...,
        min_length=1,
        description="Processor payment identifier",
    )
    amount: int = Field(
        ...,
        gt=0,
        description="Amount in minor currency units",
    )
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code",
    )
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    description: Optional[str] = None

    # Processor references
    charge_id: Optional[str] = None
    processor_customer_id: Optional[str] = None

    # Card
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    card_country: Optional[str] = None
    card_fingerprint: Optional[str] = None
    card_funding: Optional[str] = None
    card_exp_month: Optional[int] = None
    card_exp_year: Optional[int] = None

    # Location
    ip_address: Optional[str] = None
    ip_country: Optional[str] = None
    ip_region: Optional[str] = None
    ip_city: Optional[str] = None

    # Device
    device_fingerprint: Optional[str] = None
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None

    # Timing
    timestamp: datetime = Field(
        ...,
        description="When the attempt happened",
    )
    hour_of_day: Optional[int] = Field(default=None, ge=0, le=23)
    day_of_week: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="0 = Sunday",
    )

    # Enrichment
    customer: Optional[CustomerContext] = None
    velocity: Optional[VelocityMetrics] = None

    # Session
    invoice_id: Optional[str] = None
    session_id: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
