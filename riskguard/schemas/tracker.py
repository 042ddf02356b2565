"""
Card Testing Tracker Schemas

A tracker accumulates every payment attempt made against one invoice
(optionally scoped to one checkout session) so that several different
cards tried on the same checkout can be correlated.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .decisions import Decision, Severity


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class AttemptStatus(str, Enum):
    """Outcome of one payment attempt."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


class Resolution(str, Enum):
    """How an operator closed a tracker."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    EXPIRED = "expired"


class CardTestingAttempt(BaseModel):
    """One payment attempt recorded against a tracker."""
    card_fingerprint: str = Field(
        ...,
        min_length=1,
        description="Stable card identifier",
    )
    status: AttemptStatus = Field(
        ...,
        description="Attempt outcome",
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
        description="When the attempt happened",
    )
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    amount: Optional[int] = Field(
        default=None,
        ge=0,
        description="Amount in minor currency units",
    )
    currency: Optional[str] = None
    ip_address: Optional[str] = None
    payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC and convert aware ones to UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


class SuspicionReason(BaseModel):
    """One contribution to a suspicion score."""
    label: str
    description: str
    weight: int = Field(..., description="Points added to the suspicion score")
    severity: Severity = Severity.MEDIUM


class CardTestingTracker(BaseModel):
    """
    Persisted tracker state for one (organization, invoice, session) key.

    Derived fields are always recomputed from the full attempt list.
    version increments on every write and drives optimistic concurrency.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    invoice_id: str
    session_id: Optional[str] = None

    attempts: list[CardTestingAttempt] = Field(default_factory=list)

    # Computed metrics
    unique_cards: int = 0
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    blocked_attempts: int = 0
    unique_ips: int = 0
    primary_ip: Optional[str] = None
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    attempt_duration_seconds: int = 0

    # Suspicion
    suspicion_score: int = Field(default=0, ge=0, le=100)
    suspicion_reasons: list[SuspicionReason] = Field(default_factory=list)
    recommendation: Decision = Decision.ALLOW

    # Status
    blocked: bool = False
    blocked_at: Optional[datetime] = None
    blocked_reason: Optional[str] = None

    # Resolution
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[Resolution] = None

    # Manual action
    action_taken: bool = False
    action_type: Optional[str] = None
    unblocked_by: Optional[str] = None
    unblocked_at: Optional[datetime] = None

    version: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class TrackAttemptResult(BaseModel):
    """Returned by record_attempt."""
    tracker_id: str
    suspicion_score: int
    reasons: list[SuspicionReason] = Field(default_factory=list)
    recommendation: Decision
    blocked: bool
    unique_cards: int = 0
    total_attempts: int = 0


class SessionBlockStatus(BaseModel):
    """Returned by should_block_session."""
    blocked: bool
    reason: Optional[str] = None


class SessionSummary(BaseModel):
    """Read-only projection of a tracker for display collaborators."""
    tracker_id: str
    unique_cards: int
    total_attempts: int
    failed_attempts: int
    suspicion_score: int
    recommendation: Decision
    reasons: list[SuspicionReason] = Field(default_factory=list)
    blocked: bool
    resolved: bool
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None


class CardTestingMetrics(BaseModel):
    """Aggregate counts over an attempt list."""
    unique_cards: int = 0
    total_attempts: int = 0
    failure_rate: float = 0.0
    timespan_seconds: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0


class CardTestingAnalysis(BaseModel):
    """Full card testing assessment of a tracker."""
    suspicion_score: int = 0
    is_card_testing: bool = False
    should_block: bool = False
    reasons: list[SuspicionReason] = Field(default_factory=list)
    metrics: CardTestingMetrics = Field(default_factory=CardTestingMetrics)
    recommendation: Decision = Decision.ALLOW


class CardTestingStats(BaseModel):
    """Organization-wide tracker counts for dashboards."""
    total_blocked: int = 0
    total_suspicious: int = 0
    total_sessions: int = 0
    last_24h_blocked: int = 0


class CardTestingCheck(BaseModel):
    """Quick pre-check of a candidate attempt against a session's history."""
    is_likely_card_testing: bool = False
    confidence: int = Field(default=0, ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)
