"""
Composite Risk Score Schemas

The composite score is a display-level merge of the fraud engine score
and the card testing suspicion score. It carries the authoritative
decision through unchanged; it never re-derives one.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .decisions import Confidence, Decision


class CompositeRiskLevel(str, Enum):
    """Discrete composite risk levels."""
    MINIMAL = "minimal"
    LOW = "low"
    MODERATE = "moderate"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"


class RiskSource(str, Enum):
    """Which input dominates the composite score."""
    GENERAL = "general"
    CARD_TESTING = "card_testing"
    BOTH = "both"
    NONE = "none"


class CompositeScoreWeights(BaseModel):
    """Weights for the two inputs; must sum to 1.0."""
    risk_score: float = Field(default=0.6, ge=0.0, le=1.0)
    card_testing_score: float = Field(default=0.4, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "CompositeScoreWeights":
        total = self.risk_score + self.card_testing_score
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Composite weights must sum to 1.0 (got {total:.3f})")
        return self


class CompositeScoreBreakdown(BaseModel):
    """Both input scores and their weighted contributions."""
    risk_score: int = Field(..., ge=0, le=100)
    card_testing_score: int = Field(..., ge=0, le=100)
    risk_score_contribution: int = 0
    card_testing_contribution: int = 0
    has_card_testing_data: bool = False
    card_testing_tracker_id: Optional[str] = None


class CompositeSummary(BaseModel):
    """Human-readable summary for display."""
    label: str
    description: str
    primary_risk_source: RiskSource


class CompositeRiskScore(BaseModel):
    """Complete composite risk score."""
    total_score: int = Field(..., ge=0, le=100)
    risk_level: CompositeRiskLevel
    breakdown: CompositeScoreBreakdown
    decision: Decision = Field(
        ...,
        description="Authoritative decision, passed through unchanged",
    )
    confidence: Confidence
    summary: CompositeSummary


class ScoredDetection(BaseModel):
    """One stored detection, as fed to the batch helpers."""
    id: str
    risk_score: int = Field(..., ge=0, le=100)
    decision: Decision
    confidence: Confidence
    card_testing_suspicion_score: int = Field(default=0, ge=0, le=100)
    card_testing_tracker_id: Optional[str] = None
