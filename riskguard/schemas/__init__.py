# Data schemas for the riskguard core
from .events import ProcessorEvent, CardDetails, DeviceInfo, GeoInfo
from .context import (
    CustomerTier,
    CustomerContext,
    VelocityMetrics,
    TransactionContext,
)
from .decisions import (
    Decision,
    Confidence,
    Severity,
    FactorCategory,
    FraudFactor,
    ScoreAdjustments,
    FraudDetectionResult,
    FactorTypes,
)
from .trust import (
    CustomerMetrics,
    TrustFactor,
    TrustScoreBreakdown,
    TrustScoreResult,
    ChargeSummary,
    CustomerTrustRecord,
)
from .tracker import (
    AttemptStatus,
    Resolution,
    CardTestingAttempt,
    SuspicionReason,
    CardTestingTracker,
    TrackAttemptResult,
    SessionBlockStatus,
    SessionSummary,
    CardTestingMetrics,
    CardTestingAnalysis,
    CardTestingStats,
    CardTestingCheck,
)
from .rules import (
    RuleAction,
    ConditionOperator,
    LogicalOperator,
    RuleCondition,
    FraudDetectionRule,
    CustomRuleResult,
)
from .composite import (
    CompositeRiskLevel,
    RiskSource,
    CompositeScoreWeights,
    CompositeScoreBreakdown,
    CompositeSummary,
    CompositeRiskScore,
    ScoredDetection,
)
from .assessment import (
    DecisionSource,
    ActualOutcome,
    AlertSeverity,
    RiskAssessment,
    AssessRequest,
    CustomerListRequest,
    CustomerScoreRequest,
    UnblockRequest,
    AssessmentFailure,
)

__all__ = [
    # Events
    "ProcessorEvent",
    "CardDetails",
    "DeviceInfo",
    "GeoInfo",
    # Context
    "CustomerTier",
    "CustomerContext",
    "VelocityMetrics",
    "TransactionContext",
    # Decisions
    "Decision",
    "Confidence",
    "Severity",
    "FactorCategory",
    "FraudFactor",
    "ScoreAdjustments",
    "FraudDetectionResult",
    "FactorTypes",
    # Trust
    "CustomerMetrics",
    "TrustFactor",
    "TrustScoreBreakdown",
    "TrustScoreResult",
    "ChargeSummary",
    "CustomerTrustRecord",
    # Tracker
    "AttemptStatus",
    "Resolution",
    "CardTestingAttempt",
    "SuspicionReason",
    "CardTestingTracker",
    "TrackAttemptResult",
    "SessionBlockStatus",
    "SessionSummary",
    "CardTestingMetrics",
    "CardTestingAnalysis",
    "CardTestingStats",
    "CardTestingCheck",
    # Rules
    "RuleAction",
    "ConditionOperator",
    "LogicalOperator",
    "RuleCondition",
    "FraudDetectionRule",
    "CustomRuleResult",
    # Composite
    "CompositeRiskLevel",
    "RiskSource",
    "CompositeScoreWeights",
    "CompositeScoreBreakdown",
    "CompositeSummary",
    "CompositeRiskScore",
    "ScoredDetection",
    # Assessment
    "DecisionSource",
    "ActualOutcome",
    "AlertSeverity",
    "RiskAssessment",
    "AssessRequest",
    "CustomerListRequest",
    "CustomerScoreRequest",
    "UnblockRequest",
    "AssessmentFailure",
]
