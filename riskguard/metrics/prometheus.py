"""
Prometheus Metrics

Defines all metrics exposed by the risk decisioning core.
Metrics are critical for:
- Business metrics (allow/review/block mix, card testing volume)
- Operational health (storage errors, write conflicts)
- Latency of the assessment pipeline
"""

import logging

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger("riskguard.metrics")

SCORE_BUCKETS = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]


class RiskMetrics:
    """
    Container for all Prometheus metrics.

    Organized by category:
    - Assessment metrics
    - Custom rule metrics
    - Tracker metrics
    - Scoring metrics
    - System metrics
    """

    def __init__(self):
        """Initialize all metrics."""

        # =====================================================================
        # Assessment Metrics
        # =====================================================================
        self.assessments_total = Counter(
            "riskguard_assessments_total",
            "Total number of assessments by decision",
            labelnames=["decision"],
        )

        self.decision_source_total = Counter(
            "riskguard_decision_source_total",
            "Which component produced the authoritative decision",
            labelnames=["source"],
        )

        self.assessment_latency = Histogram(
            "riskguard_assessment_latency_ms",
            "End-to-end assessment latency in milliseconds",
            buckets=[1, 5, 10, 25, 50, 100, 200, 500, 1000],
        )

        self.assessment_failures = Counter(
            "riskguard_assessment_failures_total",
            "Assessments that could not complete",
            labelnames=["error_type"],
        )

        # =====================================================================
        # Custom Rule Metrics
        # =====================================================================
        self.rule_matches = Counter(
            "riskguard_rule_matches_total",
            "Custom rule matches by action",
            labelnames=["action"],
        )

        self.rule_errors = Counter(
            "riskguard_rule_errors_total",
            "Custom rules skipped because evaluation raised",
        )

        # =====================================================================
        # Tracker Metrics
        # =====================================================================
        self.tracker_attempts = Counter(
            "riskguard_tracker_attempts_total",
            "Payment attempts recorded by status",
            labelnames=["status"],
        )

        self.tracker_conflicts = Counter(
            "riskguard_tracker_write_conflicts_total",
            "Optimistic tracker writes retried after a concurrent update",
        )

        self.sessions_blocked = Counter(
            "riskguard_sessions_blocked_total",
            "Sessions blocked for card testing",
        )

        # =====================================================================
        # Scoring Metrics
        # =====================================================================
        self.risk_score_distribution = Histogram(
            "riskguard_risk_score",
            "Distribution of fraud engine risk scores",
            buckets=SCORE_BUCKETS,
        )

        self.suspicion_score_distribution = Histogram(
            "riskguard_suspicion_score",
            "Distribution of card testing suspicion scores",
            buckets=SCORE_BUCKETS,
        )

        # =====================================================================
        # System Metrics
        # =====================================================================
        self.storage_errors = Counter(
            "riskguard_storage_errors_total",
            "Storage failures by store",
            labelnames=["store"],
        )

        # Component health
        self.component_health = Gauge(
            "riskguard_component_health",
            "Component health status (1=healthy, 0=unhealthy)",
            labelnames=["component"],
        )


# Global metrics instance
metrics = RiskMetrics()


def render_latest() -> tuple[bytes, str]:
    """
    Render the default registry in the Prometheus text format.

    Returns:
        Tuple of (body, content_type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
