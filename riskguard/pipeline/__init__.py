# Assessment Pipeline Module
from .service import (
    RiskAssessmentService,
    is_refund_eligible,
    requires_alert,
    result_from_rule,
)

__all__ = [
    "RiskAssessmentService",
    "is_refund_eligible",
    "requires_alert",
    "result_from_rule",
]
