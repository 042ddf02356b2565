"""
Error Types

Exceptions raised by the decisioning core. Callers at the collaborator
layer should treat any RiskGuardError as "unable to assess this
transaction" and route the payment to manual review.
"""


class RiskGuardError(Exception):
    """Base class for all decisioning core errors."""
    pass


class ContextValidationError(RiskGuardError):
    """Raised when a transaction context is missing required fields."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid transaction context: " + "; ".join(errors))


class AttemptValidationError(RiskGuardError):
    """Raised when a payment attempt cannot be recorded."""
    pass


class TrackerStorageError(RiskGuardError):
    """
    Raised when a tracker read or write fails.

    retryable is True for timeouts, connection failures and exhausted
    optimistic-write retries.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class TrustStorageError(RiskGuardError):
    """Raised when a customer trust record read or write fails."""
    pass


class ScoringIncompleteError(RiskGuardError):
    """Raised when an assessment could not complete; never means 'no risk'."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class RuleEvaluationError(RiskGuardError):
    """Raised while evaluating a single custom rule (caught per rule)."""
    pass
