# Customer Reputation Module
from .store import CustomerTrustStore, InMemoryCustomerStore, RedisCustomerStore
from .scoring import CustomerScoringService, derive_customer_metrics

__all__ = [
    "CustomerTrustStore",
    "InMemoryCustomerStore",
    "RedisCustomerStore",
    "CustomerScoringService",
    "derive_customer_metrics",
]
