"""
Pytest Configuration and Fixtures

Provides shared fixtures for the risk decisioning tests. Unit fixtures
use the in-memory stores; Redis fixtures skip when Redis is down.
"""

from datetime import datetime, timedelta, UTC
from typing import AsyncGenerator, Callable
from uuid import uuid4

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import AsyncClient, ASGITransport

from riskguard.api.main import app
from riskguard.config import settings
from riskguard.customers import CustomerScoringService, InMemoryCustomerStore
from riskguard.detection import CardTestingDetector, CardTestingThresholds
from riskguard.features import build_context_from_event
from riskguard.schemas import (
    AttemptStatus,
    CardDetails,
    CardTestingAttempt,
    CustomerContext,
    CustomerTier,
    DeviceInfo,
    GeoInfo,
    ProcessorEvent,
    TransactionContext,
)
from riskguard.scoring import EngineThresholds, FraudDetectionEngine
from riskguard.tracking import CardTestingTrackerService, InMemoryTrackerStore

# Mid-afternoon UTC, outside the unusual-hours window
FIXED_TIME = datetime(2026, 3, 10, 14, 0, tzinfo=UTC)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests (no infrastructure)")
    config.addinivalue_line("markers", "integration: integration tests (requires Redis)")


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[redis.Redis, None]:
    """
    Get Redis client for tests.

    Uses a test-specific key prefix to avoid conflicts.
    """
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        decode_responses=True,
    )

    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError, OSError):
        await client.aclose()
        pytest.skip("Redis not available")

    yield client

    # Cleanup test keys
    keys = await client.keys("riskguard-test:*")
    if keys:
        await client.delete(*keys)
    await client.aclose()


@pytest_asyncio.fixture
async def api_client() -> AsyncGenerator[AsyncClient, None]:
    """
    Get async HTTP client for API tests.

    Uses lifespan context manager to properly initialize app resources.
    """
    from riskguard.api.main import lifespan

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def detector() -> CardTestingDetector:
    return CardTestingDetector(CardTestingThresholds())


@pytest.fixture
def engine() -> FraudDetectionEngine:
    return FraudDetectionEngine(EngineThresholds())


@pytest.fixture
def tracker_store() -> InMemoryTrackerStore:
    return InMemoryTrackerStore()


@pytest.fixture
def tracker_service(tracker_store, detector) -> CardTestingTrackerService:
    return CardTestingTrackerService(tracker_store, detector=detector, rapid_attempt_seconds=60)


@pytest.fixture
def customer_service() -> CustomerScoringService:
    return CustomerScoringService(InMemoryCustomerStore())


# =============================================================================
# Events and contexts
# =============================================================================

@pytest.fixture
def sample_event() -> ProcessorEvent:
    """A clean card payment from a US customer on a US card."""
    return ProcessorEvent(
        payment_id=f"pi_{uuid4().hex[:16]}",
        amount=5000,
        currency="usd",
        timestamp=FIXED_TIME,
        customer_id="cus_123",
        customer_email="jane@example.com",
        customer_name="Jane Doe",
        card=CardDetails(
            fingerprint="fp_visa_4242",
            last4="4242",
            brand="visa",
            country="US",
            funding="credit",
            exp_month=12,
            exp_year=2030,
        ),
        geo=GeoInfo(
            ip_address="203.0.113.10",
            country_code="US",
            region="New York",
            city="New York",
        ),
        device=DeviceInfo(user_agent=CHROME_UA, accept_language="en-US"),
        invoice_id="inv_001",
        session_id="cs_001",
    )


@pytest.fixture
def make_context() -> Callable[..., TransactionContext]:
    """Build a context from overrides on top of a minimal valid one."""
    def _make(**overrides) -> TransactionContext:
        fields = {
            "payment_id": "pi_test",
            "amount": 5000,
            "currency": "USD",
            "timestamp": FIXED_TIME,
            "hour_of_day": FIXED_TIME.hour,
            "day_of_week": 2,
        }
        fields.update(overrides)
        return TransactionContext(**fields)
    return _make


@pytest.fixture
def sample_context(sample_event) -> TransactionContext:
    return build_context_from_event(sample_event)


@pytest.fixture
def vip_customer() -> CustomerContext:
    """Long-standing whitelisted VIP with an average purchase of 50.00."""
    return CustomerContext(
        id="cus_vip",
        account_age_days=400,
        total_purchases=20,
        total_spent=1000.0,
        avg_purchase_amount=50.0,
        trust_score=92,
        tier=CustomerTier.VIP,
        is_whitelisted=True,
    )


# =============================================================================
# Attempts
# =============================================================================

@pytest.fixture
def make_attempt() -> Callable[..., CardTestingAttempt]:
    def _make(
        fingerprint: str,
        status: AttemptStatus = AttemptStatus.FAILED,
        offset_seconds: int = 0,
        amount: int = 1000,
        brand: str = "visa",
        ip_address: str = "198.51.100.7",
        base: datetime = FIXED_TIME,
    ) -> CardTestingAttempt:
        return CardTestingAttempt(
            card_fingerprint=fingerprint,
            status=status,
            timestamp=base + timedelta(seconds=offset_seconds),
            card_brand=brand,
            amount=amount,
            currency="usd",
            ip_address=ip_address,
        )
    return _make


@pytest.fixture
def card_testing_burst(make_attempt) -> list[CardTestingAttempt]:
    """
    Five attempts in three minutes on five different cards, four failed.
    """
    return [
        make_attempt("fp_1", AttemptStatus.FAILED, 0),
        make_attempt("fp_2", AttemptStatus.FAILED, 45),
        make_attempt("fp_3", AttemptStatus.FAILED, 90),
        make_attempt("fp_4", AttemptStatus.FAILED, 135),
        make_attempt("fp_5", AttemptStatus.SUCCEEDED, 180),
    ]
