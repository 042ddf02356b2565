"""
Risk Assessment API

FastAPI application exposing the decisioning core.

Endpoints:
- POST /assess: Assess a transaction
- POST /trackers/{organization_id}/{invoice_id}/attempts: Record a payment attempt
- GET /trackers/{organization_id}/{invoice_id}: Card testing session summary
- POST /trackers/{organization_id}/{invoice_id}/unblock: Unblock and reset a session
- POST /customers/{organization_id}/{customer_id}/score: Recalculate a customer's trust record
- GET /customers/{organization_id}/{customer_id}: Customer trust record
- POST /customers/{organization_id}/{customer_id}/whitelist: Whitelist a customer
- POST /customers/{organization_id}/{customer_id}/blacklist: Blacklist a customer
- GET /health: Health check
- GET /metrics: Prometheus metrics
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, Optional

import redis.asyncio as redis
from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from ..config import settings
from ..customers import (
    CustomerScoringService,
    CustomerTrustStore,
    InMemoryCustomerStore,
    RedisCustomerStore,
    derive_customer_metrics,
)
from ..errors import AttemptValidationError, ContextValidationError, RiskGuardError
from ..features import ContextBuilder
from ..metrics import metrics, render_latest
from ..pipeline import RiskAssessmentService
from ..policy import CustomRuleEvaluator, InMemoryRuleStore, YamlRuleStore
from ..schemas import (
    AssessmentFailure,
    AssessRequest,
    CustomerListRequest,
    CustomerScoreRequest,
    CustomerTrustRecord,
    RiskAssessment,
    SessionSummary,
    TrackAttemptResult,
    UnblockRequest,
)
from ..tracking import (
    CardTestingTrackerService,
    InMemoryTrackerStore,
    RedisTrackerStore,
    TrackerStore,
)
from ..utils import get_logger

logger = logging.getLogger("riskguard.api")


# Global instances (initialized in lifespan)
redis_client: Optional[redis.Redis] = None
rule_store: Optional[InMemoryRuleStore] = None
tracker_service: Optional[CardTestingTrackerService] = None
customer_service: Optional[CustomerScoringService] = None
assessment_service: Optional[RiskAssessmentService] = None


def _failure_response(status_code: int = 503, retryable: bool = True) -> JSONResponse:
    body = AssessmentFailure(retryable=retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Initializes and cleans up resources:
    - Storage backend (memory or Redis)
    - Custom rule store
    - Service instances
    """
    global redis_client, rule_store, tracker_service, customer_service, assessment_service

    get_logger(level=settings.app_log_level)

    tracker_store: TrackerStore
    customer_store: CustomerTrustStore

    if settings.storage_backend == "redis":
        redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
        )
        try:
            await redis_client.ping()
            metrics.component_health.labels(component="redis").set(1)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            metrics.component_health.labels(component="redis").set(0)
            logger.warning("Redis connection failed: %s", e)

        tracker_store = RedisTrackerStore(
            redis_client,
            key_prefix=settings.redis_key_prefix,
            ttl_seconds=settings.tracker_ttl_seconds,
            max_retries=settings.tracker_max_retries,
        )
        customer_store = RedisCustomerStore(
            redis_client,
            key_prefix=settings.redis_key_prefix,
            max_retries=settings.tracker_max_retries,
        )
    else:
        tracker_store = InMemoryTrackerStore()
        customer_store = InMemoryCustomerStore()

    # Load custom rules from file if configured
    if settings.rules_path:
        rule_store = YamlRuleStore(Path(settings.rules_path))
    else:
        rule_store = InMemoryRuleStore()

    tracker_service = CardTestingTrackerService(tracker_store)
    customer_service = CustomerScoringService(customer_store)
    assessment_service = RiskAssessmentService(
        context_builder=ContextBuilder(customers=customer_service, velocity=tracker_service),
        tracker=tracker_service,
        rule_evaluator=CustomRuleEvaluator(rule_store),
    )

    logger.info("riskguard API started with %s storage", settings.storage_backend)

    yield

    # Cleanup
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="riskguard",
        description="Payment risk decisioning for card-not-present transactions",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns service health status and component availability.
    """
    health = {
        "status": "healthy",
        "storage_backend": settings.storage_backend,
        "components": {
            "assessment": assessment_service is not None,
            "rules": rule_store is not None,
        },
    }

    if settings.storage_backend == "redis":
        health["components"]["redis"] = False
        if redis_client:
            try:
                await redis_client.ping()
                health["components"]["redis"] = True
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning("Redis health check failed: %s", e)

    if isinstance(rule_store, YamlRuleStore):
        health["rules_version"] = rule_store.version
        health["rules_hash"] = rule_store.rules_hash

    # Overall status
    if not all(health["components"].values()):
        health["status"] = "degraded"

    return health


@app.get("/metrics")
def metrics_endpoint():
    """Expose Prometheus metrics."""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    payload, content_type = render_latest()
    return Response(payload, media_type=content_type)


@app.post("/assess", response_model=RiskAssessment)
async def assess_transaction(request: AssessRequest):
    """
    Assess a payment transaction.

    Any internal failure returns 503 with a REVIEW fallback, never an
    ALLOW.
    """
    if assessment_service is None:
        return _failure_response()

    try:
        return await assessment_service.assess(
            request.organization_id,
            request.event,
            include_context=request.include_context,
        )
    except ContextValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors)
    except RiskGuardError as e:
        logger.error("Assessment failed for payment=%s: %s", request.event.payment_id, e)
        return _failure_response(retryable=getattr(e, "retryable", False))
    except Exception as e:
        metrics.assessment_failures.labels(error_type=type(e).__name__).inc()
        logger.exception("Unexpected assessment failure for payment=%s", request.event.payment_id)
        return _failure_response(retryable=False)


@app.post(
    "/trackers/{organization_id}/{invoice_id}/attempts",
    response_model=TrackAttemptResult,
)
async def record_attempt(
    organization_id: str,
    invoice_id: str,
    attempt: dict = Body(...),
    session_id: Optional[str] = None,
):
    """Record one payment attempt against a checkout session."""
    if tracker_service is None:
        raise HTTPException(status_code=503, detail="Tracker unavailable")

    try:
        return await tracker_service.record_attempt(
            organization_id, invoice_id, attempt, session_id=session_id
        )
    except AttemptValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RiskGuardError as e:
        logger.error("Attempt recording failed org=%s invoice=%s: %s", organization_id, invoice_id, e)
        raise HTTPException(status_code=503, detail="Tracker unavailable")


@app.get(
    "/trackers/{organization_id}/{invoice_id}",
    response_model=SessionSummary,
)
async def get_tracker(
    organization_id: str,
    invoice_id: str,
    session_id: Optional[str] = None,
):
    """Card testing summary for a checkout session."""
    if tracker_service is None:
        raise HTTPException(status_code=503, detail="Tracker unavailable")

    try:
        summary = await tracker_service.get_session_summary(
            organization_id, invoice_id, session_id
        )
    except RiskGuardError as e:
        logger.error("Tracker read failed org=%s invoice=%s: %s", organization_id, invoice_id, e)
        raise HTTPException(status_code=503, detail="Tracker unavailable")

    if summary is None:
        raise HTTPException(status_code=404, detail="Tracker not found")
    return summary


@app.post(
    "/trackers/{organization_id}/{invoice_id}/unblock",
    response_model=SessionSummary,
)
async def unblock_tracker(
    organization_id: str,
    invoice_id: str,
    request: UnblockRequest,
):
    """Clear a session's blocked flag. Attempt history is kept."""
    if tracker_service is None:
        raise HTTPException(status_code=503, detail="Tracker unavailable")

    try:
        tracker = await tracker_service.unblock_and_reset(
            organization_id, invoice_id, request.actor, request.session_id
        )
        if tracker is None:
            raise HTTPException(status_code=404, detail="Tracker not found")
        return await tracker_service.get_session_summary(
            organization_id, invoice_id, request.session_id
        )
    except RiskGuardError as e:
        logger.error("Unblock failed org=%s invoice=%s: %s", organization_id, invoice_id, e)
        raise HTTPException(status_code=503, detail="Tracker unavailable")


@app.post(
    "/customers/{organization_id}/{customer_id}/score",
    response_model=CustomerTrustRecord,
)
async def score_customer(
    organization_id: str,
    customer_id: str,
    request: CustomerScoreRequest,
):
    """
    Recalculate and upsert a customer's trust record from their charges.

    Called after every attributable transaction; the first call creates
    the record.
    """
    if customer_service is None:
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")

    customer_metrics = derive_customer_metrics(
        request.charges,
        customer_created_at=request.customer_created_at,
        dispute_count=request.dispute_count,
        unique_payment_methods=request.unique_payment_methods,
        has_active_subscription=request.has_active_subscription,
    )
    try:
        return await customer_service.update_customer_score(
            organization_id,
            customer_id,
            customer_metrics,
            email=request.email,
            name=request.name,
        )
    except RiskGuardError as e:
        logger.error("Customer scoring failed org=%s customer=%s: %s", organization_id, customer_id, e)
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")


@app.get(
    "/customers/{organization_id}/{customer_id}",
    response_model=CustomerTrustRecord,
)
async def get_customer(organization_id: str, customer_id: str):
    """Stored trust record for a customer."""
    if customer_service is None:
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")

    try:
        record = await customer_service.get_customer_trust_record(organization_id, customer_id)
    except RiskGuardError as e:
        logger.error("Customer read failed org=%s customer=%s: %s", organization_id, customer_id, e)
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")

    if record is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return record


@app.post(
    "/customers/{organization_id}/{customer_id}/{list_name}",
    response_model=CustomerTrustRecord,
)
async def list_customer(
    organization_id: str,
    customer_id: str,
    list_name: Literal["whitelist", "blacklist"],
    request: CustomerListRequest,
):
    """Whitelist or blacklist a customer as a manual override."""
    if customer_service is None:
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")

    apply = (
        customer_service.whitelist_customer
        if list_name == "whitelist"
        else customer_service.blacklist_customer
    )
    try:
        record = await apply(organization_id, customer_id, request.actor, request.reason)
    except RiskGuardError as e:
        logger.error("Customer %s failed org=%s customer=%s: %s", list_name, organization_id, customer_id, e)
        raise HTTPException(status_code=503, detail="Customer scoring unavailable")

    if record is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return record

# Entry point for running directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "riskguard.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_debug,
    )
