"""
Transaction Context Builder

Turns a raw processor event into the immutable TransactionContext that
every scoring component reads. Combines:
- Event-level fields (amount, card, IP, device, timing)
- Customer reputation (from the customer scoring service)
- Session velocity (from the card testing tracker)

Enrichment never mutates a context; each step returns a new instance.
"""

import hashlib
import logging
from datetime import datetime, UTC
from typing import Optional, Protocol

from ..errors import ContextValidationError
from ..schemas import (
    ProcessorEvent,
    CustomerContext,
    VelocityMetrics,
    TransactionContext,
)

logger = logging.getLogger("riskguard.context")


# =============================================================================
# Fingerprinting
# =============================================================================

def generate_card_fingerprint(
    last4: str,
    brand: str,
    exp_month: Optional[int] = None,
    exp_year: Optional[int] = None,
) -> str:
    """
    Derive a stable card identifier when the processor supplies none.

    Returns:
        First 16 hex characters of sha256(last4 + brand + month + year)
    """
    data = f"{last4}{brand}{exp_month or ''}{exp_year or ''}"
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def generate_device_fingerprint(
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    accept_language: Optional[str] = None,
) -> str:
    """Derive a device identifier from user agent, IP and language."""
    data = f"{user_agent or ''}{ip_address or ''}{accept_language or ''}"
    return hashlib.sha256(data.encode()).hexdigest()[:16]


# =============================================================================
# Time and Device Helpers
# =============================================================================

def extract_time_info(timestamp: datetime) -> tuple[int, int]:
    """
    Extract hour of day and day of week (0 = Sunday) in UTC.

    Naive timestamps are treated as UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    ts = timestamp.astimezone(UTC)
    # datetime.weekday() is Monday = 0
    return ts.hour, (ts.weekday() + 1) % 7


def is_unusual_time(hour_of_day: int) -> bool:
    """3am to 6am (exclusive) is unusual for legitimate checkout traffic."""
    return 3 <= hour_of_day < 6


def parse_user_agent(user_agent: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Classify a user agent into (device_type, browser).

    Coarse substring matching only; unknown agents yield None.
    """
    if not user_agent:
        return None, None

    ua = user_agent.lower()

    if "ipad" in ua or "tablet" in ua:
        device_type = "tablet"
    elif "mobi" in ua or "iphone" in ua or "android" in ua:
        device_type = "mobile"
    else:
        device_type = "desktop"

    # Order matters: Edge and Opera UAs also contain "chrome"
    if "edg/" in ua:
        browser = "edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "opera"
    elif "firefox" in ua:
        browser = "firefox"
    elif "chrome" in ua or "crios" in ua:
        browser = "chrome"
    elif "safari" in ua:
        browser = "safari"
    else:
        browser = None

    return device_type, browser


# =============================================================================
# Validation
# =============================================================================

def validate_transaction_context(event: ProcessorEvent) -> list[str]:
    """
    Check the fields scoring cannot proceed without.

    Returns:
        List of error messages (empty when valid)
    """
    errors = []

    if not event.payment_id:
        errors.append("Missing payment id")

    if event.amount is None or event.amount <= 0:
        errors.append("Invalid amount")

    if not event.currency:
        errors.append("Missing currency")
    elif len(event.currency) != 3:
        errors.append("Invalid currency")

    return errors


# =============================================================================
# Builders
# =============================================================================

def build_context_from_event(event: ProcessorEvent) -> TransactionContext:
    """
    Build an un-enriched context from a processor event.

    Raises:
        ContextValidationError: payment id, amount or currency missing
    """
    errors = validate_transaction_context(event)
    if errors:
        raise ContextValidationError(errors)

    hour_of_day, day_of_week = extract_time_info(event.timestamp)

    card_fields = {}
    if event.card:
        card = event.card
        fingerprint = card.fingerprint
        if not fingerprint and card.last4 and card.brand:
            fingerprint = generate_card_fingerprint(
                card.last4, card.brand, card.exp_month, card.exp_year
            )
        card_fields = {
            "card_last4": card.last4,
            "card_brand": card.brand,
            "card_country": card.country,
            "card_fingerprint": fingerprint,
            "card_funding": card.funding,
            "card_exp_month": card.exp_month,
            "card_exp_year": card.exp_year,
        }

    geo_fields = {}
    if event.geo:
        geo_fields = {
            "ip_address": event.geo.ip_address,
            "ip_country": event.geo.country_code,
            "ip_region": event.geo.region,
            "ip_city": event.geo.city,
        }

    device_fields = {}
    if event.device:
        device_type, browser = parse_user_agent(event.device.user_agent)
        fingerprint = event.device.fingerprint
        if not fingerprint and event.device.user_agent:
            fingerprint = generate_device_fingerprint(
                event.device.user_agent,
                geo_fields.get("ip_address"),
                event.device.accept_language,
            )
        device_fields = {
            "device_fingerprint": fingerprint,
            "user_agent": event.device.user_agent,
            "device_type": device_type,
            "browser": browser,
        }

    return TransactionContext(
        payment_id=event.payment_id,
        amount=event.amount,
        currency=event.currency,
        customer_email=event.customer_email,
        customer_name=event.customer_name,
        description=event.description,
        charge_id=event.charge_id,
        processor_customer_id=event.customer_id,
        timestamp=event.timestamp,
        hour_of_day=hour_of_day,
        day_of_week=day_of_week,
        invoice_id=event.invoice_id,
        session_id=event.session_id,
        metadata=event.metadata,
        **card_fields,
        **geo_fields,
        **device_fields,
    )


def create_minimal_context(
    payment_id: str,
    amount: int,
    currency: str,
    timestamp: Optional[datetime] = None,
) -> TransactionContext:
    """Context with only the required fields, for quick checks."""
    ts = timestamp or datetime.now(UTC)
    hour_of_day, day_of_week = extract_time_info(ts)
    return TransactionContext(
        payment_id=payment_id,
        amount=amount,
        currency=currency.upper(),
        timestamp=ts,
        hour_of_day=hour_of_day,
        day_of_week=day_of_week,
    )


# =============================================================================
# Enrichment
# =============================================================================

def enrich_with_customer(
    context: TransactionContext,
    customer: Optional[CustomerContext],
) -> TransactionContext:
    """Attach customer reputation."""
    if customer is None:
        return context
    return context.model_copy(update={"customer": customer})


def enrich_with_velocity(
    context: TransactionContext,
    velocity: VelocityMetrics,
    invoice_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> TransactionContext:
    """Attach session velocity metrics."""
    update = {"velocity": velocity}
    if invoice_id is not None:
        update["invoice_id"] = invoice_id
    if session_id is not None:
        update["session_id"] = session_id
    return context.model_copy(update=update)


def enrich_with_ip_data(
    context: TransactionContext,
    country: Optional[str] = None,
    region: Optional[str] = None,
    city: Optional[str] = None,
) -> TransactionContext:
    """Attach IP geolocation resolved by an external service."""
    return context.model_copy(update={
        "ip_country": country,
        "ip_region": region,
        "ip_city": city,
    })


def enrich_with_device_data(
    context: TransactionContext,
    fingerprint: Optional[str] = None,
    user_agent: Optional[str] = None,
    device_type: Optional[str] = None,
    browser: Optional[str] = None,
) -> TransactionContext:
    """Attach device data; type and browser are parsed from the UA when absent."""
    if user_agent and (device_type is None or browser is None):
        parsed_type, parsed_browser = parse_user_agent(user_agent)
        device_type = device_type or parsed_type
        browser = browser or parsed_browser
    return context.model_copy(update={
        "device_fingerprint": fingerprint,
        "user_agent": user_agent,
        "device_type": device_type,
        "browser": browser,
    })


class CustomerContextSource(Protocol):
    async def get_customer_context(
        self, organization_id: str, customer_id: str
    ) -> Optional[CustomerContext]: ...


class VelocitySource(Protocol):
    async def calculate_velocity_metrics(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str] = None,
    ) -> VelocityMetrics: ...


class ContextBuilder:
    """
    Builds fully enriched transaction contexts.

    Customer and velocity lookups run against the injected services;
    storage errors propagate to the caller.
    """

    def __init__(
        self,
        customers: Optional[CustomerContextSource] = None,
        velocity: Optional[VelocitySource] = None,
    ):
        """
        Initialize context builder.

        Args:
            customers: Customer scoring service (trust record lookup)
            velocity: Card testing tracker service (session velocity)
        """
        self.customers = customers
        self.velocity = velocity

    async def build(
        self,
        organization_id: str,
        event: ProcessorEvent,
        include_customer: bool = True,
        include_velocity: bool = True,
    ) -> TransactionContext:
        """
        Build and enrich a context for one attempt.

        Args:
            organization_id: Owning organization
            event: Raw processor event
            include_customer: Look up the customer's trust record
            include_velocity: Read session velocity from the tracker

        Returns:
            Immutable TransactionContext
        """
        context = build_context_from_event(event)

        if include_customer and self.customers and context.processor_customer_id:
            customer = await self.customers.get_customer_context(
                organization_id, context.processor_customer_id
            )
            context = enrich_with_customer(context, customer)

        if include_velocity and self.velocity and context.invoice_id:
            metrics = await self.velocity.calculate_velocity_metrics(
                organization_id, context.invoice_id, context.session_id
            )
            context = enrich_with_velocity(context, metrics)

        logger.debug(
            "Built context payment=%s customer=%s velocity=%s",
            context.payment_id,
            context.customer is not None,
            context.velocity is not None,
        )
        return context
