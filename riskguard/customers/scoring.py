"""
Customer Scoring Service

Maintains per-customer trust records: recalculates the trust score
after each attributable transaction, keeps the previous score and tier
for transition detection, and applies operator list actions.

Whitelist/blacklist flags follow the calculated tier until an operator
sets them by hand; a manual override then survives recalculation until
reset_customer_lists() clears it.
"""

import logging
from datetime import datetime, UTC
from typing import Optional

from ..schemas import (
    ChargeSummary,
    CustomerContext,
    CustomerMetrics,
    CustomerTrustRecord,
)
from ..scoring import TrustScoreCalculator
from .store import CustomerTrustStore

logger = logging.getLogger("riskguard.customers")

DEFAULT_DEVICE_CONSISTENCY = 60


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def derive_customer_metrics(
    charges: list[ChargeSummary],
    customer_created_at: Optional[datetime] = None,
    dispute_count: Optional[int] = None,
    unique_payment_methods: Optional[int] = None,
    has_active_subscription: bool = False,
    now: Optional[datetime] = None,
) -> CustomerMetrics:
    """
    Build CustomerMetrics from a customer's historical charges.

    Args:
        charges: Charge summaries from the processor client
        customer_created_at: Customer creation time (default: oldest charge)
        dispute_count: Disputes, when known separately (default: disputed charges)
        unique_payment_methods: Saved cards (default: 0)
        has_active_subscription: Whether a subscription is active
        now: Reference time

    Returns:
        CustomerMetrics with spend in major currency units
    """
    now = _aware(now or _utc_now())
    successful = sorted(
        (c for c in charges if c.paid and not c.refunded),
        key=lambda c: _aware(c.created_at),
    )
    failed = [c for c in charges if not c.paid]
    refunded = [c for c in charges if c.refunded]

    total_spent = sum(c.amount for c in successful) / 100
    avg_amount = total_spent / len(successful) if successful else 0.0

    if customer_created_at is None and charges:
        customer_created_at = min(_aware(c.created_at) for c in charges)
    account_age_days = (
        max(0, (now - _aware(customer_created_at)).days) if customer_created_at else 0
    )

    last_purchase_at = _aware(successful[-1].created_at) if successful else None
    days_since_last = (now - last_purchase_at).days if last_purchase_at else None

    frequency = len(successful) / account_age_days * 30 if account_age_days > 0 else 0.0

    countries = {c.card_country for c in successful if c.card_country}
    location_consistency = 100 if len(countries) <= 1 else max(0, 100 - len(countries) * 20)

    return CustomerMetrics(
        account_age_days=account_age_days,
        total_purchases=len(successful),
        total_spent=total_spent,
        avg_purchase_amount=avg_amount,
        last_purchase_at=last_purchase_at,
        days_since_last_purchase=days_since_last,
        dispute_count=dispute_count if dispute_count is not None else sum(1 for c in charges if c.disputed),
        refund_count=len(refunded),
        failed_payment_count=len(failed),
        unique_payment_methods=unique_payment_methods or 0,
        has_active_subscription=has_active_subscription,
        purchase_frequency=frequency,
        device_consistency=DEFAULT_DEVICE_CONSISTENCY,
        location_consistency=location_consistency,
    )


class CustomerScoringService:
    """
    Customer reputation operations.

    Provides:
    - Trust score recalculation and upsert
    - CustomerContext projection for the fraud engine
    - Manual whitelist/blacklist with actor and reason
    - Risk alerts
    """

    def __init__(
        self,
        store: CustomerTrustStore,
        calculator: Optional[TrustScoreCalculator] = None,
    ):
        """
        Initialize customer scoring service.

        Args:
            store: Trust record storage backend
            calculator: Trust score calculator
        """
        self.store = store
        self.calculator = calculator or TrustScoreCalculator()

    async def update_customer_score(
        self,
        organization_id: str,
        customer_id: str,
        metrics: CustomerMetrics,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> CustomerTrustRecord:
        """
        Recalculate and upsert a customer's trust record.

        Returns:
            The stored record, with previous score/tier populated on update
        """
        result = self.calculator.calculate(metrics)

        def upsert(current: Optional[CustomerTrustRecord]) -> CustomerTrustRecord:
            now = _utc_now()
            record = current or CustomerTrustRecord(
                organization_id=organization_id,
                customer_id=customer_id,
                created_at=now,
            )

            if current is not None:
                record.previous_trust_score = current.trust_score
                record.trust_score_change = result.score - current.trust_score
                record.previous_tier = current.tier
                if current.tier != result.tier:
                    record.tier_changed_at = now

            record.email = email or record.email
            record.name = name or record.name
            record.metrics = metrics
            record.trust_score = result.score
            record.tier = result.tier

            if not record.manual_override:
                record.whitelisted = result.should_whitelist
                record.blacklisted = result.should_blacklist

            record.score_calculated_at = now
            record.updated_at = now
            return record

        record = await self.store.update(organization_id, customer_id, upsert)

        logger.info(
            "Trust score updated customer=%s score=%d tier=%s",
            customer_id, record.trust_score, record.tier.value,
        )
        if record.tier_changed:
            logger.info(
                "Customer %s moved from %s to %s",
                customer_id, record.previous_tier.value, record.tier.value,
            )
        return record

    async def get_customer_trust_record(
        self, organization_id: str, customer_id: str
    ) -> Optional[CustomerTrustRecord]:
        return await self.store.get(organization_id, customer_id)

    async def get_customer_context(
        self, organization_id: str, customer_id: str
    ) -> Optional[CustomerContext]:
        """Project a trust record into the engine's CustomerContext."""
        record = await self.store.get(organization_id, customer_id)
        if record is None:
            return None

        m = record.metrics
        return CustomerContext(
            id=record.customer_id,
            email=record.email,
            name=record.name,
            account_age_days=m.account_age_days,
            total_purchases=m.total_purchases,
            total_spent=m.total_spent,
            avg_purchase_amount=(
                m.total_spent / m.total_purchases if m.total_purchases > 0 else 0.0
            ),
            last_purchase_at=m.last_purchase_at,
            days_since_last_purchase=m.days_since_last_purchase,
            dispute_count=m.dispute_count,
            refund_count=m.refund_count,
            failed_payment_count=m.failed_payment_count,
            chargeback_count=m.dispute_count,
            purchase_frequency=m.purchase_frequency,
            has_active_subscription=m.has_active_subscription,
            unique_payment_methods=m.unique_payment_methods,
            trust_score=record.trust_score,
            tier=record.tier,
            is_whitelisted=record.whitelisted,
            is_blacklisted=record.blacklisted,
            device_consistency=round(m.device_consistency),
            location_consistency=round(m.location_consistency),
        )

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def whitelist_customer(
        self,
        organization_id: str,
        customer_id: str,
        whitelisted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[CustomerTrustRecord]:
        """Whitelist (and un-blacklist) a customer as a manual override."""
        def apply(current: Optional[CustomerTrustRecord]) -> Optional[CustomerTrustRecord]:
            if current is None:
                return None
            now = _utc_now()
            current.whitelisted = True
            current.blacklisted = False
            current.whitelisted_at = now
            current.whitelisted_by = whitelisted_by or "manual"
            current.whitelist_reason = reason
            current.manual_override = True
            current.updated_at = now
            return current

        record = await self.store.update(organization_id, customer_id, apply)
        if record is not None:
            logger.info("Customer %s whitelisted by %s", customer_id, record.whitelisted_by)
        return record

    async def blacklist_customer(
        self,
        organization_id: str,
        customer_id: str,
        blacklisted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[CustomerTrustRecord]:
        """Blacklist (and un-whitelist) a customer as a manual override."""
        def apply(current: Optional[CustomerTrustRecord]) -> Optional[CustomerTrustRecord]:
            if current is None:
                return None
            now = _utc_now()
            current.blacklisted = True
            current.whitelisted = False
            current.blacklisted_at = now
            current.blacklisted_by = blacklisted_by or "manual"
            current.blacklist_reason = reason
            current.manual_override = True
            current.updated_at = now
            return current

        record = await self.store.update(organization_id, customer_id, apply)
        if record is not None:
            logger.warning("Customer %s blacklisted by %s", customer_id, record.blacklisted_by)
        return record

    async def reset_customer_lists(
        self, organization_id: str, customer_id: str
    ) -> Optional[CustomerTrustRecord]:
        """Clear both lists and the manual override."""
        def apply(current: Optional[CustomerTrustRecord]) -> Optional[CustomerTrustRecord]:
            if current is None:
                return None
            current.whitelisted = False
            current.blacklisted = False
            current.manual_override = False
            current.updated_at = _utc_now()
            return current

        return await self.store.update(organization_id, customer_id, apply)

    async def set_customer_risk_alert(
        self, organization_id: str, customer_id: str, reason: str
    ) -> Optional[CustomerTrustRecord]:
        def apply(current: Optional[CustomerTrustRecord]) -> Optional[CustomerTrustRecord]:
            if current is None:
                return None
            now = _utc_now()
            current.risk_alert_active = True
            current.risk_alert_reason = reason
            current.risk_alert_created_at = now
            current.updated_at = now
            return current

        return await self.store.update(organization_id, customer_id, apply)

    async def clear_customer_risk_alert(
        self, organization_id: str, customer_id: str
    ) -> Optional[CustomerTrustRecord]:
        def apply(current: Optional[CustomerTrustRecord]) -> Optional[CustomerTrustRecord]:
            if current is None:
                return None
            current.risk_alert_active = False
            current.risk_alert_reason = None
            current.risk_alert_created_at = None
            current.updated_at = _utc_now()
            return current

        return await self.store.update(organization_id, customer_id, apply)
