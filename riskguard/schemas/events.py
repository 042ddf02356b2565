"""
Processor Event Schemas

Defines the normalized payment event handed to the core by the
processor ingestion layer (webhook routing and signature checks
happen upstream). This is the raw input to the context builder.
"""

from datetime import datetime, UTC
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class CardDetails(BaseModel):
    """
    Card metadata reported by the processor for the attempt.

    The fingerprint is the processor's stable card identifier; when it
    is absent the context builder derives one from last4/brand/expiry.
    """
    fingerprint: Optional[str] = Field(
        default=None,
        description="Processor card fingerprint",
    )
    last4: Optional[str] = Field(
        default=None,
        description="Last four digits",
        max_length=4,
    )
    brand: Optional[str] = Field(
        default=None,
        description="Card brand: visa, mastercard, amex, discover",
    )
    country: Optional[str] = Field(
        default=None,
        description="Issuing country (ISO 3166-1 alpha-2)",
    )
    funding: Optional[str] = Field(
        default=None,
        description="Funding type: credit, debit, prepaid",
    )
    exp_month: Optional[int] = Field(
        default=None,
        ge=1,
        le=12,
        description="Expiry month",
    )
    exp_year: Optional[int] = Field(
        default=None,
        description="Expiry year",
    )


class GeoInfo(BaseModel):
    """Geographic information resolved from the client IP address."""
    ip_address: Optional[str] = Field(
        default=None,
        description="Client IP address",
    )
    country_code: Optional[str] = Field(
        default=None,
        description="ISO 3166-1 alpha-2 country code",
        max_length=2,
    )
    region: Optional[str] = Field(
        default=None,
        description="Region/state/province",
    )
    city: Optional[str] = Field(
        default=None,
        description="City name",
    )


class DeviceInfo(BaseModel):
    """Device information captured at checkout."""
    fingerprint: Optional[str] = Field(
        default=None,
        description="Device fingerprint hash",
    )
    user_agent: Optional[str] = Field(
        default=None,
        description="Raw user agent string",
    )
    accept_language: Optional[str] = Field(
        default=None,
        description="Accept-Language header (used for derived fingerprints)",
    )


class ProcessorEvent(BaseModel):
    """
    Normalized payment attempt from the payment processor.

    Amounts are in minor currency units to avoid floating point issues.
    Validation here is deliberately loose; the context builder enforces
    the fields scoring cannot proceed without.
    """
    payment_id: Optional[str] = Field(
        default=None,
        description="Processor payment identifier",
    )
    amount: Optional[int] = Field(
        default=None,
        description="Amount in minor currency units",
    )
    currency: Optional[str] = Field(
        default=None,
        description="ISO 4217 currency code",
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
        description="Event timestamp",
    )

    customer_id: Optional[str] = Field(
        default=None,
        description="Processor customer identifier",
    )
    customer_email: Optional[str] = Field(
        default=None,
        description="Customer email (receipt or billing)",
    )
    customer_name: Optional[str] = Field(
        default=None,
        description="Customer name",
    )
    description: Optional[str] = Field(
        default=None,
        description="Payment description",
    )
    charge_id: Optional[str] = Field(
        default=None,
        description="Processor charge identifier",
    )

    card: Optional[CardDetails] = Field(
        default=None,
        description="Card metadata",
    )
    geo: Optional[GeoInfo] = Field(
        default=None,
        description="IP geolocation",
    )
    device: Optional[DeviceInfo] = Field(
        default=None,
        description="Device metadata",
    )

    invoice_id: Optional[str] = Field(
        default=None,
        description="Invoice or order identifier (tracker grouping key)",
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Provisional checkout session identifier",
    )
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Free-form processor metadata",
    )

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        """Currency codes are stored upper case."""
        return v.upper() if v else v
