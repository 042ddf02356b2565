# Context Builder Module
from .context import (
    ContextBuilder,
    CustomerContextSource,
    VelocitySource,
    build_context_from_event,
    create_minimal_context,
    enrich_with_customer,
    enrich_with_device_data,
    enrich_with_ip_data,
    enrich_with_velocity,
    extract_time_info,
    generate_card_fingerprint,
    generate_device_fingerprint,
    is_unusual_time,
    parse_user_agent,
    validate_transaction_context,
)

__all__ = [
    "ContextBuilder",
    "CustomerContextSource",
    "VelocitySource",
    "build_context_from_event",
    "create_minimal_context",
    "enrich_with_customer",
    "enrich_with_device_data",
    "enrich_with_ip_data",
    "enrich_with_velocity",
    "extract_time_info",
    "generate_card_fingerprint",
    "generate_device_fingerprint",
    "is_unusual_time",
    "parse_user_agent",
    "validate_transaction_context",
]
