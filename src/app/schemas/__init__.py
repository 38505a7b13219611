"""
Request/response and event schemas
"""
from .admin import InvoicePdfLink, InvoiceSyncResult
from .stripe_events import (
    ChargeObject,
    ChargeRefundedEvent,
    CheckoutSessionEvent,
    CheckoutSessionObject,
    CustomerEvent,
    IgnoredEvent,
    InvoiceEvent,
    InvoiceObject,
    StripeEventEnvelope,
    WebhookEvent,
    decode_event,
)

__all__ = [
    "InvoicePdfLink",
    "InvoiceSyncResult",
    "ChargeObject",
    "ChargeRefundedEvent",
    "CheckoutSessionEvent",
    "CheckoutSessionObject",
    "CustomerEvent",
    "IgnoredEvent",
    "InvoiceEvent",
    "InvoiceObject",
    "StripeEventEnvelope",
    "WebhookEvent",
    "decode_event",
]
