"""
Typed Stripe webhook events.

The verified payload is decoded once, at the dispatch boundary, into exactly
one variant. Handlers receive the variant and never probe raw dictionaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


INVOICE_ARCHIVE_EVENTS = frozenset({
    "invoice.finalized",
    "invoice.paid",
    "invoice.payment_failed",
    "invoice.voided",
    "invoice.updated",
})

INVOICE_PAID = "invoice.paid"
CHARGE_REFUNDED = "charge.refunded"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


class StripeObject(BaseModel):
    model_config = ConfigDict(extra="allow")


class InvoiceObject(StripeObject):
    id: str
    customer: Any = None
    subscription: Any = None
    parent: Optional[Dict[str, Any]] = None
    number: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    total: Optional[int] = None
    tax: Optional[int] = None
    subtotal: Optional[int] = None
    created: Optional[int] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
    lines: Optional[Dict[str, Any]] = None

    @property
    def customer_id(self) -> Optional[str]:
        return self.customer if isinstance(self.customer, str) else None

    @property
    def subscription_id(self) -> Optional[str]:
        """Subscription id, also for API versions that nest it under parent"""
        if isinstance(self.subscription, str):
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        nested = details.get("subscription")
        return nested if isinstance(nested, str) else None

    @property
    def lines_count(self) -> int:
        data = (self.lines or {}).get("data")
        return len(data) if isinstance(data, list) else 0


class ChargeObject(StripeObject):
    id: str
    invoice: Any = None
    customer: Any = None
    amount_refunded: int = 0

    @property
    def invoice_id(self) -> Optional[str]:
        return self.invoice if isinstance(self.invoice, str) else None


class CheckoutSessionObject(StripeObject):
    id: str
    customer: Any = None
    mode: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent: Any = None
    amount_subtotal: Optional[int] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None


class EventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class StripeEventEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: Optional[int] = None
    livemode: Optional[bool] = None
    data: EventData = Field(default_factory=EventData)


@dataclass(slots=True, frozen=True)
class InvoiceEvent:
    event_id: str
    event_type: str
    invoice: InvoiceObject


@dataclass(slots=True, frozen=True)
class ChargeRefundedEvent:
    event_id: str
    event_type: str
    charge: ChargeObject


@dataclass(slots=True, frozen=True)
class CheckoutSessionEvent:
    event_id: str
    event_type: str
    session: CheckoutSessionObject


@dataclass(slots=True, frozen=True)
class CustomerEvent:
    """Any other event whose object carries a customer field"""
    event_id: str
    event_type: str
    customer: Any


@dataclass(slots=True, frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str
    reason: str


WebhookEvent = Union[InvoiceEvent, ChargeRefundedEvent, CheckoutSessionEvent, CustomerEvent, IgnoredEvent]


def decode_event(payload: Dict[str, Any]) -> WebhookEvent:
    """Decode a verified event payload into its variant.

    Raises pydantic.ValidationError when the envelope itself is malformed.
    """
    envelope = StripeEventEnvelope.model_validate(payload)
    event_id = envelope.id
    event_type = envelope.type
    obj = envelope.data.object

    if not obj:
        return IgnoredEvent(event_id, event_type, "empty object")

    if event_type in INVOICE_ARCHIVE_EVENTS:
        return InvoiceEvent(event_id, event_type, InvoiceObject.model_validate(obj))

    if event_type == CHARGE_REFUNDED:
        return ChargeRefundedEvent(event_id, event_type, ChargeObject.model_validate(obj))

    if event_type == CHECKOUT_SESSION_COMPLETED:
        return CheckoutSessionEvent(event_id, event_type, CheckoutSessionObject.model_validate(obj))

    if event_type == PAYMENT_INTENT_SUCCEEDED and "invoice" in obj and obj["invoice"] is None:
        # one-time payments are handled through checkout.session.completed
        return IgnoredEvent(event_id, event_type, "one-time payment intent")

    if "customer" in obj:
        return CustomerEvent(event_id, event_type, obj.get("customer"))

    return IgnoredEvent(event_id, event_type, "no customer on object")
