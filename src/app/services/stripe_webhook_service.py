"""
Stripe webhook dispatch

Routes a decoded webhook event to the invoice archiver, the commission engine,
the refund reversal handler or the subscription synchronizer.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IBillingStore
from schemas.stripe_events import (
    CHECKOUT_SESSION_COMPLETED,
    INVOICE_PAID,
    ChargeRefundedEvent,
    CheckoutSessionEvent,
    CustomerEvent,
    IgnoredEvent,
    InvoiceEvent,
    WebhookEvent,
)
from services.commission_service import CommissionService
from services.invoice_archive_service import InvoiceArchiveService
from services.subscription_sync_service import SubscriptionSyncService

HandlerResult = Dict[str, Any]
HandlerFunc = Callable[[Any], Awaitable[HandlerResult]]

ORDER_COMPLETED = "completed"


class StripeWebhookService(BaseService):
    """Event dispatcher"""

    def __init__(
        self,
        db_helper: IBillingStore,
        invoice_archive_service: InvoiceArchiveService,
        commission_service: CommissionService,
        subscription_sync_service: Optional[SubscriptionSyncService] = None,
    ):
        super().__init__(db_helper)
        self.invoice_archive_service = invoice_archive_service
        self.commission_service = commission_service
        self.subscription_sync_service = subscription_sync_service

        self._handlers: Dict[type, HandlerFunc] = {
            InvoiceEvent: self._handle_invoice_event,
            ChargeRefundedEvent: self._handle_charge_refunded,
            CheckoutSessionEvent: self._handle_checkout_session,
            CustomerEvent: self._handle_customer_event,
            IgnoredEvent: self._handle_ignored_event,
        }

    async def handle_event(self, event: WebhookEvent) -> HandlerResult:
        """Dispatch one event; downstream errors from the synchronizer propagate"""
        handler = self._handlers.get(type(event), self._handle_ignored_event)
        self.logger.info("[STRIPE] dispatching event=%s id=%s", event.event_type, event.event_id)
        result = await handler(event)
        return {"event_id": event.event_id, "event_type": event.event_type, **result}

    async def _handle_invoice_event(self, event: InvoiceEvent) -> HandlerResult:
        # every invoice lifecycle event is archived, whatever else it triggers
        results: HandlerResult = {"archive": await self.invoice_archive_service.archive_invoice(event.invoice)}

        if event.event_type == INVOICE_PAID:
            results["commission"] = await self.commission_service.handle_invoice_paid(event.event_id, event.invoice)
            return results

        results.update(await self._sync_customer(event.invoice.customer))
        return results

    async def _handle_charge_refunded(self, event: ChargeRefundedEvent) -> HandlerResult:
        return {"reversal": await self.commission_service.handle_charge_refunded(event.event_id, event.charge)}

    async def _handle_checkout_session(self, event: CheckoutSessionEvent) -> HandlerResult:
        session = event.session
        if not self._valid_customer(session.customer):
            return {"skipped": "invalid customer"}

        is_subscription = not (event.event_type == CHECKOUT_SESSION_COMPLETED and session.mode != "subscription")
        self.logger.info(
            "[STRIPE] processing %s checkout session %s",
            "subscription" if is_subscription else "one-time payment",
            session.id,
        )

        if session.mode == "payment" and session.payment_status == "paid":
            return {"order": await self._record_one_time_order(session)}

        if not is_subscription:
            return {"skipped": f"checkout mode {session.mode}"}

        return await self._sync_customer(session.customer)

    async def _handle_customer_event(self, event: CustomerEvent) -> HandlerResult:
        return await self._sync_customer(event.customer)

    async def _handle_ignored_event(self, event: IgnoredEvent) -> HandlerResult:
        return {"skipped": getattr(event, "reason", "unhandled event")}

    def _valid_customer(self, customer: Any) -> bool:
        if not customer or not isinstance(customer, str):
            self.logger.error("[STRIPE] no customer received on event: %r", customer)
            return False
        return True

    async def _sync_customer(self, customer: Any) -> HandlerResult:
        if not self._valid_customer(customer):
            return {"skipped": "invalid customer"}

        if not self.subscription_sync_service:
            self.logger.error("[STRIPE] subscription sync unavailable, STRIPE_SECRET_KEY is not configured")
            return {"skipped": "subscription sync unavailable"}

        sync = await self.subscription_sync_service.sync_customer(customer)
        referral = await self.commission_service.link_referral_customer(customer)
        return {"subscription": sync, "referral": referral}

    async def _record_one_time_order(self, session) -> Dict[str, Any]:
        record = {
            "checkout_session_id": session.id,
            "payment_intent_id": session.payment_intent if isinstance(session.payment_intent, str) else None,
            "customer_id": session.customer,
            "amount_subtotal": session.amount_subtotal,
            "amount_total": session.amount_total,
            "currency": session.currency,
            "payment_status": session.payment_status,
            "status": ORDER_COMPLETED,
        }
        created = await self.db_helper.insert_order(record)
        if created is None:
            return {"success": False, "error": "order_insert_failed"}

        self.logger.info("[STRIPE] recorded one-time payment for session %s", session.id)
        return {"success": True, "order_id": created.get("id")}
