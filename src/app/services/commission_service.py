"""
Affiliate commissions from Stripe invoice payments and refunds.

Every precondition miss (no referral, blocked affiliate, already recorded...)
is normal control flow: it is logged and reported in the result, never raised.
Store failures are logged and swallowed at this boundary.
"""
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IBillingStore
from database_helper import DuplicateRecordError
from schemas.stripe_events import ChargeObject, InvoiceObject

REFERRAL_PAYING = "paying"
COMMISSION_PENDING = "pending"
COMMISSION_REVERSED = "reversed"
REFUND_EVENT_PREFIX = "refund_"
DEFAULT_HOLD_DAYS = 14

_CENTS = Decimal("0.01")
_MINOR_UNITS = Decimal(100)


def _to_decimal(value: Any) -> Decimal:
    try:
        if value is None:
            return Decimal("0")
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENTS, rounding=ROUND_HALF_UP))


def compute_commission(total_minor: Optional[int], subtotal_minor: Optional[int], rate: Any) -> Dict[str, float]:
    """Commission on the pre-tax subtotal; Stripe amounts are in minor units"""
    amount_total = _to_decimal(total_minor) / _MINOR_UNITS
    amount_net = _to_decimal(subtotal_minor) / _MINOR_UNITS
    commission_rate = _to_decimal(rate)
    return {
        "amount_total": _money(amount_total),
        "amount_net": _money(amount_net),
        "commission_rate": float(commission_rate),
        "commission_amount": _money(amount_net * commission_rate),
    }


def refund_event_id(event_id: str) -> str:
    return f"{REFUND_EVENT_PREFIX}{event_id}"


class CommissionService(BaseService):
    """Commission engine and refund reversal"""

    def __init__(self, db_helper: IBillingStore, hold_days: int = DEFAULT_HOLD_DAYS):
        super().__init__(db_helper)
        self.hold_days = hold_days

    async def handle_invoice_paid(self, event_id: str, invoice: InvoiceObject) -> Dict[str, Any]:
        try:
            return await self._record_commission(event_id, invoice)
        except Exception as e:
            self.logger.error("[STRIPE] error handling invoice.paid %s: %s", event_id, e)
            return {"success": False, "error": "commission_failed"}

    async def _record_commission(self, event_id: str, invoice: InvoiceObject) -> Dict[str, Any]:
        customer_id = invoice.customer_id
        if not customer_id:
            self.logger.info("[STRIPE] no customer id on invoice %s", invoice.id)
            return {"success": False, "reason": "missing_customer"}

        subscription_id = invoice.subscription_id
        if not subscription_id:
            self.logger.info("[STRIPE] invoice %s is not for a subscription, skipping commission", invoice.id)
            return {"success": False, "reason": "not_subscription"}

        referral = await self.db_helper.get_referral_by_customer(customer_id)
        if not referral:
            self.logger.info("[STRIPE] no referral found for customer %s", customer_id)
            return {"success": False, "reason": "no_referral"}

        await self._touch_referral_payment(referral)

        existing = await self.db_helper.get_commission_by_event(event_id)
        if existing:
            self.logger.info("[STRIPE] commission already processed for event %s", event_id)
            return {"success": True, "duplicate": True, "commission_id": existing.get("id")}

        affiliate = await self.db_helper.get_affiliate(referral.get("affiliate_id"))
        if not affiliate or affiliate.get("is_blocked"):
            self.logger.info("[STRIPE] affiliate %s is blocked or not found", referral.get("affiliate_id"))
            return {"success": False, "reason": "affiliate_unavailable"}

        amounts = compute_commission(invoice.total, invoice.subtotal, affiliate.get("commission_rate"))
        hold_until = self._now() + timedelta(days=self.hold_days)

        record = {
            "affiliate_id": affiliate.get("id"),
            "referral_id": referral.get("id"),
            "subscription_id": subscription_id,
            "invoice_id": invoice.id,
            "stripe_event_id": event_id,
            **amounts,
            "status": COMMISSION_PENDING,
            "hold_until": hold_until.isoformat(),
        }

        try:
            created = await self.db_helper.insert_commission(record)
        except DuplicateRecordError:
            self.logger.info("[STRIPE] commission for event %s recorded concurrently", event_id)
            return {"success": True, "duplicate": True}

        incremented = await self.db_helper.increment_referral_lifetime_value(
            referral.get("id"), amounts["amount_total"]
        )

        self.logger.info(
            "[STRIPE] created commission of %s %s for affiliate %s",
            amounts["commission_amount"],
            (invoice.currency or "eur").upper(),
            affiliate.get("id"),
        )
        return {
            "success": True,
            "commission_id": created.get("id"),
            "commission_amount": amounts["commission_amount"],
            "lifetime_value_incremented": incremented,
        }

    async def _touch_referral_payment(self, referral: Dict[str, Any]) -> None:
        now_iso = self._now_iso()
        if referral.get("status") != REFERRAL_PAYING:
            update = {
                "status": REFERRAL_PAYING,
                "first_payment_at": now_iso,
                "last_payment_at": now_iso,
                "updated_at": now_iso,
            }
        else:
            update = {"last_payment_at": now_iso, "updated_at": now_iso}
        await self.db_helper.update_referral(referral.get("id"), update)

    async def handle_charge_refunded(self, event_id: str, charge: ChargeObject) -> Dict[str, Any]:
        try:
            return await self._reverse_commission(event_id, charge)
        except Exception as e:
            self.logger.error("[STRIPE] error handling charge.refunded %s: %s", event_id, e)
            return {"success": False, "error": "reversal_failed"}

    async def _reverse_commission(self, event_id: str, charge: ChargeObject) -> Dict[str, Any]:
        invoice_id = charge.invoice_id
        if not invoice_id:
            self.logger.info("[STRIPE] refund %s is not for an invoice, skipping", charge.id)
            return {"success": False, "reason": "not_invoice"}

        commission = await self.db_helper.get_commission_by_invoice(invoice_id)
        if not commission:
            self.logger.info("[STRIPE] no commission found for invoice %s", invoice_id)
            return {"success": False, "reason": "no_commission"}

        if commission.get("status") == COMMISSION_REVERSED:
            self.logger.info("[STRIPE] commission already reversed for invoice %s", invoice_id)
            return {"success": True, "duplicate": True}

        await self.db_helper.update_commission_status(commission.get("id"), COMMISSION_REVERSED)

        reversal_event_id = refund_event_id(event_id)
        compensating_created = False
        if not await self.db_helper.get_commission_by_event(reversal_event_id):
            record = {
                "affiliate_id": commission.get("affiliate_id"),
                "referral_id": commission.get("referral_id"),
                "subscription_id": commission.get("subscription_id"),
                "invoice_id": invoice_id,
                "stripe_event_id": reversal_event_id,
                "amount_total": -_to_float(commission.get("amount_total")),
                "amount_net": -_to_float(commission.get("amount_net")),
                "commission_rate": 0,
                "commission_amount": -_to_float(commission.get("commission_amount")),
                "status": COMMISSION_REVERSED,
                "hold_until": self._now_iso(),
            }
            try:
                await self.db_helper.insert_commission(record)
                compensating_created = True
            except DuplicateRecordError:
                self.logger.info("[STRIPE] reversal for %s recorded concurrently", reversal_event_id)

        self.logger.info(
            "[STRIPE] reversed commission for invoice %s (charge %s refunded %s)",
            invoice_id,
            charge.id,
            _money(_to_decimal(charge.amount_refunded) / _MINOR_UNITS),
        )
        return {
            "success": True,
            "commission_id": commission.get("id"),
            "compensating_created": compensating_created,
        }

    async def link_referral_customer(self, customer_id: str) -> Dict[str, Any]:
        """Attach the Stripe customer id to the referral of its account (first write wins)"""
        try:
            user_id = await self.db_helper.get_customer_user_id(customer_id)
            if not user_id:
                self.logger.info("[STRIPE] no user found for customer %s", customer_id)
                return {"success": False, "reason": "no_user"}

            referral = await self.db_helper.get_referral_by_user(user_id)
            if not referral:
                self.logger.info("[STRIPE] no referral found for user %s", user_id)
                return {"success": False, "reason": "no_referral"}

            if referral.get("customer_id"):
                return {"success": True, "linked": False}

            await self.db_helper.update_referral(referral.get("id"), {
                "customer_id": customer_id,
                "updated_at": self._now_iso(),
            })
            self.logger.info("[STRIPE] updated referral %s with customer_id %s", referral.get("id"), customer_id)
            return {"success": True, "linked": True}
        except Exception as e:
            self.logger.error("[STRIPE] error updating referral customer_id: %s", e)
            return {"success": False, "error": "referral_link_failed"}


def _to_float(value: Any) -> float:
    return _money(_to_decimal(value))
