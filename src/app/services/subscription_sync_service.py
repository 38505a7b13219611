"""
Stripe subscription state sync.

Pulls a customer's latest subscription from Stripe, stores a snapshot in
stripe_subscriptions and forwards the derived plan/status to billing_info.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IBillingStore
from services.billing_info_service import (
    BillingInfoService,
    PLAN_FREE,
    PLAN_PRO,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
)
from services.stripe_billing_client import StripeBillingClient

PAID_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})
NOT_STARTED = "not_started"


def derive_plan_status(subscription_status: Optional[str]) -> tuple[str, str]:
    """(plan, status) for billing_info from a Stripe subscription status"""
    if subscription_status in PAID_SUBSCRIPTION_STATUSES:
        return PLAN_PRO, STATUS_ACTIVE
    return PLAN_FREE, STATUS_INACTIVE


def _period_bounds(subscription: Dict[str, Any]) -> tuple[Optional[int], Optional[int]]:
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        # newer API versions carry the period on the subscription items
        items = (subscription.get("items") or {}).get("data") or []
        first = items[0] if items else {}
        start = start if start is not None else first.get("current_period_start")
        end = end if end is not None else first.get("current_period_end")
    return start, end


def subscription_ends_at(subscription: Dict[str, Any]) -> Optional[str]:
    """Period end when the subscription will not renew, otherwise None"""
    _, period_end = _period_bounds(subscription)
    if subscription.get("cancel_at_period_end") and period_end:
        return datetime.fromtimestamp(int(period_end), tz=timezone.utc).isoformat()
    return None


class SubscriptionSyncService(BaseService):
    """Subscription synchronizer"""

    def __init__(
        self,
        db_helper: IBillingStore,
        stripe_client: StripeBillingClient,
        billing_info_service: BillingInfoService,
    ):
        super().__init__(db_helper)
        self.stripe_client = stripe_client
        self.billing_info_service = billing_info_service

    async def sync_customer(self, customer_id: str) -> Dict[str, Any]:
        """Fetch the latest subscription and store it; errors are logged and re-raised"""
        try:
            subscriptions = await self.stripe_client.list_customer_subscriptions(customer_id, limit=1)

            if not subscriptions:
                self.logger.info("[STRIPE] no subscriptions found for customer: %s", customer_id)
                await self.db_helper.upsert_subscription_snapshot({
                    "customer_id": customer_id,
                    "subscription_status": NOT_STARTED,
                })
                await self.billing_info_service.update_billing_info(customer_id, PLAN_FREE, STATUS_INACTIVE, None)
                return {"status": NOT_STARTED, "plan": PLAN_FREE, "billing_status": STATUS_INACTIVE}

            # a customer holds a single subscription at a time
            subscription = subscriptions[0]
            snapshot = self._build_snapshot(customer_id, subscription)
            await self.db_helper.upsert_subscription_snapshot(snapshot)

            plan, status = derive_plan_status(subscription.get("status"))
            ends_at = subscription_ends_at(subscription)
            await self.billing_info_service.update_billing_info(customer_id, plan, status, ends_at)

            self.logger.info("[STRIPE] synced subscription for customer: %s", customer_id)
            return {
                "status": subscription.get("status"),
                "plan": plan,
                "billing_status": status,
                "subscription_ends_at": ends_at,
            }
        except Exception as e:
            self.logger.error("[STRIPE] failed to sync subscription for customer %s: %s", customer_id, e)
            raise

    @staticmethod
    def _build_snapshot(customer_id: str, subscription: Dict[str, Any]) -> Dict[str, Any]:
        items = (subscription.get("items") or {}).get("data") or []
        price = (items[0].get("price") or {}) if items else {}
        period_start, period_end = _period_bounds(subscription)

        snapshot: Dict[str, Any] = {
            "customer_id": customer_id,
            "subscription_id": subscription.get("id"),
            "price_id": price.get("id"),
            "current_period_start": period_start,
            "current_period_end": period_end,
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            "status": subscription.get("status"),
        }

        payment_method = subscription.get("default_payment_method")
        if payment_method and not isinstance(payment_method, str):
            card = payment_method.get("card") or {}
            snapshot["payment_method_brand"] = card.get("brand")
            snapshot["payment_method_last4"] = card.get("last4")

        return snapshot
