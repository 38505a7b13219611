"""
Billing info updates driven by Stripe subscription state.

Resolves which account a Stripe customer belongs to and writes plan, status
and trial bookkeeping onto that account's billing_info row.
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IBillingStore

PLAN_PRO = "pro"
PLAN_FREE = "free"
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"

_UNSET: Any = object()


class ResolutionKind(str, enum.Enum):
    FOUND_DIRECT = "found_direct"
    FOUND_VIA_MAPPING = "found_via_mapping"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class AccountResolution:
    kind: ResolutionKind
    billing: Optional[Dict[str, Any]] = None
    backfilled: bool = False

    @property
    def user_id(self) -> Optional[str]:
        return self.billing.get("user_id") if self.billing else None


class BillingInfoService(BaseService):
    """Billing-info updater"""

    def __init__(self, db_helper: IBillingStore):
        super().__init__(db_helper)

    async def resolve_account(self, customer_id: str) -> AccountResolution:
        """Direct lookup by stripe_customer_id, else through stripe_customers with backfill"""

        direct = await self.db_helper.get_billing_info_by_customer(customer_id)
        if direct:
            return AccountResolution(ResolutionKind.FOUND_DIRECT, direct)

        user_id = await self.db_helper.get_customer_user_id(customer_id)
        if not user_id:
            return AccountResolution(ResolutionKind.NOT_FOUND)

        by_user = await self.db_helper.get_billing_info_by_user(user_id)
        if not by_user:
            return AccountResolution(ResolutionKind.NOT_FOUND)

        backfilled = await self.db_helper.link_billing_customer(user_id, customer_id)
        if backfilled:
            self.logger.info("[STRIPE] backfilled stripe_customer_id in billing_info for user %s", user_id)
        return AccountResolution(ResolutionKind.FOUND_VIA_MAPPING, by_user, backfilled=backfilled)

    async def update_billing_info(
        self,
        customer_id: str,
        plan: str,
        status: str,
        subscription_ends_at: Optional[str] = _UNSET,
    ) -> AccountResolution:
        """Write plan/status for the customer's account.

        ``subscription_ends_at`` left out means "keep the stored value"; an
        explicit ``None`` clears it. Store failures are logged and re-raised.
        """
        try:
            resolution = await self.resolve_account(customer_id)
            if resolution.kind is ResolutionKind.NOT_FOUND:
                self.logger.warning("[STRIPE] no billing info found for customer: %s", customer_id)
                return resolution

            billing = resolution.billing or {}
            paid_active = plan == PLAN_PRO and status == STATUS_ACTIVE
            now_iso = self._now_iso()

            update_data: Dict[str, Any] = {
                "subscription_plan": plan,
                "subscription_status": status,
                "stripe_customer_id": customer_id,
                "updated_at": now_iso,
            }

            if subscription_ends_at is not _UNSET:
                update_data["subscription_ends_at"] = subscription_ends_at

            if paid_active and not billing.get("pro_activated_at"):
                update_data["pro_activated_at"] = now_iso
                self.logger.info("[STRIPE] setting pro_activated_at for customer %s", customer_id)

            if paid_active:
                update_data["trial_started_at"] = None
                update_data["trial_ends_at"] = None

            await self.db_helper.update_billing_info(resolution.user_id, update_data)

            self.logger.info(
                "[STRIPE] updated billing info for customer %s: plan=%s status=%s ends_at=%s",
                customer_id,
                plan,
                status,
                update_data.get("subscription_ends_at"),
            )
            return resolution
        except Exception as e:
            self.logger.error("[STRIPE] failed to update billing info for customer %s: %s", customer_id, e)
            raise
