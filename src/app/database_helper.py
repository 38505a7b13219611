"""
Supabase helper for the billing tables, RPC functions and invoice storage
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from supabase import Client
import logging

from core.interfaces import IBillingStore

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
PDF_CACHEABLE_STATUSES = ("open", "paid", "uncollectible", "void")


class BillingStoreError(RuntimeError):
    """A store write that callers must not silently ignore"""

    def __init__(self, message: str, *, table: str = None, code: str = None):
        super().__init__(message)
        self.table = table
        self.code = code


class DuplicateRecordError(BillingStoreError):
    """Unique constraint violation"""


class DatabaseHelper(IBillingStore):
    def __init__(self, admin_client: Client, storage_bucket: str = "billing"):
        self.admin_client = admin_client
        self.storage_bucket = storage_bucket

    def _get_client(self) -> Client:
        """The service-role client; every billing table is written server side"""
        return self.admin_client

    @staticmethod
    def _first(result) -> Optional[Dict[str, Any]]:
        data = getattr(result, 'data', None)
        return data[0] if data else None

    @staticmethod
    def _parse_iso_datetime(value: Any) -> Optional[datetime]:
        """Parse an ISO string (with trailing Z support) into an aware datetime"""
        if not value:
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        return None

    @staticmethod
    def _error_code(exc: Exception) -> Optional[str]:
        code = getattr(exc, 'code', None)
        return str(code) if code is not None else None

    # stripe_subscriptions
    async def upsert_subscription_snapshot(self, record: Dict[str, Any]) -> None:
        try:
            client = self._get_client()
            client.table('stripe_subscriptions').upsert(record, on_conflict='customer_id').execute()
        except Exception as e:
            logger.error("[STRIPE] subscription snapshot upsert failed: customer=%s error=%s",
                         record.get('customer_id'), e)
            raise BillingStoreError(
                'Failed to sync subscription in database',
                table='stripe_subscriptions',
                code=self._error_code(e),
            ) from e

    # billing_info / stripe_customers
    async def get_billing_info_by_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('billing_info')
                .select('user_id, subscription_plan, pro_activated_at')
                .eq('stripe_customer_id', customer_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] billing_info lookup by customer failed: customer=%s error=%s", customer_id, e)
            return None

    async def get_billing_info_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('billing_info')
                .select('user_id, subscription_plan, pro_activated_at')
                .eq('user_id', user_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] billing_info lookup by user failed: user=%s error=%s", user_id, e)
            return None

    async def get_customer_user_id(self, customer_id: str) -> Optional[str]:
        try:
            client = self._get_client()
            result = (
                client.table('stripe_customers')
                .select('user_id')
                .eq('customer_id', customer_id)
                .limit(1)
                .execute()
            )
            row = self._first(result)
            return row.get('user_id') if row else None
        except Exception as e:
            logger.error("[STRIPE] stripe_customers lookup failed: customer=%s error=%s", customer_id, e)
            return None

    async def link_billing_customer(self, user_id: str, customer_id: str) -> bool:
        try:
            client = self._get_client()
            client.table('billing_info').update({
                'stripe_customer_id': customer_id,
                'updated_at': datetime.now(timezone.utc).isoformat(),
            }).eq('user_id', user_id).execute()
            return True
        except Exception as e:
            logger.error("[STRIPE] stripe_customer_id backfill failed: user=%s error=%s", user_id, e)
            return False

    async def update_billing_info(self, user_id: str, update_data: Dict[str, Any]) -> None:
        try:
            client = self._get_client()
            client.table('billing_info').update(update_data).eq('user_id', user_id).execute()
        except Exception as e:
            logger.error("[STRIPE] billing_info update failed: user=%s error=%s", user_id, e)
            raise BillingStoreError(
                'Failed to update billing info',
                table='billing_info',
                code=self._error_code(e),
            ) from e

    # affiliate_referrals / affiliates
    async def get_referral_by_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('affiliate_referrals')
                .select('id, affiliate_id, status, customer_id')
                .eq('customer_id', customer_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] referral lookup by customer failed: customer=%s error=%s", customer_id, e)
            return None

    async def get_referral_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('affiliate_referrals')
                .select('id, affiliate_id, status, customer_id')
                .eq('referred_user_id', user_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] referral lookup by user failed: user=%s error=%s", user_id, e)
            return None

    async def update_referral(self, referral_id: str, update_data: Dict[str, Any]) -> bool:
        try:
            client = self._get_client()
            client.table('affiliate_referrals').update(update_data).eq('id', referral_id).execute()
            return True
        except Exception as e:
            logger.error("[STRIPE] referral update failed: referral=%s error=%s", referral_id, e)
            return False

    async def increment_referral_lifetime_value(self, referral_id: str, amount: float) -> bool:
        try:
            client = self._get_client()
            client.rpc('increment_referral_lifetime_value', {
                'p_referral_id': referral_id,
                'p_amount': amount,
            }).execute()
            return True
        except Exception as e:
            logger.error("[STRIPE] lifetime value increment failed: referral=%s error=%s", referral_id, e)
            return False

    async def get_affiliate(self, affiliate_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('affiliates')
                .select('id, commission_rate, is_blocked')
                .eq('id', affiliate_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] affiliate lookup failed: affiliate=%s error=%s", affiliate_id, e)
            return None

    # affiliate_commissions
    async def get_commission_by_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('affiliate_commissions')
                .select('id')
                .eq('stripe_event_id', event_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] commission lookup by event failed: event=%s error=%s", event_id, e)
            return None

    async def get_commission_by_invoice(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('affiliate_commissions')
                .select('id, affiliate_id, referral_id, subscription_id, amount_total, amount_net, '
                        'commission_amount, status')
                .eq('invoice_id', invoice_id)
                .not_.like('stripe_event_id', 'refund_%')
                .order('created_at')
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] commission lookup by invoice failed: invoice=%s error=%s", invoice_id, e)
            return None

    async def insert_commission(self, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            client = self._get_client()
            result = client.table('affiliate_commissions').insert(record).execute()
            return self._first(result) or {}
        except Exception as e:
            code = self._error_code(e)
            if code == UNIQUE_VIOLATION:
                raise DuplicateRecordError(
                    f"Commission already recorded for event {record.get('stripe_event_id')}",
                    table='affiliate_commissions',
                    code=code,
                ) from e
            logger.error("[STRIPE] commission insert failed: event=%s error=%s", record.get('stripe_event_id'), e)
            raise BillingStoreError('Failed to create commission', table='affiliate_commissions', code=code) from e

    async def update_commission_status(self, commission_id: str, status: str) -> bool:
        try:
            client = self._get_client()
            client.table('affiliate_commissions').update({
                'status': status,
                'updated_at': datetime.now(timezone.utc).isoformat(),
            }).eq('id', commission_id).execute()
            return True
        except Exception as e:
            logger.error("[STRIPE] commission status update failed: commission=%s error=%s", commission_id, e)
            return False

    # stripe_orders
    async def insert_order(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = client.table('stripe_orders').insert(record).execute()
            return self._first(result) or {}
        except Exception as e:
            logger.error("[STRIPE] order insert failed: session=%s error=%s", record.get('checkout_session_id'), e)
            return None

    # stripe_invoices + storage
    async def get_invoice_archive(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('stripe_invoices')
                .select('*')
                .eq('stripe_invoice_id', invoice_id)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error("[STRIPE] invoice archive lookup failed: invoice=%s error=%s", invoice_id, e)
            return None

    async def upsert_invoice_archive(self, record: Dict[str, Any]) -> None:
        try:
            client = self._get_client()
            client.table('stripe_invoices').upsert(record, on_conflict='stripe_invoice_id').execute()
        except Exception as e:
            raise BillingStoreError(
                f"Failed to archive invoice {record.get('stripe_invoice_id')}",
                table='stripe_invoices',
                code=self._error_code(e),
            ) from e

    async def list_invoices_with_pdf(self) -> List[Dict[str, Any]]:
        try:
            client = self._get_client()
            result = (
                client.table('stripe_invoices')
                .select('stripe_invoice_id, invoice_pdf_url, pdf_storage_path, pdf_cached_at, '
                        'updated_at, created_at_stripe, invoice_number, status')
                .in_('status', list(PDF_CACHEABLE_STATUSES))
                .not_.is_('invoice_pdf_url', 'null')
                .order('created_at_stripe', desc=True)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error("[STRIPE] invoice PDF backlog lookup failed: %s", e)
            return []

    async def upload_invoice_pdf(self, storage_path: str, content: bytes) -> None:
        client = self._get_client()
        client.storage.from_(self.storage_bucket).upload(
            storage_path,
            content,
            {'content-type': 'application/pdf', 'upsert': 'true'},
        )

    async def mark_invoice_pdf_cached(self, invoice_id: str, storage_path: str, cached_at: str) -> bool:
        try:
            client = self._get_client()
            client.table('stripe_invoices').update({
                'pdf_storage_path': storage_path,
                'pdf_cached_at': cached_at,
            }).eq('stripe_invoice_id', invoice_id).execute()
            return True
        except Exception as e:
            logger.error("[STRIPE] invoice PDF cache stamp failed: invoice=%s error=%s", invoice_id, e)
            return False

    async def create_signed_pdf_url(self, storage_path: str, expires_in: int = 60) -> Optional[str]:
        try:
            client = self._get_client()
            signed = client.storage.from_(self.storage_bucket).create_signed_url(storage_path, expires_in)
            if isinstance(signed, dict):
                return signed.get('signedURL') or signed.get('signedUrl')
            return None
        except Exception as e:
            logger.error("[STRIPE] signed URL creation failed: path=%s error=%s", storage_path, e)
            return None

    # admin_users / system_logs
    async def is_admin_user(self, user_id: str) -> bool:
        try:
            client = self._get_client()
            result = client.table('admin_users').select('user_id').eq('user_id', user_id).limit(1).execute()
            return bool(result.data)
        except Exception as e:
            logger.error("Admin lookup failed: user=%s error=%s", user_id, e)
            return False

    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict[str, Any] = None) -> bool:
        """Write a row to system_logs"""
        try:
            log_data = {
                'user_id': user_id,
                'event_type': event_type,
                'event_data': event_data or {},
            }

            result = self._get_client().table('system_logs').insert(log_data).execute()
            return len(result.data) > 0
        except Exception as e:
            logger.error("System log write failed: %s", e)
            return False

    async def record_webhook_event(self, provider: str, event_id: str, status: str,
                                   payload: Dict[str, Any] = None) -> bool:
        """Record the outcome of a processed webhook event"""
        if not event_id:
            return False

        event_payload: Dict[str, Any] = {
            'event_id': event_id,
            'status': status,
        }
        if payload:
            event_payload['payload'] = payload

        return await self.log_system_event(event_type=f"{provider}_webhook", event_data=event_payload)
