"""
Service interfaces
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List


class IAuthService(ABC):
    """Authentication service interface"""

    @abstractmethod
    async def verify_auth(self, credentials) -> Any:
        """Verify a bearer token and return the user"""
        pass


class IBillingStore(ABC):
    """Billing store interface (Supabase tables, RPC and storage)"""

    # stripe_subscriptions
    @abstractmethod
    async def upsert_subscription_snapshot(self, record: Dict[str, Any]) -> None:
        """Create or replace the snapshot keyed by customer_id"""
        pass

    # billing_info / stripe_customers
    @abstractmethod
    async def get_billing_info_by_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_billing_info_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_customer_user_id(self, customer_id: str) -> Optional[str]:
        """Map a Stripe customer id to the internal account id"""
        pass

    @abstractmethod
    async def link_billing_customer(self, user_id: str, customer_id: str) -> bool:
        pass

    @abstractmethod
    async def update_billing_info(self, user_id: str, update_data: Dict[str, Any]) -> None:
        pass

    # affiliate_referrals / affiliates
    @abstractmethod
    async def get_referral_by_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_referral_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def update_referral(self, referral_id: str, update_data: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    async def increment_referral_lifetime_value(self, referral_id: str, amount: float) -> bool:
        """Atomic increment executed by the database"""
        pass

    @abstractmethod
    async def get_affiliate(self, affiliate_id: str) -> Optional[Dict[str, Any]]:
        pass

    # affiliate_commissions
    @abstractmethod
    async def get_commission_by_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_commission_by_invoice(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        """Original (non-compensating) commission for an invoice"""
        pass

    @abstractmethod
    async def insert_commission(self, record: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_commission_status(self, commission_id: str, status: str) -> bool:
        pass

    # stripe_orders
    @abstractmethod
    async def insert_order(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        pass

    # stripe_invoices + storage
    @abstractmethod
    async def get_invoice_archive(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def upsert_invoice_archive(self, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def list_invoices_with_pdf(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def upload_invoice_pdf(self, storage_path: str, content: bytes) -> None:
        pass

    @abstractmethod
    async def mark_invoice_pdf_cached(self, invoice_id: str, storage_path: str, cached_at: str) -> bool:
        pass

    @abstractmethod
    async def create_signed_pdf_url(self, storage_path: str, expires_in: int = 60) -> Optional[str]:
        pass

    # admin_users / system_logs
    @abstractmethod
    async def is_admin_user(self, user_id: str) -> bool:
        pass

    @abstractmethod
    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict[str, Any] = None) -> bool:
        """Write a row to system_logs"""
        pass

    @abstractmethod
    async def record_webhook_event(self, provider: str, event_id: str, status: str,
                                   payload: Dict[str, Any] = None) -> bool:
        pass
