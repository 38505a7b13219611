"""
Service factory - dependency injection setup
"""
from typing import Optional

from supabase import Client, create_client
import logging

from core.config import Settings, get_settings
from core.container import container
from core.interfaces import IAuthService, IBillingStore
from database_helper import DatabaseHelper
from services.auth_service import AuthService
from services.billing_info_service import BillingInfoService
from services.commission_service import CommissionService
from services.invoice_archive_service import InvoiceArchiveService
from services.stripe_billing_client import StripeBillingClient
from services.stripe_webhook_service import StripeWebhookService
from services.subscription_sync_service import SubscriptionSyncService
from services.webhook_task_runner import WebhookTaskRunner

logger = logging.getLogger(__name__)


class ServiceFactory:
    """Registers and builds the billing services"""

    @staticmethod
    def configure_dependencies(settings: Optional[Settings] = None):
        """Populate the DI container; every client is built exactly once here"""
        settings = settings or get_settings()

        # external clients
        supabase_admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        supabase_auth = supabase_admin
        if settings.SUPABASE_ANON_KEY:
            supabase_auth = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        container.register_singleton(Client, supabase_admin)

        # Stripe REST client
        stripe_client = None
        if settings.STRIPE_SECRET_KEY:
            stripe_client = StripeBillingClient(
                api_key=settings.STRIPE_SECRET_KEY,
                base_url=settings.STRIPE_API_BASE_URL,
            )
        else:
            logger.warning("[STRIPE] STRIPE_SECRET_KEY is not set, subscription sync and PDF caching are disabled")

        ServiceFactory.register_services(
            DatabaseHelper(supabase_admin, storage_bucket=settings.INVOICE_STORAGE_BUCKET),
            stripe_client,
            settings,
        )

        auth_service = AuthService(supabase_auth, container.get(IBillingStore))
        container.register_singleton(IAuthService, auth_service)
        container.register_singleton(AuthService, auth_service)

    @staticmethod
    def register_services(
        db_helper: IBillingStore,
        stripe_client: Optional[StripeBillingClient],
        settings: Settings,
    ):
        """Wire the billing services around an already built store and Stripe client"""
        container.clear_cache()
        container.register_singleton(IBillingStore, db_helper)
        container.register_singleton(DatabaseHelper, db_helper)  # concrete lookup
        # None when no secret key is configured; Optional dependencies resolve to it
        container.register_singleton(StripeBillingClient, stripe_client)

        container.register_service(BillingInfoService, BillingInfoService)
        container.register_service(InvoiceArchiveService, InvoiceArchiveService)

        commission_service = CommissionService(db_helper, hold_days=settings.COMMISSION_HOLD_DAYS)
        container.register_singleton(CommissionService, commission_service)

        sync_service = None
        if stripe_client is not None:
            sync_service = SubscriptionSyncService(
                db_helper,
                stripe_client,
                container.get(BillingInfoService),
            )
            container.register_singleton(SubscriptionSyncService, sync_service)

        webhook_service = StripeWebhookService(
            db_helper,
            container.get(InvoiceArchiveService),
            commission_service,
            sync_service,
        )
        container.register_singleton(StripeWebhookService, webhook_service)

        task_runner = WebhookTaskRunner(
            webhook_service,
            db_helper,
            max_attempts=settings.WEBHOOK_TASK_MAX_ATTEMPTS,
            retry_delay=settings.WEBHOOK_TASK_RETRY_DELAY,
        )
        container.register_singleton(WebhookTaskRunner, task_runner)

    @staticmethod
    def get_auth_service() -> IAuthService:
        return container.get(IAuthService)

    @staticmethod
    def get_db_helper() -> IBillingStore:
        return container.get(IBillingStore)

    @staticmethod
    def get_invoice_archive_service() -> InvoiceArchiveService:
        return container.get(InvoiceArchiveService)

    @staticmethod
    def get_webhook_service() -> StripeWebhookService:
        return container.get(StripeWebhookService)

    @staticmethod
    def get_webhook_task_runner() -> WebhookTaskRunner:
        return container.get(WebhookTaskRunner)

    @staticmethod
    def get_stripe_billing_client() -> StripeBillingClient | None:
        """Stripe client, or None when no secret key is configured"""
        try:
            return container.get(StripeBillingClient)
        except ValueError:
            return None
