"""ServiceFactory wiring"""
import pytest

from core.config import Settings
from core.factory import ServiceFactory
from mocks import MockBillingStore, MockStripeClient


@pytest.fixture
def settings():
    return Settings(
        SUPABASE_URL="https://project.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-role",
        COMMISSION_HOLD_DAYS=7,
        WEBHOOK_TASK_MAX_ATTEMPTS=5,
    )


def test_services_share_store_and_stripe_client(settings):
    store = MockBillingStore()
    stripe_client = MockStripeClient()

    ServiceFactory.register_services(store, stripe_client, settings)

    webhook_service = ServiceFactory.get_webhook_service()
    archive_service = ServiceFactory.get_invoice_archive_service()
    runner = ServiceFactory.get_webhook_task_runner()

    assert ServiceFactory.get_db_helper() is store
    assert ServiceFactory.get_stripe_billing_client() is stripe_client
    assert archive_service.stripe_client is stripe_client
    assert webhook_service.invoice_archive_service is archive_service
    assert webhook_service.commission_service.hold_days == 7
    assert webhook_service.subscription_sync_service is not None
    assert runner.webhook_service is webhook_service
    assert runner.max_attempts == 5


def test_without_stripe_client_sync_is_disabled(settings):
    ServiceFactory.register_services(MockBillingStore(), MockStripeClient(), settings)
    ServiceFactory.register_services(MockBillingStore(), None, settings)

    assert ServiceFactory.get_stripe_billing_client() is None
    assert ServiceFactory.get_invoice_archive_service().stripe_client is None
    assert ServiceFactory.get_webhook_service().subscription_sync_service is None


def test_settings_reject_negative_hold_days():
    with pytest.raises(ValueError):
        Settings(
            SUPABASE_URL="https://project.supabase.co",
            SUPABASE_SERVICE_ROLE_KEY="service-role",
            COMMISSION_HOLD_DAYS=-1,
        )
