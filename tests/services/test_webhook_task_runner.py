"""WebhookTaskRunner retry and dead-letter behaviour"""
import pytest

from mocks import MockBillingStore, event_payload
from schemas.stripe_events import decode_event
from services.webhook_task_runner import WebhookTaskRunner


class DummyWebhookService:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0

    async def handle_event(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")
        return {"event_id": event.event_id, "ok": True}


def _event(event_type="customer.subscription.updated"):
    return decode_event(event_payload(event_type, {"id": "sub_1", "customer": "cus_1"}, "evt_42"))


@pytest.mark.asyncio
async def test_success_is_recorded():
    store = MockBillingStore()
    service = DummyWebhookService()

    result = await WebhookTaskRunner(service, store, retry_delay=0).process(_event())

    assert result == {"event_id": "evt_42", "ok": True}
    logs = store.events_of_type("stripe_webhook")
    assert logs[0]["event_data"]["event_id"] == "evt_42"
    assert logs[0]["event_data"]["status"] == "processed"


@pytest.mark.asyncio
async def test_retries_until_success():
    store = MockBillingStore()
    service = DummyWebhookService(failures=2)

    result = await WebhookTaskRunner(service, store, max_attempts=3, retry_delay=0).process(_event())

    assert result["ok"] is True
    assert service.calls == 3
    assert store.events_of_type("stripe_webhook")[0]["event_data"]["payload"]["attempts"] == 3
    assert store.events_of_type("stripe_webhook_dead_letter") == []


@pytest.mark.asyncio
async def test_exhausted_attempts_go_to_dead_letter():
    store = MockBillingStore()
    service = DummyWebhookService(failures=5)

    result = await WebhookTaskRunner(service, store, max_attempts=2, retry_delay=0).process(_event())

    assert result is None
    assert service.calls == 2
    dead = store.events_of_type("stripe_webhook_dead_letter")
    assert len(dead) == 1
    assert dead[0]["event_data"] == {
        "event_id": "evt_42",
        "event_type": "customer.subscription.updated",
        "error": "boom 2",
        "attempts": 2,
    }
    assert store.events_of_type("stripe_webhook") == []


@pytest.mark.asyncio
async def test_ignored_event_recorded_as_ignored():
    store = MockBillingStore()
    event = decode_event(event_payload("product.created", {"id": "prod_1"}, "evt_7"))

    await WebhookTaskRunner(DummyWebhookService(), store, retry_delay=0).process(event)

    assert store.events_of_type("stripe_webhook")[0]["event_data"]["status"] == "ignored"
