"""Stripe webhook endpoint: signature handling and acknowledgement"""
import hashlib
import hmac
import json
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mocks import event_payload, invoice_payload
from routers import stripe_router
from schemas.stripe_events import InvoiceEvent

SECRET = "whsec_test_secret"
URL = "/api/v1/webhooks/stripe"


class DummyTaskRunner:
    def __init__(self):
        self.events = []

    async def process(self, event):
        self.events.append(event)


def _sign(body: str, secret: str = SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", SECRET)
    task_runner = DummyTaskRunner()
    stripe_router.set_dependencies(task_runner)
    yield task_runner
    stripe_router.set_dependencies(None)


@pytest.fixture
def client(runner):
    app = FastAPI()
    app.include_router(stripe_router.router)
    return TestClient(app)


def _body() -> str:
    return json.dumps(event_payload("invoice.paid", invoice_payload(), "evt_router"))


def test_valid_signature_acknowledges_and_schedules(client, runner):
    body = _body()

    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert len(runner.events) == 1
    assert isinstance(runner.events[0], InvoiceEvent)
    assert runner.events[0].event_id == "evt_router"


def test_missing_signature_is_rejected(client, runner):
    response = client.post(URL, content=_body())

    assert response.status_code == 400
    assert response.json() == {"error": "No signature found"}
    assert runner.events == []


def test_invalid_signature_is_rejected_with_reason(client, runner):
    body = _body()

    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body, secret="whsec_other")})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Webhook signature verification failed")
    assert runner.events == []


def test_tampered_body_is_rejected(client, runner):
    body = _body()
    tampered = body.replace("11900", "1")

    response = client.post(URL, content=tampered, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 400
    assert runner.events == []


def test_stale_timestamp_is_rejected(client, runner):
    body = _body()
    header = _sign(body, timestamp=int(time.time()) - 3600)

    response = client.post(URL, content=body, headers={"Stripe-Signature": header})

    assert response.status_code == 400
    assert runner.events == []


def test_missing_secret_fails_closed(client, runner, monkeypatch):
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    body = _body()

    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 500
    assert runner.events == []


def test_preflight_and_method_not_allowed(client):
    assert client.options(URL).status_code == 204
    assert client.get(URL).status_code == 405
    assert client.put(URL).status_code == 405


def test_non_utf8_body_is_rejected_as_unauthenticated(client, runner):
    response = client.post(URL, content=b"\xff\xfe{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Webhook signature verification failed")
    assert runner.events == []


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        json.dumps({"type": "invoice.paid", "data": {"object": {}}}),
    ],
)
def test_signed_but_undecodable_payload(client, runner, body):
    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid event payload"}
    assert runner.events == []


def test_missing_task_runner_returns_500(client, runner):
    stripe_router.set_dependencies(None)
    body = _body()

    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing unavailable"}
    assert runner.events == []


def test_unexpected_error_returns_500_with_message(client, runner, monkeypatch):
    def _explode(payload):
        raise RuntimeError("decoder crashed")

    monkeypatch.setattr(stripe_router, "decode_event", _explode)
    body = _body()

    response = client.post(URL, content=body, headers={"Stripe-Signature": _sign(body)})

    assert response.status_code == 500
    assert response.json() == {"error": "decoder crashed"}
    assert runner.events == []
