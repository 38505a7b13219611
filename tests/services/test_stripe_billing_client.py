"""StripeBillingClient unit tests"""
import asyncio
from typing import Any, Dict, List

import httpx
import pytest
import stripe

from services.stripe_billing_client import StripeAPIError, StripeBillingClient


class _DummyListService:
    """Stand-in for a StripeClient list service (subscriptions, invoices)"""

    def __init__(self, results: List[Any]) -> None:
        self._results = list(results)
        self.calls: List[Dict[str, Any]] = []

    def list(self, params=None, options=None):
        self.calls.append(params)
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return stripe.ListObject.construct_from(result, "sk_test_123")


class _DummyStripeClient:
    def __init__(self, subscriptions=(), invoices=()) -> None:
        self.subscriptions = _DummyListService(subscriptions)
        self.invoices = _DummyListService(invoices)


class _DummyAsyncClient:
    """Minimal stand-in for httpx.AsyncClient"""

    def __init__(self, response, calls: List[str]) -> None:
        self._response = response
        self._calls = calls

    async def __aenter__(self) -> "_DummyAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    async def get(self, url: str) -> httpx.Response:
        self._calls.append(url)
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


def _patch_async_client(monkeypatch, response) -> List[str]:
    calls: List[str] = []
    monkeypatch.setattr(
        "services.stripe_billing_client.httpx.AsyncClient",
        lambda *args, **kwargs: _DummyAsyncClient(response, calls),
    )
    return calls


def _list_page(data, has_more=False) -> Dict[str, Any]:
    return {"object": "list", "url": "/v1/test", "data": data, "has_more": has_more}


def _client(sdk) -> StripeBillingClient:
    return StripeBillingClient(api_key="sk_test_123", stripe_client=sdk)


def test_list_customer_subscriptions_expands_payment_method():
    """Subscriptions are listed with any status and the payment method expanded"""

    subscription = {
        "id": "sub_1",
        "object": "subscription",
        "status": "active",
        "default_payment_method": {"id": "pm_1", "object": "payment_method", "card": {"brand": "visa", "last4": "4242"}},
    }
    sdk = _DummyStripeClient(subscriptions=[_list_page([subscription])])

    result = asyncio.run(_client(sdk).list_customer_subscriptions("cus_1"))

    assert result[0]["id"] == "sub_1"
    assert type(result[0]) is dict
    assert result[0]["default_payment_method"]["card"]["last4"] == "4242"
    assert sdk.subscriptions.calls == [{
        "customer": "cus_1",
        "limit": 1,
        "status": "all",
        "expand": ["data.default_payment_method"],
    }]


def test_list_invoices_pagination_params():
    invoice = {"id": "in_10", "object": "invoice", "status": "paid"}
    sdk = _DummyStripeClient(invoices=[_list_page([invoice], has_more=True)])

    page = asyncio.run(_client(sdk).list_invoices(created_gte=1700000000, starting_after="in_9"))

    assert page["has_more"] is True
    assert [row["id"] for row in page["data"]] == ["in_10"]
    assert sdk.invoices.calls == [{"limit": 100, "created": {"gte": 1700000000}, "starting_after": "in_9"}]


def test_list_invoices_first_page_has_no_cursor():
    sdk = _DummyStripeClient(invoices=[_list_page([])])

    page = asyncio.run(_client(sdk).list_invoices())

    assert page == {"data": [], "has_more": False}
    assert sdk.invoices.calls == [{"limit": 100}]


def test_stripe_error_is_mapped():
    error = stripe.InvalidRequestError(
        "No such customer: 'cus_x'",
        "customer",
        code="resource_missing",
        http_status=404,
    )
    sdk = _DummyStripeClient(subscriptions=[error])

    with pytest.raises(StripeAPIError) as excinfo:
        asyncio.run(_client(sdk).list_customer_subscriptions("cus_x"))

    assert excinfo.value.status_code == 404
    assert excinfo.value.code == "resource_missing"
    assert "No such customer" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, stripe.InvalidRequestError)


def test_download_file_returns_bytes(monkeypatch):
    calls = _patch_async_client(monkeypatch, httpx.Response(status_code=200, content=b"%PDF-1.7"))

    content = asyncio.run(_client(_DummyStripeClient()).download_file("https://pay.stripe.com/invoice/in_1/pdf"))

    assert content == b"%PDF-1.7"
    assert calls == ["https://pay.stripe.com/invoice/in_1/pdf"]


def test_download_file_http_error(monkeypatch):
    _patch_async_client(monkeypatch, httpx.Response(status_code=403, content=b""))

    with pytest.raises(StripeAPIError) as excinfo:
        asyncio.run(_client(_DummyStripeClient()).download_file("https://pay.stripe.com/invoice/in_1/pdf"))

    assert excinfo.value.code == "download_failed"
    assert excinfo.value.status_code == 403


def test_download_file_network_error(monkeypatch):
    _patch_async_client(monkeypatch, httpx.ConnectError("connection refused"))

    with pytest.raises(StripeAPIError) as excinfo:
        asyncio.run(_client(_DummyStripeClient()).download_file("https://pay.stripe.com/invoice/in_1/pdf"))

    assert excinfo.value.code == "network_error"


def test_builds_sdk_client_from_key():
    client = StripeBillingClient(api_key="sk_test_123", base_url="https://stripe.test/")

    assert isinstance(client._stripe, stripe.StripeClient)


def test_missing_api_key_error():
    """A blank key raises a clear ValueError"""

    with pytest.raises(ValueError) as excinfo:
        StripeBillingClient(api_key=" ")

    assert "Stripe secret key" in str(excinfo.value)
