"""
Stripe API access for billing reconciliation

Subscriptions and invoices are read through the stripe SDK. Invoice PDFs are
plain downloads from the Stripe-hosted URL on the invoice.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import stripe

logger = logging.getLogger(__name__)


class StripeAPIError(RuntimeError):
    """Stripe call failure carrying the HTTP status and Stripe error code when known"""

    def __init__(self, message: str, status_code: int = 0, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @classmethod
    def from_stripe_error(cls, exc: stripe.StripeError) -> "StripeAPIError":
        return cls(exc.user_message or str(exc), exc.http_status or 0, code=exc.code)


class StripeBillingClient:
    """Reads the Stripe objects billing reconciliation needs"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 15.0,
        *,
        max_retries: int = 2,
        stripe_client: Optional[stripe.StripeClient] = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("Stripe secret key is not configured.")

        self.timeout = timeout
        # network retries and back-off happen inside the SDK
        self._stripe = stripe_client or stripe.StripeClient(
            api_key,
            base_addresses={"api": base_url.rstrip("/")},
            max_network_retries=max(0, int(max_retries)),
        )

    async def _call(self, operation: str, method: Callable[..., Any], params: Dict[str, Any]) -> Dict[str, Any]:
        """Run a blocking SDK call off the event loop and return the result as plain dicts"""
        try:
            result = await asyncio.to_thread(method, params=params)
        except stripe.StripeError as exc:
            error = StripeAPIError.from_stripe_error(exc)
            logger.error(
                "[STRIPE] %s failed: status=%s code=%s message=%s",
                operation,
                error.status_code,
                error.code,
                error,
            )
            raise error from exc
        return result.to_dict_recursive()

    async def list_customer_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        """Most recent subscriptions of a customer, any status, payment method expanded"""
        page = await self._call(
            "subscriptions.list",
            self._stripe.subscriptions.list,
            {
                "customer": customer_id,
                "limit": limit,
                "status": "all",
                "expand": ["data.default_payment_method"],
            },
        )
        return list(page.get("data") or [])

    async def list_invoices(
        self,
        *,
        created_gte: Optional[int] = None,
        starting_after: Optional[str] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """One page of invoices; the caller follows has_more"""
        params: Dict[str, Any] = {"limit": limit}
        if created_gte is not None:
            params["created"] = {"gte": created_gte}
        if starting_after:
            params["starting_after"] = starting_after

        page = await self._call("invoices.list", self._stripe.invoices.list, params)
        return {"data": list(page.get("data") or []), "has_more": bool(page.get("has_more"))}

    async def download_file(self, url: str) -> bytes:
        """Fetch a Stripe-hosted file such as an invoice PDF"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.RequestError as exc:
            raise StripeAPIError(f"Download failed: {exc}", code="network_error") from exc

        if response.status_code >= 400:
            raise StripeAPIError(
                f"HTTP {response.status_code}",
                response.status_code,
                code="download_failed",
            )
        return response.content
