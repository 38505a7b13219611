"""
Stripe Webhook Router

Handles Stripe webhook deliveries:
- signature verification against the raw body (fails closed without a secret)
- typed decoding of the verified event
- acknowledgement before any business work; dispatch runs as a background task
"""
import json
import logging
import os
from typing import Optional

import stripe
from fastapi import APIRouter, BackgroundTasks, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from schemas.stripe_events import decode_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks", "stripe"])

DEFAULT_TOLERANCE = 300

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

# injected from main.py
task_runner = None  # type: ignore


def set_dependencies(runner) -> None:
    """Called from main.py to inject the webhook task runner"""
    global task_runner
    task_runner = runner


def _webhook_secret() -> str:
    return os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()


def _tolerance() -> int:
    try:
        return int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", DEFAULT_TOLERANCE))
    except ValueError:
        return DEFAULT_TOLERANCE


@router.options("/stripe")
async def stripe_webhook_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
):
    try:
        if not stripe_signature:
            return JSONResponse({"error": "No signature found"}, status_code=400)

        secret = _webhook_secret()
        if not secret:
            logger.error("[STRIPE] STRIPE_WEBHOOK_SECRET is not configured, rejecting webhook")
            return JSONResponse({"error": "Webhook secret not configured"}, status_code=500)

        raw = await request.body()

        try:
            # Stripe signs the UTF-8 payload; undecodable bytes fail like a bad signature
            body = raw.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, stripe_signature, secret, _tolerance())
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.error("[STRIPE] webhook signature verification failed: %s", e)
            return JSONResponse(
                {"error": f"Webhook signature verification failed: {e}"},
                status_code=400,
            )

        try:
            event = decode_event(json.loads(body))
        except (ValueError, ValidationError) as e:
            logger.error("[STRIPE] verified webhook payload could not be decoded: %s", e)
            return JSONResponse({"error": "Invalid event payload"}, status_code=400)

        if task_runner is None:
            logger.error("[STRIPE] webhook task runner is not initialized")
            return JSONResponse({"error": "Webhook processing unavailable"}, status_code=500)

        logger.info("[STRIPE] webhook received: event=%s id=%s", event.event_type, event.event_id)
        background_tasks.add_task(task_runner.process, event)

        return JSONResponse({"received": True})
    except Exception as e:
        logger.error("[STRIPE] error processing webhook: %s", e, exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)
