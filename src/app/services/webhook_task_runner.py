"""
Background execution of verified Stripe webhook events

The webhook endpoint acknowledges first and hands the decoded event to
``WebhookTaskRunner.process`` through FastAPI ``BackgroundTasks``. Failed
runs are retried in process; an event that exhausts its attempts is written
to system_logs as a dead letter so it can be replayed from the Stripe
dashboard.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from core.interfaces import IBillingStore
from schemas.stripe_events import IgnoredEvent, WebhookEvent
from services.stripe_webhook_service import StripeWebhookService

logger = logging.getLogger(__name__)

PROVIDER = "stripe"
DEAD_LETTER_EVENT_TYPE = "stripe_webhook_dead_letter"


class WebhookTaskRunner:
    """At-least-once runner for dispatched webhook events"""

    def __init__(
        self,
        webhook_service: StripeWebhookService,
        db_helper: IBillingStore,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        self.webhook_service = webhook_service
        self.db_helper = db_helper
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = max(0.0, retry_delay)

    async def process(self, event: WebhookEvent) -> Optional[Dict[str, Any]]:
        """Run the dispatcher for ``event``; never raises"""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self.webhook_service.handle_event(event)
            except Exception as e:
                last_error = e
                logger.warning(
                    "[STRIPE] event %s (%s) failed on attempt %s/%s: %s",
                    event.event_id,
                    event.event_type,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt < self.max_attempts and self.retry_delay:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            status = "ignored" if isinstance(event, IgnoredEvent) else "processed"
            await self._record(event, status, attempt)
            return result

        await self._dead_letter(event, last_error)
        return None

    async def _record(self, event: WebhookEvent, status: str, attempts: int) -> None:
        try:
            await self.db_helper.record_webhook_event(
                PROVIDER,
                event.event_id,
                status,
                {"event_type": event.event_type, "attempts": attempts},
            )
        except Exception as e:
            logger.warning("[STRIPE] webhook event log failed for %s: %s", event.event_id, e)

    async def _dead_letter(self, event: WebhookEvent, error: Optional[Exception]) -> None:
        logger.error(
            "[STRIPE] event %s (%s) abandoned after %s attempts: %s",
            event.event_id,
            event.event_type,
            self.max_attempts,
            error,
        )
        try:
            await self.db_helper.log_system_event(
                event_type=DEAD_LETTER_EVENT_TYPE,
                event_data={
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "error": str(error) if error else None,
                    "attempts": self.max_attempts,
                },
            )
        except Exception as e:
            logger.error("[STRIPE] dead letter write failed for %s: %s", event.event_id, e)
