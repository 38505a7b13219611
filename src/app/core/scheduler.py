"""
Background scheduler
Daily Stripe invoice sync
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

RETRY_AFTER_ERROR_SECONDS = 3600


class BackgroundScheduler:
    def __init__(self, invoice_archive_service, db_helper, sync_months: int = 18):
        self.invoice_archive_service = invoice_archive_service
        self.db_helper = db_helper
        self.sync_months = sync_months
        self.running = False
        self.tasks = []

    async def start(self):
        if self.running:
            return

        self.running = True
        logger.info("Background scheduler started")

        # invoice sync, every day at midnight UTC
        self.tasks.append(
            asyncio.create_task(self._daily_invoice_sync_scheduler())
        )

    async def stop(self):
        if not self.running:
            return

        self.running = False
        logger.info("Background scheduler stopping")

        for task in self.tasks:
            if not task.done():
                task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        self.tasks.clear()

    @staticmethod
    def _seconds_until_midnight(now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        next_midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return (next_midnight - now).total_seconds()

    async def _daily_invoice_sync_scheduler(self):
        while self.running:
            try:
                sleep_seconds = self._seconds_until_midnight()
                logger.info("Next invoice sync in %.0f seconds", sleep_seconds)
                await asyncio.sleep(sleep_seconds)

                if not self.running:
                    break

                await self.run_invoice_sync()

            except asyncio.CancelledError:
                logger.info("Invoice sync scheduler cancelled")
                break
            except Exception as e:
                logger.error("Invoice sync scheduler error: %s", e)
                await asyncio.sleep(RETRY_AFTER_ERROR_SECONDS)

    async def run_invoice_sync(self) -> dict:
        """Run one invoice sync pass and record it in system_logs"""
        try:
            logger.info("[STRIPE] scheduled invoice sync started")
            result = await self.invoice_archive_service.sync_recent_invoices(months=self.sync_months)

            await self.db_helper.log_system_event(
                event_type='stripe_invoice_sync',
                event_data={
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    **result,
                }
            )
            return {"success": True, **result}

        except Exception as e:
            logger.error("[STRIPE] scheduled invoice sync failed: %s", e)
            return {"success": False, "error": str(e)}


# global scheduler instance
scheduler: Optional[BackgroundScheduler] = None

def get_scheduler() -> Optional[BackgroundScheduler]:
    return scheduler

async def initialize_scheduler(invoice_archive_service, db_helper, sync_months: int = 18):
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(invoice_archive_service, db_helper, sync_months)
        await scheduler.start()
        logger.info("Background scheduler initialized")

async def cleanup_scheduler():
    global scheduler
    if scheduler:
        await scheduler.stop()
        scheduler = None
        logger.info("Background scheduler cleaned up")
