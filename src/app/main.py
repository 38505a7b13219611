from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import signal
import asyncio
from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone

# Core imports
from core.config import get_settings
from core.factory import ServiceFactory
from core.middleware import setup_exception_handlers
from core.scheduler import initialize_scheduler, cleanup_scheduler
from core.responses import success_response

# Routers
from routers import billing_admin_router, stripe_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# every client and service is built once, here
ServiceFactory.configure_dependencies(settings)

db_helper = ServiceFactory.get_db_helper()
auth_service = ServiceFactory.get_auth_service()
invoice_archive_service = ServiceFactory.get_invoice_archive_service()
webhook_task_runner = ServiceFactory.get_webhook_task_runner()

shutdown_event = asyncio.Event()


def signal_handler(signum, frame):
    """Handle SIGINT / SIGTERM"""
    shutdown_event.set()
    import sys
    sys.exit(0)

@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        await db_helper.log_system_event(
            event_type='server_start',
            event_data={'status': 'success', 'timestamp': datetime.now(timezone.utc).isoformat()}
        )
    except Exception as e:
        logger.error("Failed to record server start: %s", e)

    if settings.INVOICE_SYNC_ENABLED and ServiceFactory.get_stripe_billing_client():
        try:
            await initialize_scheduler(invoice_archive_service, db_helper, settings.INVOICE_SYNC_MONTHS)
        except Exception as e:
            logger.error("Background scheduler failed to start: %s", e)

    yield

    try:
        await cleanup_scheduler()
    except Exception as e:
        logger.error("Background scheduler failed to stop: %s", e)

    try:
        await db_helper.log_system_event(
            event_type='server_stop',
            event_data={'status': 'success', 'timestamp': datetime.now(timezone.utc).isoformat()}
        )
    except Exception as e:
        logger.error("Failed to record server stop: %s", e)

app = FastAPI(
    title="Billing Webhook Server",
    description="Stripe webhook reconciliation for subscriptions, commissions and invoices",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG
)

setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

stripe_router.set_dependencies(webhook_task_runner)
billing_admin_router.set_dependencies(auth_service, invoice_archive_service)

@app.get("/health")
async def health_check():
    return success_response(
        data={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "1.0.0",
            "stripe_configured": ServiceFactory.get_stripe_billing_client() is not None,
            "environment": "development" if settings.DEBUG else "production"
        },
        message="ok"
    )

app.include_router(stripe_router.router)
app.include_router(billing_admin_router.router)

if __name__ == "__main__":
    try:
        import threading
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
        else:
            logger.warning("Not on the main thread, skipping signal handler registration")
    except Exception as e:
        logger.warning("Signal handler registration failed, deferring to uvicorn: %s", e)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG
    )
