"""
Invoice archive: a local mirror of Stripe invoice metadata and PDFs.

Archival is best-effort bookkeeping. Nothing raised here may fail the event
that triggered it, so every failure is logged and swallowed.
"""
import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.base_service import BaseService
from core.interfaces import IBillingStore
from core.responses import NotFoundException
from database_helper import DatabaseHelper, PDF_CACHEABLE_STATUSES
from schemas.stripe_events import InvoiceObject
from services.stripe_billing_client import StripeBillingClient

PDF_CONCURRENCY = 4
SIGNED_URL_TTL_SECONDS = 60
MAX_REPORTED_ERRORS = 20

# columns whose change means the stored PDF is stale
_CONTENT_FIELDS = (
    "invoice_number",
    "status",
    "currency",
    "total",
    "tax",
    "subtotal",
    "invoice_pdf_url",
)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def _epoch_to_iso(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def build_archive_record(invoice: InvoiceObject) -> Dict[str, Any]:
    """Normalized stripe_invoices row, without the cache columns"""
    return {
        "stripe_invoice_id": invoice.id,
        "stripe_customer_id": invoice.customer_id,
        "invoice_number": invoice.number,
        "status": invoice.status or "draft",
        "currency": invoice.currency or "eur",
        "total": invoice.total or 0,
        "tax": invoice.tax,
        "subtotal": invoice.subtotal,
        "created_at_stripe": _epoch_to_iso(invoice.created),
        "period_start": _epoch_to_iso(invoice.period_start),
        "period_end": _epoch_to_iso(invoice.period_end),
        "customer_email": invoice.customer_email,
        "customer_name": invoice.customer_name,
        "hosted_invoice_url": invoice.hosted_invoice_url,
        "invoice_pdf_url": invoice.invoice_pdf,
        "raw": {
            "id": invoice.id,
            "number": invoice.number,
            "status": invoice.status,
            "total": invoice.total,
            "tax": invoice.tax,
            "subtotal": invoice.subtotal,
            "currency": invoice.currency,
            "lines_count": invoice.lines_count,
        },
    }


def build_pdf_storage_path(invoice_id: str, invoice_number: Optional[str], created_at: Optional[str]) -> str:
    """stripe/invoices/YYYY/MM/<invoice id>_<sanitized number>.pdf"""
    created = DatabaseHelper._parse_iso_datetime(created_at) or datetime.now(timezone.utc)
    safe_name = _UNSAFE_NAME_CHARS.sub("_", invoice_number or invoice_id)
    return f"stripe/invoices/{created.year:04d}/{created.month:02d}/{invoice_id}_{safe_name}.pdf"


def pdf_cache_is_fresh(row: Optional[Dict[str, Any]]) -> bool:
    """True when the cached PDF is at least as new as the row's last update"""
    if not row or not row.get("pdf_storage_path"):
        return False
    cached_at = DatabaseHelper._parse_iso_datetime(row.get("pdf_cached_at"))
    updated_at = DatabaseHelper._parse_iso_datetime(row.get("updated_at"))
    if cached_at is None:
        return False
    if updated_at is None:
        return True
    return cached_at >= updated_at


def _content_changed(existing: Dict[str, Any], record: Dict[str, Any]) -> bool:
    return any(existing.get(field) != record.get(field) for field in _CONTENT_FIELDS)


class InvoiceArchiveService(BaseService):
    """Invoice archiver"""

    def __init__(self, db_helper: IBillingStore, stripe_client: Optional[StripeBillingClient] = None):
        super().__init__(db_helper)
        self.stripe_client = stripe_client

    async def archive_invoice(self, invoice: InvoiceObject) -> Dict[str, Any]:
        """Upsert the invoice row and cache its PDF when it is in a stable state"""
        try:
            merged = await self._upsert_row(invoice)
        except Exception as e:
            self.logger.error("[STRIPE] invoice archive failed: invoice=%s error=%s", invoice.id, e)
            return {"archived": False, "pdf_cached": False}

        pdf_cached = False
        if invoice.invoice_pdf and merged.get("status") in PDF_CACHEABLE_STATUSES:
            pdf_cached = await self.cache_invoice_pdf(merged)

        return {"archived": True, "pdf_cached": pdf_cached}

    async def _upsert_row(self, invoice: InvoiceObject) -> Dict[str, Any]:
        """Upsert the normalized row and return it merged over the stored one"""
        existing = await self.db_helper.get_invoice_archive(invoice.id)
        record = build_archive_record(invoice)

        # updated_at only moves when the invoice content moves, so it can
        # be compared against pdf_cached_at
        if existing is None or _content_changed(existing, record):
            record["updated_at"] = self._now_iso()

        await self.db_helper.upsert_invoice_archive(record)
        return {**(existing or {}), **record}

    async def cache_invoice_pdf(self, row: Dict[str, Any]) -> bool:
        """Mirror the Stripe-hosted PDF into storage unless the cached copy is fresh"""
        invoice_id = row.get("stripe_invoice_id")
        try:
            if pdf_cache_is_fresh(row):
                self.logger.debug("[STRIPE] cached PDF is fresh for invoice %s", invoice_id)
                return False

            if not self.stripe_client:
                self.logger.warning("[STRIPE] no Stripe client configured, PDF not cached: %s", invoice_id)
                return False

            storage_path = build_pdf_storage_path(
                invoice_id, row.get("invoice_number"), row.get("created_at_stripe")
            )
            content = await self.stripe_client.download_file(row["invoice_pdf_url"])
            await self.db_helper.upload_invoice_pdf(storage_path, content)
            await self.db_helper.mark_invoice_pdf_cached(invoice_id, storage_path, self._now_iso())

            self.logger.info("[STRIPE] cached invoice PDF %s at %s", invoice_id, storage_path)
            return True
        except Exception as e:
            self.logger.error("[STRIPE] invoice PDF cache failed: invoice=%s error=%s", invoice_id, e)
            return False

    async def sync_recent_invoices(self, months: int = 18) -> Dict[str, Any]:
        """Archive every invoice created in the last ``months`` months and fill the PDF cache"""
        if not self.stripe_client:
            raise RuntimeError("Stripe client is not configured")

        cutoff = int(time.time()) - months * 30 * 24 * 60 * 60
        synced = 0
        errors: List[str] = []
        starting_after: Optional[str] = None

        while True:
            page = await self.stripe_client.list_invoices(created_gte=cutoff, starting_after=starting_after)
            invoices = page.get("data") or []

            for raw in invoices:
                try:
                    await self._upsert_row(InvoiceObject.model_validate(raw))
                    synced += 1
                except Exception as e:
                    errors.append(f"upsert {raw.get('id')}: {e}")

            if not page.get("has_more") or not invoices:
                break
            starting_after = invoices[-1].get("id")

        rows = await self.db_helper.list_invoices_with_pdf()
        pending = [row for row in rows if not pdf_cache_is_fresh(row)]

        pdfs_cached = 0
        for start in range(0, len(pending), PDF_CONCURRENCY):
            batch = pending[start:start + PDF_CONCURRENCY]
            results = await asyncio.gather(*(self.cache_invoice_pdf(row) for row in batch))
            for row, cached in zip(batch, results):
                if cached:
                    pdfs_cached += 1
                else:
                    errors.append(f"pdf {row.get('stripe_invoice_id')}: not cached")

        result = {
            "synced": synced,
            "pdfs_cached": pdfs_cached,
            "pdfs_pending": len(pending),
            "errors_count": len(errors),
            "errors": errors[:MAX_REPORTED_ERRORS],
        }
        self.logger.info("[STRIPE] invoice sync complete: %s", result)
        return result

    async def get_invoice_pdf_link(self, invoice_id: str) -> Dict[str, str]:
        """Signed storage URL for the cached PDF, else the Stripe-hosted page"""
        row = await self.db_helper.get_invoice_archive(invoice_id)
        if not row:
            raise NotFoundException("Invoice not found")

        storage_path = row.get("pdf_storage_path")
        if storage_path:
            signed_url = await self.db_helper.create_signed_pdf_url(storage_path, SIGNED_URL_TTL_SECONDS)
            if signed_url:
                return {"url": signed_url, "source": "storage"}

        hosted_url = row.get("hosted_invoice_url")
        if hosted_url:
            return {"url": hosted_url, "source": "stripe"}

        raise NotFoundException("No PDF available for this invoice")
