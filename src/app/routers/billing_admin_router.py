"""
Admin-only billing API router
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.responses import ExternalServiceException, success_response
from schemas.admin import InvoicePdfLink, InvoiceSyncResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin", "billing"])

# injected services
auth_service = None  # type: ignore
invoice_archive_service = None  # type: ignore

security = HTTPBearer(auto_error=False)


def set_dependencies(auth_svc, invoice_archive_svc=None) -> None:
    """Called from main.py to inject service instances"""
    global auth_service, invoice_archive_service
    auth_service = auth_svc
    invoice_archive_service = invoice_archive_svc


async def authorize_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
):
    """Require a valid Supabase token belonging to an admin_users row"""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin authentication service is not initialized.",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token required.",
        )

    return await auth_service.verify_admin(credentials)


async def require_invoice_service():
    if invoice_archive_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Invoice archive service is not initialized.",
        )
    return invoice_archive_service


@router.post("/invoices/sync")
async def sync_invoices(
    months: int = Query(18, ge=1, le=36),
    admin_user=Depends(authorize_admin),
    service=Depends(require_invoice_service),
):
    logger.info("[STRIPE] invoice sync requested by admin %s (months=%s)", admin_user.id, months)
    try:
        result = await service.sync_recent_invoices(months=months)
    except Exception as e:
        logger.error("[STRIPE] invoice sync failed: %s", e)
        raise ExternalServiceException("Stripe", f"Invoice sync failed: {e}")

    await service.log_billing_action("invoice_sync", result, user_id=admin_user.id)
    return success_response(data=InvoiceSyncResult(**result), message="invoice sync complete")


@router.get("/invoices/{invoice_id}/pdf")
async def get_invoice_pdf(
    invoice_id: str = Path(..., min_length=1),
    admin_user=Depends(authorize_admin),
    service=Depends(require_invoice_service),
):
    link = await service.get_invoice_pdf_link(invoice_id)
    return success_response(data=InvoicePdfLink(**link), message="invoice pdf link")
