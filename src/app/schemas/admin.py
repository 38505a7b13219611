from __future__ import annotations

from pydantic import BaseModel, Field
from typing import List, Literal


class InvoiceSyncResult(BaseModel):
    synced: int = Field(0, ge=0, description="Invoices upserted into the archive")
    pdfs_cached: int = Field(0, ge=0, description="PDFs downloaded into storage")
    pdfs_pending: int = Field(0, ge=0, description="Archived PDFs that needed caching")
    errors_count: int = Field(0, ge=0)
    errors: List[str] = Field(default_factory=list, description="First errors only")


class InvoicePdfLink(BaseModel):
    url: str
    source: Literal["storage", "stripe"]
