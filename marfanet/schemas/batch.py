"""Pydantic schemas for batch imports and usage-sheet uploads."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field

from marfanet.schemas.base import BaseResponseSchema


class BatchRequest(BaseModel):
    """Raw records to import. Each record is validated on its own."""
    kind: Literal["representatives", "invoices"]
    records: List[Dict[str, Any]] = Field(..., min_length=1)


class RowResultResponse(BaseModel):
    """Outcome of one record: ok with the created id, or error with context to retry."""
    index: int
    ok: bool
    id: Optional[str] = None
    error_type: Optional[str] = None
    message: Optional[str] = None
    record: Optional[Dict[str, Any]] = None


class BatchReportResponse(BaseModel):
    """Partial-success report."""
    success: bool
    total_processed: int
    successful_inserts: int
    failed_inserts: int
    errors: List[str]
    results: List[RowResultResponse]
    message: str


class UsageSheetReportResponse(BaseModel):
    """Result of a usage-sheet upload."""
    file_import_id: UUID
    batch_id: UUID
    records_processed: int
    records_skipped: int
    records_failed: int
    invoices_created: int
    total_amount: Decimal
    errors: List[str]
    message: str


class FileImportResponse(BaseResponseSchema):
    """Response schema for FileImport."""
    id: UUID
    file_name: str
    batch_id: Optional[UUID] = None
    records_processed: int
    records_skipped: int
    records_failed: int
    status: str
    error_details: Optional[List[Any]] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class InvoiceBatchResponse(BaseResponseSchema):
    """Response schema for InvoiceBatch."""
    id: UUID
    batch_name: str
    file_name: str
    processing_status: str
    total_invoices: int
    total_amount: Decimal
    upload_date: datetime
