"""API endpoints for bulk imports and usage-sheet uploads."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, UploadFile, File, Form

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.schemas.batch import (
    BatchRequest,
    BatchReportResponse,
    UsageSheetReportResponse,
    FileImportResponse,
    InvoiceBatchResponse,
)
from marfanet.models.invoice import InvoiceBatch
from marfanet.services.batch_import_service import BatchImportService

router = APIRouter()

SUPPORTED_EXTENSIONS = ('.csv', '.xlsx', '.json')


@router.post("/batch", response_model=BatchReportResponse)
async def process_batch(
    data: BatchRequest,
    db: DB,
):
    """
    Import representatives or invoices.

    Each record is committed on its own; failing records are reported in
    `results` with their original payload and do not affect the others.
    """
    try:
        report = await BatchImportService(db).process_batch(data.records, data.kind)
    except LedgerEngineError as e:
        raise http_error(e)

    return report.to_dict()


@router.post("/usage-sheet", response_model=UsageSheetReportResponse)
async def import_usage_sheet(
    db: DB,
    file: UploadFile = File(...),
    batch_name: Optional[str] = Form(default=None),
):
    """
    Upload the monthly usage sheet (CSV or XLSX).

    One invoice is created per representative row under a new invoice
    batch. Unknown representatives are created from the sheet.
    """
    filename = file.filename or ""
    if not filename.lower().endswith(SUPPORTED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail="Unsupported file format. Please upload a CSV, Excel or JSON file."
        )

    file_bytes = await file.read()
    try:
        return await BatchImportService(db).import_usage_sheet(file_bytes, filename, batch_name)
    except LedgerEngineError as e:
        raise http_error(e)


@router.get("/file-imports", response_model=list[FileImportResponse])
async def list_file_imports(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Upload history, newest first."""
    items, _ = await BatchImportService(db).list_file_imports(skip=skip, limit=limit)
    return [FileImportResponse.model_validate(i) for i in items]


@router.get("/file-imports/{file_import_id}", response_model=FileImportResponse)
async def get_file_import(
    file_import_id: UUID,
    db: DB,
):
    """Get one upload with its row errors."""
    try:
        return await BatchImportService(db).get_file_import(file_import_id)
    except LedgerEngineError as e:
        raise http_error(e)


@router.get("/batches/{batch_id}", response_model=InvoiceBatchResponse)
async def get_invoice_batch(
    batch_id: UUID,
    db: DB,
):
    """Get an invoice batch with its derived totals."""
    batch = await db.get(InvoiceBatch, batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Invoice batch not found")
    return batch
