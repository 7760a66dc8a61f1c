"""API endpoints for the invoice lifecycle."""
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, status, Query

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.models.invoice import InvoiceStatus
from marfanet.schemas.invoice import (
    InvoiceCreate,
    InvoiceResponse,
    InvoiceListResponse,
    InvoiceCancelRequest,
    InvoiceFilter,
    MarkOverdueRequest,
    MarkOverdueResponse,
    PaymentResponse,
)
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService

router = APIRouter()


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    db: DB,
):
    """
    Create an invoice.

    Items without unit_price are priced from the representative's tier
    table, falling back to the default table. Posts one ledger debit and,
    for collaborator-sourced representatives, one commission accrual.

    A repeated invoice_number returns 409 and changes nothing.
    """
    try:
        invoice = await InvoiceLifecycleService(db).create_invoice(data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return invoice


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    representative_id: Optional[UUID] = None,
    batch_id: Optional[UUID] = None,
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    due_before: Optional[datetime] = None,
):
    """List invoices, newest first."""
    filters = InvoiceFilter(
        representative_id=representative_id,
        batch_id=batch_id,
        status=status_filter,
        due_before=due_before,
    )
    items, total = await InvoiceLifecycleService(db).list_invoices(filters, skip=skip, limit=limit)
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(i) for i in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/mark-overdue", response_model=MarkOverdueResponse)
async def mark_overdue_invoices(
    db: DB,
    data: Optional[MarkOverdueRequest] = None,
):
    """Move pending invoices past their due date to overdue."""
    invoices = await InvoiceLifecycleService(db).mark_overdue_invoices(
        data.as_of if data else None
    )
    await db.commit()
    return MarkOverdueResponse(
        marked_count=len(invoices),
        invoice_numbers=[invoice.invoice_number for invoice in invoices],
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    db: DB,
):
    """Get invoice by ID, with its items."""
    try:
        return await InvoiceLifecycleService(db).get_invoice(invoice_id)
    except LedgerEngineError as e:
        raise http_error(e)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: UUID,
    db: DB,
    data: Optional[InvoiceCancelRequest] = None,
):
    """
    Cancel a pending or overdue invoice.

    Writes a compensating ledger entry and reverses any accrued commission.
    Paid and cancelled invoices return 409.
    """
    try:
        invoice = await InvoiceLifecycleService(db).cancel_invoice(
            invoice_id, reason=data.reason if data else None
        )
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return invoice


@router.get("/{invoice_id}/payments", response_model=List[PaymentResponse])
async def get_invoice_payments(
    invoice_id: UUID,
    db: DB,
):
    """Payments recorded against an invoice."""
    service = InvoiceLifecycleService(db)
    try:
        await service.get_invoice(invoice_id)
    except LedgerEngineError as e:
        raise http_error(e)

    return [PaymentResponse.model_validate(p) for p in await service.get_payments(invoice_id)]
