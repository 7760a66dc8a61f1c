"""Pydantic schemas for invoices and payments."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, model_validator

from marfanet.schemas.base import BaseResponseSchema, BaseCreateSchema
from marfanet.schemas.ledger import LedgerEntryResponse
from marfanet.core.enum_utils import create_lowercase_validator, VALID_SERVICE_CLASSES
from marfanet.models.representative import ServiceClass
from marfanet.models.invoice import InvoiceStatus


# ==================== Invoice Item Schemas ====================

class InvoiceItemCreate(BaseModel):
    """
    One subscription line.

    unit_price is optional: when omitted the line is priced from the
    representative's tier table (or the default table).
    """
    service_class: ServiceClass
    duration_months: int = Field(..., ge=1, le=6)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=300)

    _normalize_class = create_lowercase_validator('service_class', VALID_SERVICE_CLASSES)


class InvoiceItemResponse(BaseResponseSchema):
    """Response schema for InvoiceItem."""
    id: UUID
    line_number: int
    description: str
    service_class: str
    duration_months: int
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    commission_rate: Optional[Decimal] = None
    commission_amount: Optional[Decimal] = None


# ==================== Invoice Schemas ====================

class InvoiceCreate(BaseCreateSchema):
    """
    Schema for creating an invoice.

    invoice_number is the idempotency key; when omitted one is generated.
    base_amount, when given, must equal the sum of the line totals.
    """
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=50)
    representative_id: UUID
    items: List[InvoiceItemCreate] = Field(..., min_length=1)
    base_amount: Optional[Decimal] = Field(None, ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    due_date: Optional[datetime] = None
    batch_id: Optional[UUID] = None


class InvoiceResponse(BaseResponseSchema):
    """Response schema for Invoice."""
    id: UUID
    invoice_number: str
    representative_id: UUID
    batch_id: Optional[UUID] = None
    base_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    due_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    price_source: str
    telegram_sent: bool
    sent_to_representative: bool
    items: List[InvoiceItemResponse] = []
    created_at: datetime
    updated_at: datetime


class InvoiceListResponse(BaseModel):
    """Response for listing invoices."""
    items: List[InvoiceResponse]
    total: int
    skip: int = 0
    limit: int = 50


class InvoiceCancelRequest(BaseModel):
    """Cancellation request."""
    reason: Optional[str] = Field(None, max_length=500)


class MarkOverdueRequest(BaseModel):
    """Overdue sweep request. as_of defaults to now."""
    as_of: Optional[datetime] = None


class MarkOverdueResponse(BaseModel):
    """Overdue sweep result."""
    marked_count: int
    invoice_numbers: List[str]


class InvoiceFilter(BaseModel):
    """Filters for listing invoices."""
    representative_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    status: Optional[InvoiceStatus] = None
    due_before: Optional[datetime] = None


# ==================== Payment Schemas ====================

class PaymentCreate(BaseCreateSchema):
    """
    Schema for recording a payment.

    Either invoice_id (payment against an invoice) or representative_id
    (on-account payment) must be given.
    """
    invoice_id: Optional[UUID] = None
    representative_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None

    @model_validator(mode='after')
    def require_target(self):
        if self.invoice_id is None and self.representative_id is None:
            raise ValueError("Either invoice_id or representative_id is required")
        return self


class PaymentResponse(BaseResponseSchema):
    """Response schema for Payment."""
    id: UUID
    invoice_id: Optional[UUID] = None
    representative_id: UUID
    amount: Decimal
    payment_type: str
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class PaymentResultResponse(BaseModel):
    """Payment plus the side effects it caused."""
    payment: PaymentResponse
    invoice: Optional[InvoiceResponse] = None
    ledger_entry: LedgerEntryResponse
    warnings: List[str] = []
