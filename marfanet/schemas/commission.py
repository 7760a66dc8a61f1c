"""Pydantic schemas for commission records and collaborator payouts."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field

from marfanet.schemas.base import BaseResponseSchema, BaseCreateSchema
from marfanet.models.commission import RevenueType


class CommissionRecordResponse(BaseResponseSchema):
    """Response schema for CommissionRecord."""
    id: UUID
    collaborator_id: UUID
    representative_id: UUID
    invoice_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    reverses_record_id: Optional[UUID] = None
    revenue_type: str
    base_revenue_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    calculation_method: str
    notes: Optional[str] = None
    transaction_date: datetime


class CommissionListResponse(BaseModel):
    """Response for listing a collaborator's commission records."""
    items: List[CommissionRecordResponse]
    total: int
    skip: int = 0
    limit: int = 50


class ManualCommissionCreate(BaseCreateSchema):
    """Manual commission adjustment for a collaborator."""
    representative_id: UUID
    base_revenue_amount: Decimal = Field(..., ge=0)
    commission_rate: Decimal = Field(..., ge=0, le=100)
    revenue_type: RevenueType = RevenueType.LIMITED
    invoice_id: Optional[UUID] = None
    notes: Optional[str] = None


class PayoutCreate(BaseCreateSchema):
    """Payout request. Rejected when it exceeds accumulated earnings."""
    amount: Decimal = Field(..., gt=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class PayoutResponse(BaseResponseSchema):
    """Response schema for CollaboratorPayout."""
    id: UUID
    collaborator_id: UUID
    payout_amount: Decimal
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    balance_after: Decimal
    payout_date: datetime


class PayoutListResponse(BaseModel):
    items: List[PayoutResponse]
    total: int


class EarningsSummaryResponse(BaseModel):
    """Collaborator money fields plus totals derived from records."""
    collaborator_id: UUID
    current_accumulated_earnings: Decimal
    total_earnings_to_date: Decimal
    total_payouts_to_date: Decimal
    record_count: int
    payout_count: int
    representative_count: int
    is_consistent: bool
