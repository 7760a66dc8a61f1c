"""Pydantic schemas for the representative / collaborator directory."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field

from marfanet.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from marfanet.core.enum_utils import (
    create_lowercase_validator,
    VALID_REPRESENTATIVE_STATUSES,
    VALID_SOURCING_TYPES,
)
from marfanet.models.representative import RepresentativeStatus, SourcingType, CollaboratorStatus


# ==================== Collaborator Schemas ====================

class CollaboratorBase(BaseModel):
    """Base schema for Collaborator."""
    collaborator_name: str = Field(..., min_length=1, max_length=200)
    unique_collaborator_id: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=30)
    telegram_id: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    bank_account_details: Optional[str] = None
    commission_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class CollaboratorCreate(CollaboratorBase, BaseCreateSchema):
    """Schema for creating a collaborator. commission_percentage defaults from settings."""
    pass


class CollaboratorUpdate(BaseUpdateSchema):
    """
    Schema for updating a collaborator.

    Earnings fields are not updatable here; they only move through
    commission accruals and payouts.
    """
    collaborator_name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone_number: Optional[str] = None
    telegram_id: Optional[str] = None
    email: Optional[str] = None
    bank_account_details: Optional[str] = None
    status: Optional[CollaboratorStatus] = None
    commission_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class CollaboratorResponse(BaseResponseSchema):
    """Response schema for Collaborator."""
    id: UUID
    collaborator_name: str
    unique_collaborator_id: str
    phone_number: Optional[str] = None
    telegram_id: Optional[str] = None
    email: Optional[str] = None
    status: str
    commission_percentage: Decimal
    current_accumulated_earnings: Decimal
    total_earnings_to_date: Decimal
    total_payouts_to_date: Decimal
    date_joined: datetime
    created_at: datetime


class CollaboratorListResponse(BaseModel):
    """Response for listing collaborators."""
    items: List[CollaboratorResponse]
    total: int
    skip: int = 0
    limit: int = 50


# ==================== Representative Schemas ====================

class RepresentativePriceTable(BaseModel):
    """12-slot tier table; empty cells fall back to the default table."""
    limited_price_1_month: Optional[Decimal] = Field(None, ge=0)
    limited_price_2_month: Optional[Decimal] = Field(None, ge=0)
    limited_price_3_month: Optional[Decimal] = Field(None, ge=0)
    limited_price_4_month: Optional[Decimal] = Field(None, ge=0)
    limited_price_5_month: Optional[Decimal] = Field(None, ge=0)
    limited_price_6_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_1_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_2_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_3_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_4_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_5_month: Optional[Decimal] = Field(None, ge=0)
    unlimited_price_6_month: Optional[Decimal] = Field(None, ge=0)


class RepresentativeCreate(RepresentativePriceTable, BaseCreateSchema):
    """
    Schema for creating a representative.

    sourcing_type may be omitted; it is then derived from collaborator_id.
    """
    full_name: str = Field(..., min_length=1, max_length=200)
    admin_username: str = Field(..., min_length=1, max_length=100)
    telegram_id: Optional[str] = Field(None, max_length=200)
    phone_number: Optional[str] = Field(None, max_length=30)
    store_name: Optional[str] = Field(None, max_length=200)
    status: RepresentativeStatus = RepresentativeStatus.ACTIVE
    sourcing_type: Optional[SourcingType] = None
    collaborator_id: Optional[UUID] = None
    volume_commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    unlimited_commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)

    _normalize_status = create_lowercase_validator('status', VALID_REPRESENTATIVE_STATUSES)
    _normalize_sourcing = create_lowercase_validator('sourcing_type', VALID_SOURCING_TYPES)


class RepresentativeUpdate(RepresentativePriceTable, BaseUpdateSchema):
    """Schema for updating a representative (administrative action)."""
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    telegram_id: Optional[str] = None
    phone_number: Optional[str] = None
    store_name: Optional[str] = None
    status: Optional[RepresentativeStatus] = None
    sourcing_type: Optional[SourcingType] = None
    collaborator_id: Optional[UUID] = None
    volume_commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    unlimited_commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)

    _normalize_status = create_lowercase_validator('status', VALID_REPRESENTATIVE_STATUSES)
    _normalize_sourcing = create_lowercase_validator('sourcing_type', VALID_SOURCING_TYPES)


class RepresentativeResponse(RepresentativePriceTable, BaseResponseSchema):
    """Response schema for Representative."""
    id: UUID
    full_name: str
    admin_username: str
    telegram_id: Optional[str] = None
    phone_number: Optional[str] = None
    store_name: Optional[str] = None
    status: str
    sourcing_type: str
    collaborator_id: Optional[UUID] = None
    volume_commission_rate: Optional[Decimal] = None
    unlimited_commission_rate: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime


class RepresentativeListResponse(BaseModel):
    """Response for listing representatives."""
    items: List[RepresentativeResponse]
    total: int
    skip: int = 0
    limit: int = 50


class BalanceResponse(BaseModel):
    """Representative balance as derived from the ledger."""
    representative_id: UUID
    current_balance: Decimal
    last_running_balance: Decimal
    entry_count: int
    is_consistent: bool
