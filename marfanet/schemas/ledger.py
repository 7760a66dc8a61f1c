"""Pydantic schemas for the financial ledger."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel

from marfanet.schemas.base import BaseResponseSchema


class LedgerEntryResponse(BaseResponseSchema):
    """Response schema for FinancialLedgerEntry."""
    id: UUID
    representative_id: UUID
    sequence: int
    transaction_type: str
    amount: Decimal
    running_balance: Decimal
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    reference_number: Optional[str] = None
    description: Optional[str] = None
    is_reversal: bool
    transaction_date: datetime


class LedgerResponse(BaseModel):
    """Full ledger of one representative, ordered by sequence."""
    representative_id: UUID
    current_balance: Decimal
    items: List[LedgerEntryResponse]
    total: int


class LedgerMismatch(BaseModel):
    """One entry whose stored running balance disagrees with the cumulative sum."""
    sequence: int
    stored_running_balance: Decimal
    expected_running_balance: Decimal
