"""API endpoints for collaborators, their commissions and payouts."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status, Query

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.models.representative import CollaboratorStatus
from marfanet.schemas.representative import (
    CollaboratorCreate,
    CollaboratorUpdate,
    CollaboratorResponse,
    CollaboratorListResponse,
)
from marfanet.schemas.commission import (
    CommissionRecordResponse,
    CommissionListResponse,
    ManualCommissionCreate,
    PayoutCreate,
    PayoutResponse,
    PayoutListResponse,
    EarningsSummaryResponse,
)
from marfanet.services.commission_service import CommissionService
from marfanet.services.directory_service import DirectoryService

router = APIRouter()


# ==================== Collaborators ====================

@router.post("", response_model=CollaboratorResponse, status_code=status.HTTP_201_CREATED)
async def create_collaborator(
    data: CollaboratorCreate,
    db: DB,
):
    """Create a collaborator. commission_percentage defaults to the configured rate."""
    try:
        collaborator = await DirectoryService(db).create_collaborator(data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return collaborator


@router.get("", response_model=CollaboratorListResponse)
async def list_collaborators(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status_filter: Optional[CollaboratorStatus] = Query(None, alias="status"),
):
    """List collaborators."""
    items, total = await DirectoryService(db).list_collaborators(
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )
    return CollaboratorListResponse(
        items=[CollaboratorResponse.model_validate(c) for c in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{collaborator_id}", response_model=CollaboratorResponse)
async def get_collaborator(
    collaborator_id: UUID,
    db: DB,
):
    """Get collaborator by ID."""
    try:
        return await DirectoryService(db).get_collaborator(collaborator_id)
    except LedgerEngineError as e:
        raise http_error(e)


@router.patch("/{collaborator_id}", response_model=CollaboratorResponse)
async def update_collaborator(
    collaborator_id: UUID,
    data: CollaboratorUpdate,
    db: DB,
):
    """Update collaborator details. Earnings only move through accruals and payouts."""
    try:
        collaborator = await DirectoryService(db).update_collaborator(collaborator_id, data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return collaborator


# ==================== Commissions ====================

@router.get("/{collaborator_id}/commissions", response_model=CommissionListResponse)
async def get_commission_records(
    collaborator_id: UUID,
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Commission records, newest first. Reversals carry negative amounts."""
    try:
        records, total = await CommissionService(db).get_commission_records(
            collaborator_id, skip=skip, limit=limit
        )
    except LedgerEngineError as e:
        raise http_error(e)

    return CommissionListResponse(
        items=[CommissionRecordResponse.model_validate(r) for r in records],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post(
    "/{collaborator_id}/commissions",
    response_model=CommissionRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_manual_commission(
    collaborator_id: UUID,
    data: ManualCommissionCreate,
    db: DB,
):
    """Record a manual commission adjustment."""
    try:
        record = await CommissionService(db).record_manual_commission(collaborator_id, data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return record


@router.get("/{collaborator_id}/earnings", response_model=EarningsSummaryResponse)
async def get_earnings_summary(
    collaborator_id: UUID,
    db: DB,
):
    """Earnings fields with a consistency check against records and payouts."""
    try:
        return await CommissionService(db).get_earnings_summary(collaborator_id)
    except LedgerEngineError as e:
        raise http_error(e)


# ==================== Payouts ====================

@router.post(
    "/{collaborator_id}/payouts",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payout(
    collaborator_id: UUID,
    data: PayoutCreate,
    db: DB,
):
    """
    Pay out accumulated earnings.

    All or nothing: a payout above current_accumulated_earnings is rejected
    with 422 and nothing changes.
    """
    try:
        payout = await CommissionService(db).record_payout(
            collaborator_id,
            data.amount,
            payment_method=data.payment_method,
            notes=data.notes,
        )
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return payout


@router.get("/{collaborator_id}/payouts", response_model=PayoutListResponse)
async def list_payouts(
    collaborator_id: UUID,
    db: DB,
):
    """Payout history, newest first."""
    try:
        payouts = await CommissionService(db).get_payouts(collaborator_id)
    except LedgerEngineError as e:
        raise http_error(e)

    return PayoutListResponse(
        items=[PayoutResponse.model_validate(p) for p in payouts],
        total=len(payouts),
    )
