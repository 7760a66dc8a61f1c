"""API endpoints for representatives, their balances and ledgers."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status, Query

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.models.representative import RepresentativeStatus
from marfanet.schemas.representative import (
    RepresentativeCreate,
    RepresentativeUpdate,
    RepresentativeResponse,
    RepresentativeListResponse,
    BalanceResponse,
)
from marfanet.schemas.ledger import LedgerEntryResponse, LedgerResponse, LedgerMismatch
from marfanet.services.directory_service import DirectoryService
from marfanet.services.ledger_service import LedgerService

router = APIRouter()


@router.post("", response_model=RepresentativeResponse, status_code=status.HTTP_201_CREATED)
async def create_representative(
    data: RepresentativeCreate,
    db: DB,
):
    """Create a representative. sourcing_type is derived from collaborator_id when omitted."""
    try:
        representative = await DirectoryService(db).create_representative(data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return representative


@router.get("", response_model=RepresentativeListResponse)
async def list_representatives(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status_filter: Optional[RepresentativeStatus] = Query(None, alias="status"),
    collaborator_id: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
):
    """List representatives."""
    items, total = await DirectoryService(db).list_representatives(
        status=status_filter.value if status_filter else None,
        collaborator_id=collaborator_id,
        search=search,
        skip=skip,
        limit=limit,
    )
    return RepresentativeListResponse(
        items=[RepresentativeResponse.model_validate(r) for r in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{representative_id}", response_model=RepresentativeResponse)
async def get_representative(
    representative_id: UUID,
    db: DB,
):
    """Get representative by ID."""
    try:
        return await DirectoryService(db).get_representative(representative_id)
    except LedgerEngineError as e:
        raise http_error(e)


@router.patch("/{representative_id}", response_model=RepresentativeResponse)
async def update_representative(
    representative_id: UUID,
    data: RepresentativeUpdate,
    db: DB,
):
    """Update a representative. Deactivate through status; representatives are never deleted."""
    try:
        representative = await DirectoryService(db).update_representative(representative_id, data)
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return representative


# ==================== Balance & Ledger ====================

@router.get("/{representative_id}/balance", response_model=BalanceResponse)
async def get_balance(
    representative_id: UUID,
    db: DB,
):
    """
    Current balance from the ledger.

    current_balance is the sum of all entries; last_running_balance is the
    materialized balance of the newest entry. They agree unless the
    ledger is corrupted.
    """
    try:
        await DirectoryService(db).get_representative(representative_id)
    except LedgerEngineError as e:
        raise http_error(e)

    ledger = LedgerService(db)
    current = await ledger.current_balance(representative_id)
    last = await ledger.last_running_balance(representative_id)
    return BalanceResponse(
        representative_id=representative_id,
        current_balance=current,
        last_running_balance=last,
        entry_count=await ledger.entry_count(representative_id),
        is_consistent=current == last,
    )


@router.get("/{representative_id}/ledger", response_model=LedgerResponse)
async def get_ledger(
    representative_id: UUID,
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
):
    """Ledger entries ordered by sequence."""
    try:
        await DirectoryService(db).get_representative(representative_id)
    except LedgerEngineError as e:
        raise http_error(e)

    ledger = LedgerService(db)
    entries, total = await ledger.get_ledger(representative_id, skip=skip, limit=limit)
    return LedgerResponse(
        representative_id=representative_id,
        current_balance=await ledger.current_balance(representative_id),
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
    )


@router.get("/{representative_id}/ledger/verify", response_model=list[LedgerMismatch])
async def verify_ledger(
    representative_id: UUID,
    db: DB,
):
    """Recompute running balances; an empty list means the ledger is consistent."""
    try:
        await DirectoryService(db).get_representative(representative_id)
    except LedgerEngineError as e:
        raise http_error(e)

    return await LedgerService(db).verify_running_balances(representative_id)
