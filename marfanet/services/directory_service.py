"""Representative and collaborator directory.

Owns the sourcing invariant: a representative is collaborator-sourced
exactly when it references a collaborator. Representatives are never
hard-deleted; they are deactivated through status.
"""
from typing import Optional, List, Tuple
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from marfanet.config import settings
from marfanet.core.exceptions import EntityNotFound, DirectoryValidationError
from marfanet.models.representative import (
    Collaborator,
    Representative,
    SourcingType,
)
from marfanet.services.statistics_service import invalidate_metrics, DIRECTORY_METRICS
from marfanet.schemas.representative import (
    CollaboratorCreate,
    CollaboratorUpdate,
    RepresentativeCreate,
    RepresentativeUpdate,
)

logger = logging.getLogger(__name__)


class DirectoryService:
    """CRUD for representatives and collaborators."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== COLLABORATORS ====================

    async def create_collaborator(self, data: CollaboratorCreate) -> Collaborator:
        existing = await self.db.execute(
            select(Collaborator.id).where(
                Collaborator.unique_collaborator_id == data.unique_collaborator_id
            )
        )
        if existing.scalar_one_or_none():
            raise DirectoryValidationError(
                f"Collaborator code '{data.unique_collaborator_id}' already exists",
                {"unique_collaborator_id": data.unique_collaborator_id},
            )

        values = data.model_dump()
        if values.get("commission_percentage") is None:
            values["commission_percentage"] = settings.DEFAULT_COMMISSION_PERCENTAGE

        collaborator = Collaborator(
            **values,
            current_accumulated_earnings=Decimal("0"),
            total_earnings_to_date=Decimal("0"),
            total_payouts_to_date=Decimal("0"),
        )
        self.db.add(collaborator)
        await self.db.flush()

        logger.info(
            f"Created collaborator {collaborator.unique_collaborator_id} "
            f"({collaborator.commission_percentage}%)"
        )
        return collaborator

    async def get_collaborator(self, collaborator_id: uuid.UUID) -> Collaborator:
        collaborator = await self.db.get(Collaborator, collaborator_id, populate_existing=True)
        if not collaborator:
            raise EntityNotFound(
                f"Collaborator not found: {collaborator_id}",
                {"collaborator_id": str(collaborator_id)},
            )
        return collaborator

    async def list_collaborators(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Collaborator], int]:
        query = select(Collaborator)
        count_query = select(func.count(Collaborator.id))
        if status:
            query = query.where(Collaborator.status == status)
            count_query = count_query.where(Collaborator.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(Collaborator.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_collaborator(
        self,
        collaborator_id: uuid.UUID,
        data: CollaboratorUpdate,
    ) -> Collaborator:
        collaborator = await self.get_collaborator(collaborator_id)

        for field, value in data.model_dump(exclude_unset=True).items():
            if hasattr(value, "value"):
                value = value.value
            setattr(collaborator, field, value)

        await self.db.flush()
        logger.info(f"Updated collaborator {collaborator.unique_collaborator_id}")
        return collaborator

    # ==================== REPRESENTATIVES ====================

    async def _validate_sourcing(
        self,
        sourcing_type: Optional[str],
        collaborator_id: Optional[uuid.UUID],
    ) -> str:
        """Return the effective sourcing type or raise if it contradicts collaborator_id."""
        if sourcing_type is None:
            sourcing_type = (
                SourcingType.COLLABORATOR.value if collaborator_id else SourcingType.DIRECT.value
            )

        if sourcing_type == SourcingType.COLLABORATOR.value and collaborator_id is None:
            raise DirectoryValidationError(
                "Collaborator-sourced representative requires collaborator_id"
            )
        if sourcing_type == SourcingType.DIRECT.value and collaborator_id is not None:
            raise DirectoryValidationError(
                "Direct representative cannot reference a collaborator",
                {"collaborator_id": str(collaborator_id)},
            )

        if collaborator_id is not None:
            await self.get_collaborator(collaborator_id)
        return sourcing_type

    async def create_representative(self, data: RepresentativeCreate) -> Representative:
        existing = await self.get_representative_by_username(data.admin_username)
        if existing:
            raise DirectoryValidationError(
                f"Representative '{data.admin_username}' already exists",
                {"admin_username": data.admin_username, "representative_id": str(existing.id)},
            )

        values = data.model_dump()
        values["status"] = data.status.value
        values["sourcing_type"] = await self._validate_sourcing(
            data.sourcing_type.value if data.sourcing_type else None,
            data.collaborator_id,
        )

        representative = Representative(**values)
        self.db.add(representative)
        await self.db.flush()

        logger.info(
            f"Created representative {representative.admin_username} "
            f"({representative.sourcing_type})"
        )
        await invalidate_metrics(*DIRECTORY_METRICS, session=self.db)
        return representative

    async def get_representative(self, representative_id: uuid.UUID) -> Representative:
        representative = await self.db.get(Representative, representative_id)
        if not representative:
            raise EntityNotFound(
                f"Representative not found: {representative_id}",
                {"representative_id": str(representative_id)},
            )
        return representative

    async def get_representative_by_username(self, admin_username: str) -> Optional[Representative]:
        result = await self.db.execute(
            select(Representative).where(Representative.admin_username == admin_username)
        )
        return result.scalar_one_or_none()

    async def list_representatives(
        self,
        status: Optional[str] = None,
        collaborator_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Representative], int]:
        filters = []
        if status:
            filters.append(Representative.status == status)
        if collaborator_id:
            filters.append(Representative.collaborator_id == collaborator_id)
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(
                    Representative.full_name.ilike(pattern),
                    Representative.admin_username.ilike(pattern),
                    Representative.store_name.ilike(pattern),
                )
            )

        query = select(Representative).where(*filters)
        count_query = select(func.count(Representative.id)).where(*filters)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(Representative.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_representative(
        self,
        representative_id: uuid.UUID,
        data: RepresentativeUpdate,
    ) -> Representative:
        representative = await self.get_representative(representative_id)
        changes = data.model_dump(exclude_unset=True)

        if "sourcing_type" in changes or "collaborator_id" in changes:
            sourcing = changes.get("sourcing_type", representative.sourcing_type)
            if hasattr(sourcing, "value"):
                sourcing = sourcing.value
            collaborator_id = changes.get("collaborator_id", representative.collaborator_id)
            if "collaborator_id" in changes and "sourcing_type" not in changes:
                # Switching collaborator alone re-derives the sourcing type
                sourcing = None
            changes["sourcing_type"] = await self._validate_sourcing(sourcing, collaborator_id)
            changes["collaborator_id"] = collaborator_id

        for field, value in changes.items():
            if hasattr(value, "value"):
                value = value.value
            setattr(representative, field, value)

        await self.db.flush()
        logger.info(f"Updated representative {representative.admin_username}: {sorted(changes)}")
        await invalidate_metrics(*DIRECTORY_METRICS, session=self.db)
        return representative

    async def set_representative_status(
        self,
        representative_id: uuid.UUID,
        status: str,
    ) -> Representative:
        """Soft activation / deactivation."""
        representative = await self.get_representative(representative_id)
        representative.status = status
        await self.db.flush()
        logger.info(f"Representative {representative.admin_username} status -> {status}")
        await invalidate_metrics(*DIRECTORY_METRICS, session=self.db)
        return representative
