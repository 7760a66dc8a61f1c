"""Representative (reseller) and Collaborator (referral agent) models.

Representatives receive invoices and carry a 12-slot price table:
six "limited" (per-GB) rates and six "unlimited" rates, one per
subscription duration of 1-6 months. Collaborators earn commission on
the representatives they introduced.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marfanet.database import Base
from marfanet.db_types import UUIDType, MoneyType, RateType

if TYPE_CHECKING:
    from marfanet.models.invoice import Invoice


class RepresentativeStatus(str, Enum):
    """Representative account status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class SourcingType(str, Enum):
    """How the representative was acquired."""
    DIRECT = "direct"
    COLLABORATOR = "collaborator"


class CollaboratorStatus(str, Enum):
    """Collaborator account status."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class ServiceClass(str, Enum):
    """Subscription service class."""
    LIMITED = "limited"       # Volume (per-GB) subscriptions
    UNLIMITED = "unlimited"   # Unlimited subscriptions


DURATION_MONTHS = range(1, 7)


class Collaborator(Base):
    """
    Referral agent.

    Money invariant: current_accumulated_earnings ==
    total_earnings_to_date - total_payouts_to_date, never negative.
    The three fields are only changed through atomic UPDATE statements
    in CommissionService.
    """
    __tablename__ = "collaborators"
    __table_args__ = (
        CheckConstraint(
            "current_accumulated_earnings >= 0",
            name="check_collaborator_earnings_non_negative"
        ),
        CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="check_collaborator_commission_range"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    collaborator_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unique_collaborator_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="Human-readable collaborator code e.g. behnam_001"
    )
    phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    telegram_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bank_account_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        comment="active, inactive"
    )
    commission_percentage: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("10"),
        nullable=False
    )

    # Earnings
    current_accumulated_earnings: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Unpaid balance owed to the collaborator"
    )
    total_earnings_to_date: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )
    total_payouts_to_date: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )

    date_joined: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    representatives: Mapped[List["Representative"]] = relationship(
        "Representative",
        back_populates="collaborator"
    )

    def __repr__(self) -> str:
        return f"<Collaborator(code='{self.unique_collaborator_id}', rate={self.commission_percentage})>"


class Representative(Base):
    """
    Reseller account that receives invoices.

    Invariant: sourcing_type == 'collaborator' <=> collaborator_id is set.
    Never hard-deleted; deactivate through status instead.
    """
    __tablename__ = "representatives"
    __table_args__ = (
        CheckConstraint(
            "(sourcing_type = 'collaborator' AND collaborator_id IS NOT NULL) OR "
            "(sourcing_type = 'direct' AND collaborator_id IS NULL)",
            name="check_representative_sourcing"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    admin_username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="Panel login handle, key identifier in usage sheets"
    )
    telegram_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    store_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        index=True,
        comment="active, inactive, suspended"
    )

    # Sourcing
    sourcing_type: Mapped[str] = mapped_column(
        String(20),
        default="direct",
        nullable=False,
        comment="direct, collaborator"
    )
    collaborator_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("collaborators.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    # Limited (volume) subscription pricing for 1-6 months
    limited_price_1_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    limited_price_2_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    limited_price_3_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    limited_price_4_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    limited_price_5_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    limited_price_6_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Unlimited subscription pricing for 1-6 months
    unlimited_price_1_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    unlimited_price_2_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    unlimited_price_3_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    unlimited_price_4_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    unlimited_price_5_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    unlimited_price_6_month: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Commission overrides (take precedence over the collaborator's percentage)
    volume_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Override % for limited lines"
    )
    unlimited_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Override % for unlimited lines"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    collaborator: Mapped[Optional["Collaborator"]] = relationship(
        "Collaborator",
        back_populates="representatives",
        lazy="selectin"
    )
    invoices: Mapped[List["Invoice"]] = relationship(
        "Invoice",
        back_populates="representative"
    )

    @property
    def is_collaborator_sourced(self) -> bool:
        return self.sourcing_type == SourcingType.COLLABORATOR.value

    def price_cell(self, service_class: str, duration_months: int) -> Optional[Decimal]:
        """Raw tier table value for one (class, duration) cell."""
        return getattr(self, f"{service_class}_price_{duration_months}_month", None)

    def commission_override(self, service_class: str) -> Optional[Decimal]:
        if service_class == ServiceClass.UNLIMITED.value:
            return self.unlimited_commission_rate
        return self.volume_commission_rate

    def __repr__(self) -> str:
        return f"<Representative(admin_username='{self.admin_username}', status='{self.status}')>"
