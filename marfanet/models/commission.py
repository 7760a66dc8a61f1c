"""Commission records and collaborator payouts.

Supports:
- Automatic commission accrual per invoice
- Manual commission adjustments
- Compensating (negative) records for cancelled invoices
- Payouts that draw down accumulated earnings
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marfanet.database import Base
from marfanet.db_types import UUIDType, MoneyType, RateType

if TYPE_CHECKING:
    from marfanet.models.representative import Collaborator


class CalculationMethod(str, Enum):
    """How a commission record was produced."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class RevenueType(str, Enum):
    """Revenue class the commission was earned on."""
    LIMITED = "limited"
    UNLIMITED = "unlimited"
    MIXED = "mixed"


class CommissionRecord(Base):
    """
    Immutable commission record.

    One accrual per (invoice, collaborator), enforced through the unique
    dedupe_key. Corrections are new records (negative amount for a
    reversal), never updates.
    """
    __tablename__ = "commission_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    collaborator_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("collaborators.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    representative_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("representatives.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoice_batches.id", ondelete="SET NULL"),
        nullable=True
    )
    reverses_record_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("commission_records.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Set on compensating records"
    )
    dedupe_key: Mapped[Optional[str]] = mapped_column(
        String(120),
        unique=True,
        nullable=True,
        comment="{invoice_id}:{collaborator_id}:accrual|reversal"
    )

    revenue_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="limited, unlimited, mixed"
    )
    base_revenue_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(RateType, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Negative for compensating records"
    )
    calculation_method: Mapped[str] = mapped_column(
        String(20),
        default="automatic",
        nullable=False,
        comment="automatic, manual"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    collaborator: Mapped["Collaborator"] = relationship("Collaborator")

    @property
    def is_reversal(self) -> bool:
        return self.reverses_record_id is not None

    def __repr__(self) -> str:
        return f"<CommissionRecord(amount={self.commission_amount}, rate={self.commission_rate})>"


class CollaboratorPayout(Base):
    """Withdrawal from a collaborator's accumulated earnings."""
    __tablename__ = "collaborator_payouts"
    __table_args__ = (
        CheckConstraint("payout_amount > 0", name="check_payout_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    collaborator_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("collaborators.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    payout_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Accumulated earnings after this payout"
    )

    payout_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<CollaboratorPayout(amount={self.payout_amount})>"
