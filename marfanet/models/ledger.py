"""Financial ledger: append-only transaction log per representative."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from marfanet.database import Base
from marfanet.db_types import UUIDType, MoneyType


class LedgerTransactionType(str, Enum):
    """Ledger transaction type."""
    INVOICE = "invoice"   # Debit, positive amount (reversal: negative)
    PAYMENT = "payment"   # Credit, negative amount


class FinancialLedgerEntry(Base):
    """
    Immutable ledger row.

    `sequence` is 1-based per representative; the unique constraint on
    (representative_id, sequence) is the compare-and-set that rejects an
    append computed from a stale balance. running_balance is the balance
    after this entry; summing `amount` over sequences 1..n reproduces it.
    """
    __tablename__ = "financial_ledger"
    __table_args__ = (
        UniqueConstraint("representative_id", "sequence", name="uq_ledger_representative_sequence"),
        Index("ix_ledger_reference", "reference_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    representative_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("representatives.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="invoice, payment"
    )
    amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Signed: debits positive, credits negative"
    )
    running_balance: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Originating document
    reference_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

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

    def __repr__(self) -> str:
        return (
            f"<FinancialLedgerEntry(rep={self.representative_id}, seq={self.sequence}, "
            f"{self.transaction_type} {self.amount} -> {self.running_balance})>"
        )
