"""Invoice, invoice item, invoice batch and payment models.

Supports:
- Invoices issued to representatives (single currency, Toman)
- Per-line subscription pricing with commission snapshot
- Monthly bulk batches generated from usage sheets
- Payments (full, partial, on-account)
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marfanet.database import Base
from marfanet.db_types import UUIDType, MoneyType, RateType, QuantityType

if TYPE_CHECKING:
    from marfanet.models.representative import Representative


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""
    PENDING = "pending"
    PAID = "paid"             # Terminal
    OVERDUE = "overdue"
    CANCELLED = "cancelled"   # Terminal


class BatchStatus(str, Enum):
    """Invoice batch processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PriceSource(str, Enum):
    """Where an invoice's unit prices came from."""
    REPRESENTATIVE_RATE = "representative_rate"
    DEFAULT_RATE = "default_rate"
    MIXED = "mixed"
    MANUAL = "manual"


class InvoiceBatch(Base):
    """
    Grouping unit for bulk-generated invoices (e.g. one monthly run).

    total_invoices / total_amount are derived from the batch's invoices
    and recomputed when the batch is finalized.
    """
    __tablename__ = "invoice_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    batch_name: Mapped[str] = mapped_column(String(200), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    processing_status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        nullable=False,
        comment="pending, processing, completed, failed"
    )
    total_invoices: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    upload_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    invoices: Mapped[List["Invoice"]] = relationship("Invoice", back_populates="batch")

    def __repr__(self) -> str:
        return f"<InvoiceBatch(name='{self.batch_name}', status='{self.processing_status}')>"


class Invoice(Base):
    """
    One bill issued to a representative.

    total_amount = base_amount - discount_amount + tax_amount, fixed at
    creation. After the ledger debit is posted only status, paid_date,
    cancelled_at and the delivery flags change.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("base_amount >= 0", name="check_invoice_base_non_negative"),
        CheckConstraint("total_amount >= 0", name="check_invoice_total_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    invoice_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique invoice number, idempotency key for creation"
    )
    representative_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("representatives.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoice_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Amounts
    base_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        nullable=False,
        index=True,
        comment="pending, paid, overdue, cancelled"
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    price_source: Mapped[str] = mapped_column(
        String(30),
        default="representative_rate",
        nullable=False,
        comment="representative_rate, default_rate, mixed, manual"
    )

    # Delivery flags (owned by the Telegram/templating layer)
    telegram_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_to_representative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

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
    representative: Mapped["Representative"] = relationship(
        "Representative",
        back_populates="invoices"
    )
    batch: Mapped[Optional["InvoiceBatch"]] = relationship(
        "InvoiceBatch",
        back_populates="invoices"
    )
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceItem.line_number"
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice"
    )

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.invoice_number}', total={self.total_amount}, status='{self.status}')>"


class InvoiceItem(Base):
    """Invoice line: line_total = quantity x unit_price."""
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    description: Mapped[str] = mapped_column(String(300), nullable=False)
    service_class: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="limited, unlimited"
    )
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Commission snapshot for this line (collaborator-sourced representatives only)
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    commission_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem({self.service_class}/{self.duration_months}m x {self.quantity})>"


class Payment(Base):
    """Money received from a representative, optionally against one invoice."""
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    representative_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("representatives.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_type: Mapped[str] = mapped_column(
        String(20),
        default="full",
        nullable=False,
        comment="full, partial, overpayment, on_account"
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    invoice: Mapped[Optional["Invoice"]] = relationship("Invoice", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(amount={self.amount}, invoice_id={self.invoice_id})>"
