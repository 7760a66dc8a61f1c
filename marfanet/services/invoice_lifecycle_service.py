"""Invoice Lifecycle Manager.

The single owner of invoice status transitions and of the side effects
they trigger:

    pending  -> paid       cumulative payments reach total_amount (paid_date set once)
    pending  -> overdue    sweep, once now > due_date
    overdue  -> pending    partial payment, when OVERDUE_REVERTS_ON_PARTIAL_PAYMENT
    overdue  -> paid       cumulative payments reach total_amount
    pending/overdue -> cancelled   compensating ledger entry + commission reversal

Creating an invoice posts exactly one ledger debit and at most one
commission accrual. The invoice number is the idempotency key: a repeated
number raises DuplicateInvoice before anything is written.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marfanet.config import settings
from marfanet.core.enum_utils import is_status, status_in
from marfanet.core.exceptions import (
    DuplicateInvoice,
    EntityNotFound,
    InvalidInvoiceTransition,
    InvoiceValidationError,
)
from marfanet.db_types import ZERO, quantize_money
from marfanet.models.invoice import Invoice, InvoiceBatch, InvoiceItem, InvoiceStatus, Payment
from marfanet.models.ledger import FinancialLedgerEntry
from marfanet.models.representative import Representative
from marfanet.schemas.invoice import InvoiceCreate, InvoiceFilter
from marfanet.services.commission_service import CommissionService
from marfanet.services.ledger_service import LedgerService
from marfanet.services.pricing_service import PricingService, combine_price_sources
from marfanet.services.statistics_service import invalidate_metrics, INVOICE_METRICS

logger = logging.getLogger(__name__)

GENERATED_NUMBER_ATTEMPTS = 3


@dataclass
class PaymentResult:
    """A recorded payment plus the side effects it caused."""
    payment: Payment
    ledger_entry: FinancialLedgerEntry
    invoice: Optional[Invoice] = None
    warnings: List[str] = field(default_factory=list)


class InvoiceLifecycleService:
    """
    Create, pay, cancel and age invoices.

    Every operation runs inside the caller's session transaction; the
    caller commits. A raised error leaves nothing behind once the caller
    rolls back.
    """

    def __init__(
        self,
        db: AsyncSession,
        pricing: Optional[PricingService] = None,
        ledger: Optional[LedgerService] = None,
        commissions: Optional[CommissionService] = None,
    ):
        self.db = db
        self.pricing = pricing or PricingService()
        self.ledger = ledger or LedgerService(db)
        self.commissions = commissions or CommissionService(db)

    # ==================== NUMBERING ====================

    async def generate_invoice_number(self, now: Optional[datetime] = None) -> str:
        """Next free number of the form INV-{YYYY}-{NNNNNN}."""
        now = now or datetime.now(timezone.utc)
        prefix = f"{settings.INVOICE_NUMBER_PREFIX}-{now.year}-"

        result = await self.db.execute(
            select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{prefix}%"))
        )
        highest = 0
        for number in result.scalars().all():
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{str(highest + 1).zfill(6)}"

    # ==================== QUERIES ====================

    async def get_invoice(self, invoice_id: uuid.UUID, for_update: bool = False) -> Invoice:
        query = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise EntityNotFound(f"Invoice not found: {invoice_id}", {"invoice_id": str(invoice_id)})
        return invoice

    async def get_invoice_by_number(self, invoice_number: str) -> Optional[Invoice]:
        result = await self.db.execute(
            select(Invoice).where(Invoice.invoice_number == invoice_number)
        )
        return result.scalar_one_or_none()

    async def list_invoices(
        self,
        filters: Optional[InvoiceFilter] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Invoice], int]:
        conditions = []
        if filters:
            if filters.representative_id:
                conditions.append(Invoice.representative_id == filters.representative_id)
            if filters.batch_id:
                conditions.append(Invoice.batch_id == filters.batch_id)
            if filters.status:
                conditions.append(Invoice.status == filters.status.value)
            if filters.due_before:
                conditions.append(Invoice.due_date < filters.due_before)

        total = (await self.db.execute(
            select(func.count(Invoice.id)).where(*conditions)
        )).scalar() or 0
        result = await self.db.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def amount_paid(self, invoice_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
        )
        return quantize_money(result.scalar() or ZERO)

    async def get_payments(self, invoice_id: uuid.UUID) -> List[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    # ==================== CREATE ====================

    async def create_invoice(self, data: InvoiceCreate, now: Optional[datetime] = None) -> Invoice:
        """
        Price, validate and persist an invoice, then post its ledger debit
        and commission accrual.

        Raises DuplicateInvoice, PricingUnresolved, InvoiceValidationError
        or EntityNotFound without side effects.
        """
        now = now or datetime.now(timezone.utc)

        if data.invoice_number:
            existing = await self.get_invoice_by_number(data.invoice_number)
            if existing:
                raise DuplicateInvoice(data.invoice_number, existing.id)

        representative = await self.db.get(Representative, data.representative_id)
        if representative is None:
            raise EntityNotFound(
                f"Representative not found: {data.representative_id}",
                {"representative_id": str(data.representative_id)},
            )
        if data.batch_id and await self.db.get(InvoiceBatch, data.batch_id) is None:
            raise EntityNotFound(f"Invoice batch not found: {data.batch_id}", {"batch_id": str(data.batch_id)})

        lines = [
            self.pricing.price_line(
                representative,
                item.service_class,
                item.duration_months,
                item.quantity,
                unit_price=item.unit_price,
                description=item.description,
            )
            for item in data.items
        ]

        base_amount = quantize_money(sum((line.line_total for line in lines), ZERO))
        if data.base_amount is not None and quantize_money(data.base_amount) != base_amount:
            raise InvoiceValidationError(
                f"base_amount {data.base_amount} does not match line totals {base_amount}",
                {"base_amount": str(data.base_amount), "line_total_sum": str(base_amount)},
            )

        discount = quantize_money(data.discount_amount)
        tax = quantize_money(data.tax_amount)
        total_amount = base_amount - discount + tax
        if total_amount < ZERO:
            raise InvoiceValidationError(
                "Discount exceeds invoice amount",
                {"base_amount": str(base_amount), "discount_amount": str(discount)},
            )

        due_date = data.due_date or now + timedelta(days=settings.INVOICE_DUE_DAYS)

        invoice = None
        for attempt in range(1, GENERATED_NUMBER_ATTEMPTS + 1):
            invoice_number = data.invoice_number or await self.generate_invoice_number(now)
            invoice = Invoice(
                invoice_number=invoice_number,
                representative_id=representative.id,
                batch_id=data.batch_id,
                base_amount=base_amount,
                discount_amount=discount,
                tax_amount=tax,
                total_amount=total_amount,
                status=InvoiceStatus.PENDING.value,
                due_date=due_date,
                price_source=combine_price_sources([line.source for line in lines]),
                items=[
                    InvoiceItem(
                        line_number=position,
                        description=line.description,
                        service_class=line.service_class,
                        duration_months=line.duration_months,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        line_total=line.line_total,
                    )
                    for position, line in enumerate(lines, start=1)
                ],
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(invoice)
                    await self.db.flush()
                break
            except IntegrityError:
                existing = await self.get_invoice_by_number(invoice_number)
                if existing is None:
                    raise
                if data.invoice_number or attempt == GENERATED_NUMBER_ATTEMPTS:
                    raise DuplicateInvoice(invoice_number, existing.id)
                logger.warning(f"Generated invoice number {invoice_number} taken, retrying")

        if total_amount == ZERO:
            # Nothing is owed; the invoice is settled on issue
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_date = now

        await self.ledger.append_invoice_debit(invoice)
        await self.commissions.compute_and_accrue(invoice)
        await self.db.flush()

        logger.info(
            f"Created invoice {invoice.invoice_number} for {representative.admin_username}: "
            f"base={base_amount} total={total_amount} ({len(lines)} lines, {invoice.price_source})"
        )
        await invalidate_metrics(*INVOICE_METRICS, session=self.db)
        return invoice

    # ==================== PAYMENTS ====================

    async def record_payment(
        self,
        amount: Decimal,
        invoice_id: Optional[uuid.UUID] = None,
        representative_id: Optional[uuid.UUID] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PaymentResult:
        """
        Record money received and post the ledger credit.

        Against an invoice, the invoice becomes paid once its cumulative
        payments reach total_amount. Overpayment is accepted and reported
        in `warnings`. Without an invoice the payment is on-account.
        """
        now = now or datetime.now(timezone.utc)
        amount = quantize_money(amount)
        if amount <= ZERO:
            raise InvoiceValidationError("Payment amount must be positive", {"amount": str(amount)})

        warnings: List[str] = []
        invoice: Optional[Invoice] = None

        if invoice_id is not None:
            invoice = await self.get_invoice(invoice_id, for_update=True)
            if representative_id is not None and representative_id != invoice.representative_id:
                raise InvoiceValidationError(
                    "Payment representative does not own the invoice",
                    {"invoice_id": str(invoice_id), "representative_id": str(representative_id)},
                )
            if is_status(invoice.status, InvoiceStatus.CANCELLED):
                raise InvalidInvoiceTransition(
                    invoice.invoice_number, invoice.status, InvoiceStatus.PAID.value
                )
            representative_id = invoice.representative_id

            paid_before = await self.amount_paid(invoice.id)
            remaining = quantize_money(invoice.total_amount) - paid_before
            if is_status(invoice.status, InvoiceStatus.PAID):
                payment_type = "overpayment"
                warnings.append(
                    f"Invoice {invoice.invoice_number} is already paid; {amount} recorded as overpayment"
                )
            elif amount > remaining:
                payment_type = "overpayment"
                warnings.append(
                    f"Payment exceeds the remaining {remaining} on invoice "
                    f"{invoice.invoice_number} by {amount - remaining}"
                )
            elif amount == remaining:
                payment_type = "full"
            else:
                payment_type = "partial"
        else:
            if representative_id is None:
                raise InvoiceValidationError("Either invoice_id or representative_id is required")
            if await self.db.get(Representative, representative_id) is None:
                raise EntityNotFound(
                    f"Representative not found: {representative_id}",
                    {"representative_id": str(representative_id)},
                )
            paid_before = ZERO
            payment_type = "on_account"

        payment = Payment(
            invoice_id=invoice.id if invoice else None,
            representative_id=representative_id,
            amount=amount,
            payment_type=payment_type,
            payment_method=payment_method,
            notes=notes,
            created_at=now,
        )
        self.db.add(payment)
        await self.db.flush()

        entry = await self.ledger.append_payment_credit(
            payment, reference_number=invoice.invoice_number if invoice else None
        )

        if invoice is not None and status_in(invoice.status, InvoiceStatus.PENDING, InvoiceStatus.OVERDUE):
            previous_status = invoice.status
            if paid_before + amount >= quantize_money(invoice.total_amount):
                invoice.status = InvoiceStatus.PAID.value
                invoice.paid_date = now
            elif (
                is_status(invoice.status, InvoiceStatus.OVERDUE)
                and settings.OVERDUE_REVERTS_ON_PARTIAL_PAYMENT
            ):
                invoice.status = InvoiceStatus.PENDING.value

            if invoice.status != previous_status:
                await self.db.flush()
                logger.info(f"Invoice {invoice.invoice_number}: {previous_status} -> {invoice.status}")
                await invalidate_metrics(*INVOICE_METRICS, session=self.db)

        for warning in warnings:
            logger.warning(warning)

        logger.info(
            f"Recorded {payment_type} payment {amount} for representative {representative_id}"
            + (f" on invoice {invoice.invoice_number}" if invoice else "")
        )
        return PaymentResult(payment=payment, ledger_entry=entry, invoice=invoice, warnings=warnings)

    # ==================== CANCEL ====================

    async def cancel_invoice(
        self,
        invoice_id: uuid.UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """
        Cancel a pending or overdue invoice.

        The debit is reversed by a compensating ledger entry and any accrued
        commission by a compensating negative record; nothing is deleted.
        Payments already recorded stay on the ledger as credit.
        """
        now = now or datetime.now(timezone.utc)
        invoice = await self.get_invoice(invoice_id, for_update=True)

        if not status_in(invoice.status, InvoiceStatus.PENDING, InvoiceStatus.OVERDUE):
            raise InvalidInvoiceTransition(
                invoice.invoice_number, invoice.status, InvoiceStatus.CANCELLED.value
            )

        await self.commissions.reverse_for_invoice(invoice, reason=reason)
        await self.ledger.append_invoice_reversal(invoice, reason=reason)

        previous_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_at = now
        invoice.cancellation_reason = reason
        await self.db.flush()

        logger.info(f"Invoice {invoice.invoice_number}: {previous_status} -> cancelled ({reason or 'no reason'})")
        await invalidate_metrics(*INVOICE_METRICS, session=self.db)
        return invoice

    # ==================== OVERDUE SWEEP ====================

    async def mark_overdue_invoices(self, now: Optional[datetime] = None) -> List[Invoice]:
        """Move every pending invoice whose due_date has passed to overdue."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.status == InvoiceStatus.PENDING.value,
                Invoice.due_date.is_not(None),
                Invoice.due_date < now,
            )
            .with_for_update()
        )
        invoices = list(result.scalars().all())

        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE.value
        await self.db.flush()

        if invoices:
            logger.info(f"Marked {len(invoices)} invoices overdue as of {now.isoformat()}")
            await invalidate_metrics(*INVOICE_METRICS, session=self.db)
        return invoices
