"""Commission Calculator and collaborator payouts.

Commission accrues when an invoice is issued to a collaborator-sourced
representative:

    rate   = representative override for the line's class
             ?? collaborator.commission_percentage
    amount = line_total x rate / 100, summed over lines

Each accrual is one immutable CommissionRecord per (invoice, collaborator).
Cancelling the invoice writes a compensating negative record. All money
changes on a collaborator are atomic SQL increments, serialized per
collaborator (in-process lock + row lock), so

    current_accumulated_earnings == total_earnings_to_date - total_payouts_to_date >= 0

holds after every operation.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marfanet.core.exceptions import EntityNotFound, InsufficientPayoutBalance, LedgerEngineError
from marfanet.core.keyed_lock import collaborator_locks
from marfanet.db_types import ZERO, quantize_money
from marfanet.models.commission import (
    CalculationMethod,
    CollaboratorPayout,
    CommissionRecord,
    RevenueType,
)
from marfanet.models.invoice import Invoice
from marfanet.models.representative import Collaborator, Representative
from marfanet.schemas.commission import ManualCommissionCreate
from marfanet.services.statistics_service import invalidate_metrics, COMMISSION_METRICS

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def accrual_key(invoice_id: uuid.UUID, collaborator_id: uuid.UUID) -> str:
    return f"{invoice_id}:{collaborator_id}:accrual"


def reversal_key(invoice_id: uuid.UUID, collaborator_id: uuid.UUID) -> str:
    return f"{invoice_id}:{collaborator_id}:reversal"


class CommissionService:
    """Accrual, reversal and payout of collaborator commissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== HELPERS ====================

    async def _get_collaborator(self, collaborator_id: uuid.UUID, for_update: bool = False) -> Collaborator:
        query = select(Collaborator).where(Collaborator.id == collaborator_id)
        if for_update:
            query = query.with_for_update()
        # Money fields are changed by UPDATE statements; always reload them
        result = await self.db.execute(query.execution_options(populate_existing=True))
        collaborator = result.scalar_one_or_none()
        if not collaborator:
            raise EntityNotFound(
                f"Collaborator not found: {collaborator_id}",
                {"collaborator_id": str(collaborator_id)},
            )
        return collaborator

    async def _find_by_key(self, dedupe_key: str) -> Optional[CommissionRecord]:
        result = await self.db.execute(
            select(CommissionRecord).where(CommissionRecord.dedupe_key == dedupe_key)
        )
        return result.scalar_one_or_none()

    async def _insert_record(self, record: CommissionRecord) -> bool:
        """Insert inside a savepoint. False when the dedupe key was already taken."""
        await self.db.flush()
        try:
            async with self.db.begin_nested():
                self.db.add(record)
                await self.db.flush()
        except IntegrityError:
            return False
        return True

    async def _add_earnings(self, collaborator_id: uuid.UUID, amount: Decimal) -> None:
        await self.db.execute(
            update(Collaborator)
            .where(Collaborator.id == collaborator_id)
            .values(
                current_accumulated_earnings=Collaborator.current_accumulated_earnings + amount,
                total_earnings_to_date=Collaborator.total_earnings_to_date + amount,
            )
            .execution_options(synchronize_session=False)
        )

    async def _withdraw(
        self,
        collaborator_id: uuid.UUID,
        amount: Decimal,
        is_payout: bool,
    ) -> None:
        """
        Conditional decrement of current earnings. A payout moves the amount
        to total_payouts_to_date; a clawback removes it from
        total_earnings_to_date. Zero rows updated means the balance was short.
        """
        values = {
            "current_accumulated_earnings": Collaborator.current_accumulated_earnings - amount,
        }
        if is_payout:
            values["total_payouts_to_date"] = Collaborator.total_payouts_to_date + amount
        else:
            values["total_earnings_to_date"] = Collaborator.total_earnings_to_date - amount

        result = await self.db.execute(
            update(Collaborator)
            .where(
                Collaborator.id == collaborator_id,
                Collaborator.current_accumulated_earnings >= amount,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            collaborator = await self._get_collaborator(collaborator_id)
            raise InsufficientPayoutBalance(
                collaborator_id, amount, quantize_money(collaborator.current_accumulated_earnings)
            )

    @staticmethod
    def _line_rate(representative: Representative, collaborator: Collaborator, service_class: str) -> Decimal:
        override = representative.commission_override(service_class)
        if override is not None:
            return Decimal(str(override))
        return Decimal(str(collaborator.commission_percentage))

    # ==================== ACCRUAL ====================

    async def compute_and_accrue(self, invoice: Invoice) -> Optional[CommissionRecord]:
        """
        Accrue commission for one invoice.

        Returns None for direct representatives. Repeated calls for the same
        invoice return the existing record without accruing again.
        """
        representative = await self.db.get(Representative, invoice.representative_id)
        if representative is None or not representative.is_collaborator_sourced:
            return None

        collaborator_id = representative.collaborator_id
        key = accrual_key(invoice.id, collaborator_id)

        async with collaborator_locks.acquire(collaborator_id):
            existing = await self._find_by_key(key)
            if existing:
                logger.info(f"Commission for invoice {invoice.invoice_number} already accrued")
                return existing

            collaborator = await self._get_collaborator(collaborator_id, for_update=True)

            line_rates: List[Decimal] = []
            line_classes = set()
            line_total_commission = ZERO
            for item in invoice.items:
                rate = self._line_rate(representative, collaborator, item.service_class)
                item.commission_rate = rate
                item.commission_amount = quantize_money(item.line_total * rate / HUNDRED)
                line_total_commission += item.commission_amount
                line_rates.append(rate)
                line_classes.add(item.service_class)

            base = quantize_money(invoice.base_amount)
            distinct_rates = set(line_rates)
            if len(distinct_rates) == 1:
                rate = distinct_rates.pop()
                amount = quantize_money(base * rate / HUNDRED)
            elif not distinct_rates:
                rate = Decimal(str(collaborator.commission_percentage))
                amount = quantize_money(base * rate / HUNDRED)
            else:
                amount = quantize_money(line_total_commission)
                rate = quantize_money(amount / base * HUNDRED) if base > ZERO else ZERO

            revenue_type = line_classes.pop() if len(line_classes) == 1 else RevenueType.MIXED.value
            if len(distinct_rates) > 1:
                revenue_type = RevenueType.MIXED.value

            record = CommissionRecord(
                collaborator_id=collaborator_id,
                representative_id=representative.id,
                invoice_id=invoice.id,
                batch_id=invoice.batch_id,
                dedupe_key=key,
                revenue_type=revenue_type,
                base_revenue_amount=base,
                commission_rate=rate,
                commission_amount=amount,
                calculation_method=CalculationMethod.AUTOMATIC.value,
                transaction_date=datetime.now(timezone.utc),
            )
            if not await self._insert_record(record):
                logger.info(f"Commission for invoice {invoice.invoice_number} accrued concurrently")
                return await self._find_by_key(key)

            if amount > ZERO:
                await self._add_earnings(collaborator_id, amount)

        logger.info(
            f"Accrued commission {amount} ({rate}%) for collaborator "
            f"{collaborator.unique_collaborator_id} on invoice {invoice.invoice_number}"
        )
        await invalidate_metrics(*COMMISSION_METRICS, session=self.db)
        return record

    async def reverse_for_invoice(self, invoice: Invoice, reason: Optional[str] = None) -> Optional[CommissionRecord]:
        """
        Compensate the accrual of a cancelled invoice with a negative record.

        Raises InsufficientPayoutBalance when the commission has already
        been paid out so that current earnings cannot cover the clawback.
        """
        result = await self.db.execute(
            select(CommissionRecord).where(
                CommissionRecord.invoice_id == invoice.id,
                CommissionRecord.reverses_record_id.is_(None),
                CommissionRecord.calculation_method == CalculationMethod.AUTOMATIC.value,
            )
        )
        original = result.scalars().first()
        if original is None:
            return None

        collaborator_id = original.collaborator_id
        key = reversal_key(invoice.id, collaborator_id)

        async with collaborator_locks.acquire(collaborator_id):
            existing = await self._find_by_key(key)
            if existing:
                return existing

            await self._get_collaborator(collaborator_id, for_update=True)
            amount = quantize_money(original.commission_amount)
            if amount > ZERO:
                await self._withdraw(collaborator_id, amount, is_payout=False)

            record = CommissionRecord(
                collaborator_id=collaborator_id,
                representative_id=original.representative_id,
                invoice_id=invoice.id,
                batch_id=original.batch_id,
                reverses_record_id=original.id,
                dedupe_key=key,
                revenue_type=original.revenue_type,
                base_revenue_amount=original.base_revenue_amount,
                commission_rate=original.commission_rate,
                commission_amount=-amount,
                calculation_method=CalculationMethod.AUTOMATIC.value,
                notes=reason,
                transaction_date=datetime.now(timezone.utc),
            )
            if not await self._insert_record(record):
                raise LedgerEngineError(
                    f"Commission reversal for invoice {invoice.invoice_number} written concurrently"
                )

        logger.info(f"Reversed commission {amount} on cancelled invoice {invoice.invoice_number}")
        await invalidate_metrics(*COMMISSION_METRICS, session=self.db)
        return record

    async def record_manual_commission(
        self,
        collaborator_id: uuid.UUID,
        data: ManualCommissionCreate,
    ) -> CommissionRecord:
        """Manual adjustment outside the invoice flow."""
        representative = await self.db.get(Representative, data.representative_id)
        if representative is None:
            raise EntityNotFound(
                f"Representative not found: {data.representative_id}",
                {"representative_id": str(data.representative_id)},
            )

        async with collaborator_locks.acquire(collaborator_id):
            collaborator = await self._get_collaborator(collaborator_id, for_update=True)
            amount = quantize_money(data.base_revenue_amount * data.commission_rate / HUNDRED)
            record = CommissionRecord(
                collaborator_id=collaborator_id,
                representative_id=representative.id,
                invoice_id=data.invoice_id,
                revenue_type=data.revenue_type.value,
                base_revenue_amount=quantize_money(data.base_revenue_amount),
                commission_rate=data.commission_rate,
                commission_amount=amount,
                calculation_method=CalculationMethod.MANUAL.value,
                notes=data.notes,
                transaction_date=datetime.now(timezone.utc),
            )
            self.db.add(record)
            await self.db.flush()
            if amount > ZERO:
                await self._add_earnings(collaborator_id, amount)

        logger.info(f"Manual commission {amount} for collaborator {collaborator.unique_collaborator_id}")
        await invalidate_metrics(*COMMISSION_METRICS, session=self.db)
        return record

    # ==================== PAYOUTS ====================

    async def record_payout(
        self,
        collaborator_id: uuid.UUID,
        amount: Decimal,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CollaboratorPayout:
        """
        Pay out accumulated earnings. All or nothing: a payout larger than
        current_accumulated_earnings raises InsufficientPayoutBalance.
        """
        amount = quantize_money(amount)
        if amount <= ZERO:
            raise LedgerEngineError("Payout amount must be positive", {"amount": str(amount)})

        async with collaborator_locks.acquire(collaborator_id):
            await self._get_collaborator(collaborator_id, for_update=True)
            await self._withdraw(collaborator_id, amount, is_payout=True)
            collaborator = await self._get_collaborator(collaborator_id)

            payout = CollaboratorPayout(
                collaborator_id=collaborator_id,
                payout_amount=amount,
                payment_method=payment_method,
                notes=notes,
                balance_after=quantize_money(collaborator.current_accumulated_earnings),
                payout_date=datetime.now(timezone.utc),
            )
            self.db.add(payout)
            await self.db.flush()

        logger.info(
            f"Payout {amount} to collaborator {collaborator.unique_collaborator_id}, "
            f"remaining {payout.balance_after}"
        )
        await invalidate_metrics(*COMMISSION_METRICS, session=self.db)
        return payout

    # ==================== QUERIES ====================

    async def get_commission_records(
        self,
        collaborator_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[CommissionRecord], int]:
        await self._get_collaborator(collaborator_id)
        total = (await self.db.execute(
            select(func.count(CommissionRecord.id)).where(CommissionRecord.collaborator_id == collaborator_id)
        )).scalar() or 0
        result = await self.db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.collaborator_id == collaborator_id)
            .order_by(CommissionRecord.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_records_for_invoice(self, invoice_id: uuid.UUID) -> List[CommissionRecord]:
        result = await self.db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.invoice_id == invoice_id)
            .order_by(CommissionRecord.created_at)
        )
        return list(result.scalars().all())

    async def get_payouts(self, collaborator_id: uuid.UUID) -> List[CollaboratorPayout]:
        await self._get_collaborator(collaborator_id)
        result = await self.db.execute(
            select(CollaboratorPayout)
            .where(CollaboratorPayout.collaborator_id == collaborator_id)
            .order_by(CollaboratorPayout.payout_date.desc())
        )
        return list(result.scalars().all())

    async def get_earnings_summary(self, collaborator_id: uuid.UUID) -> Dict:
        """Money fields plus a consistency check against the records and payouts."""
        collaborator = await self._get_collaborator(collaborator_id)

        records_sum, record_count = (await self.db.execute(
            select(
                func.coalesce(func.sum(CommissionRecord.commission_amount), 0),
                func.count(CommissionRecord.id),
            ).where(CommissionRecord.collaborator_id == collaborator_id)
        )).one()
        payouts_sum, payout_count = (await self.db.execute(
            select(
                func.coalesce(func.sum(CollaboratorPayout.payout_amount), 0),
                func.count(CollaboratorPayout.id),
            ).where(CollaboratorPayout.collaborator_id == collaborator_id)
        )).one()
        representative_count = (await self.db.execute(
            select(func.count(Representative.id)).where(Representative.collaborator_id == collaborator_id)
        )).scalar() or 0

        current = quantize_money(collaborator.current_accumulated_earnings)
        earned = quantize_money(collaborator.total_earnings_to_date)
        paid = quantize_money(collaborator.total_payouts_to_date)
        is_consistent = (
            current == earned - paid
            and current >= ZERO
            and quantize_money(records_sum) == earned
            and quantize_money(payouts_sum) == paid
        )
        if not is_consistent:
            logger.error(f"Collaborator {collaborator.unique_collaborator_id} earnings are inconsistent")

        return {
            "collaborator_id": collaborator.id,
            "current_accumulated_earnings": current,
            "total_earnings_to_date": earned,
            "total_payouts_to_date": paid,
            "record_count": record_count,
            "payout_count": payout_count,
            "representative_count": representative_count,
            "is_consistent": is_consistent,
        }
