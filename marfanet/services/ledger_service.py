"""Ledger Store: the only reader and writer of representative balances.

Every invoice debit and payment credit is an immutable, sequenced row in
financial_ledger. Appends for one representative are serialized by:
1. an in-process lock keyed by representative id
2. SELECT ... FOR UPDATE on the representative row (PostgreSQL)
3. compare-and-set on the next sequence number: the insert runs inside a
   SAVEPOINT and the (representative_id, sequence) unique constraint
   rejects a writer that read a stale tail. The loser retries.

Appends for different representatives never wait on each other.

Sign convention:
- invoice debit:  +amount (reversal of a debit: -amount)
- payment credit: -amount
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marfanet.config import settings
from marfanet.core.exceptions import EntityNotFound, LedgerConflict, LedgerEngineError
from marfanet.core.keyed_lock import representative_locks
from marfanet.db_types import ZERO, quantize_money
from marfanet.models.ledger import FinancialLedgerEntry, LedgerTransactionType
from marfanet.models.representative import Representative
from marfanet.services.statistics_service import invalidate_metrics, LEDGER_METRICS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerTail:
    """Last sequence and running balance of a representative's ledger."""
    sequence: int
    running_balance: Decimal


class LedgerService:
    """
    Append-only ledger per representative.

    Usage:
        ledger = LedgerService(db)
        entry = await ledger.append(rep_id, "invoice", Decimal("9000"),
                                    reference_type="invoice", reference_id=invoice.id)
        balance = await ledger.current_balance(rep_id)
    """

    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES

    # ==================== WRITE PATH ====================

    @staticmethod
    def signed_amount(transaction_type: str, amount: Decimal, is_reversal: bool = False) -> Decimal:
        signed = amount if transaction_type == LedgerTransactionType.INVOICE.value else -amount
        return -signed if is_reversal else signed

    async def append(
        self,
        representative_id: uuid.UUID,
        transaction_type: str,
        amount: Decimal,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
        reference_number: Optional[str] = None,
        description: Optional[str] = None,
        is_reversal: bool = False,
        transaction_date: Optional[datetime] = None,
    ) -> FinancialLedgerEntry:
        """
        Append one entry; running_balance = previous running_balance + signed amount.

        `amount` is the non-negative magnitude; the sign follows the
        transaction type. Raises LedgerConflict only after
        LEDGER_MAX_RETRIES lost races.
        """
        if hasattr(transaction_type, "value"):
            transaction_type = transaction_type.value
        if transaction_type not in (LedgerTransactionType.INVOICE.value, LedgerTransactionType.PAYMENT.value):
            raise LedgerEngineError(f"Unknown ledger transaction type: {transaction_type}")

        amount = quantize_money(amount)
        if amount < ZERO:
            raise LedgerEngineError(
                "Ledger amount must not be negative",
                {"representative_id": str(representative_id), "amount": str(amount)},
            )
        signed = self.signed_amount(transaction_type, amount, is_reversal)

        async with representative_locks.acquire(representative_id):
            conflict: Optional[LedgerConflict] = None
            for attempt in range(1, self.max_retries + 1):
                try:
                    entry = await self._try_append(
                        representative_id,
                        transaction_type,
                        signed,
                        reference_type=reference_type,
                        reference_id=reference_id,
                        reference_number=reference_number,
                        description=description,
                        is_reversal=is_reversal,
                        transaction_date=transaction_date,
                    )
                except LedgerConflict as e:
                    conflict = e
                    logger.warning(
                        f"Ledger conflict for representative {representative_id} "
                        f"at sequence {e.sequence} (attempt {attempt}/{self.max_retries})"
                    )
                    continue

                logger.info(
                    f"Ledger #{entry.sequence} rep={representative_id} "
                    f"{transaction_type}{' reversal' if is_reversal else ''} "
                    f"{entry.amount} -> balance {entry.running_balance}"
                )
                await invalidate_metrics(*LEDGER_METRICS, session=self.db)
                return entry

        raise conflict

    async def _lock_representative(self, representative_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(Representative.id)
            .where(Representative.id == representative_id)
            .with_for_update()
        )
        if result.scalar_one_or_none() is None:
            raise EntityNotFound(
                f"Representative not found: {representative_id}",
                {"representative_id": str(representative_id)},
            )

    async def _read_tail(self, representative_id: uuid.UUID) -> LedgerTail:
        result = await self.db.execute(
            select(FinancialLedgerEntry.sequence, FinancialLedgerEntry.running_balance)
            .where(FinancialLedgerEntry.representative_id == representative_id)
            .order_by(FinancialLedgerEntry.sequence.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return LedgerTail(sequence=0, running_balance=ZERO)
        return LedgerTail(sequence=row.sequence, running_balance=quantize_money(row.running_balance))

    async def _try_append(
        self,
        representative_id: uuid.UUID,
        transaction_type: str,
        signed: Decimal,
        **fields,
    ) -> FinancialLedgerEntry:
        # Pending caller state must not ride inside the savepoint
        await self.db.flush()
        await self._lock_representative(representative_id)
        tail = await self._read_tail(representative_id)

        entry = FinancialLedgerEntry(
            representative_id=representative_id,
            sequence=tail.sequence + 1,
            transaction_type=transaction_type,
            amount=signed,
            running_balance=quantize_money(tail.running_balance + signed),
            reference_type=fields["reference_type"],
            reference_id=fields["reference_id"],
            reference_number=fields["reference_number"],
            description=fields["description"],
            is_reversal=fields["is_reversal"],
            transaction_date=fields["transaction_date"] or datetime.now(timezone.utc),
        )

        try:
            async with self.db.begin_nested():
                self.db.add(entry)
                await self.db.flush()
        except IntegrityError as e:
            raise LedgerConflict(representative_id, entry.sequence) from e

        return entry

    # Convenience wrappers used by the invoice lifecycle

    async def append_invoice_debit(self, invoice, description: Optional[str] = None) -> FinancialLedgerEntry:
        return await self.append(
            invoice.representative_id,
            LedgerTransactionType.INVOICE.value,
            invoice.total_amount,
            reference_type="invoice",
            reference_id=invoice.id,
            reference_number=invoice.invoice_number,
            description=description or f"فاکتور {invoice.invoice_number}",
        )

    async def append_invoice_reversal(self, invoice, reason: Optional[str] = None) -> FinancialLedgerEntry:
        return await self.append(
            invoice.representative_id,
            LedgerTransactionType.INVOICE.value,
            invoice.total_amount,
            reference_type="invoice",
            reference_id=invoice.id,
            reference_number=invoice.invoice_number,
            description=f"ابطال فاکتور {invoice.invoice_number}" + (f" - {reason}" if reason else ""),
            is_reversal=True,
        )

    async def append_payment_credit(self, payment, reference_number: Optional[str] = None) -> FinancialLedgerEntry:
        return await self.append(
            payment.representative_id,
            LedgerTransactionType.PAYMENT.value,
            payment.amount,
            reference_type="payment",
            reference_id=payment.id,
            reference_number=reference_number,
            description=f"پرداخت {reference_number}" if reference_number else "پرداخت علی‌الحساب",
        )

    # ==================== READ PATH ====================

    async def current_balance(self, representative_id: uuid.UUID) -> Decimal:
        """Balance as the sum of every entry (reconciliation query)."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(FinancialLedgerEntry.amount), 0)).where(
                FinancialLedgerEntry.representative_id == representative_id
            )
        )
        return quantize_money(result.scalar() or ZERO)

    async def last_running_balance(self, representative_id: uuid.UUID) -> Decimal:
        """Materialized running balance of the newest entry."""
        return (await self._read_tail(representative_id)).running_balance

    async def entry_count(self, representative_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(FinancialLedgerEntry.id)).where(
                FinancialLedgerEntry.representative_id == representative_id
            )
        )
        return result.scalar() or 0

    async def get_ledger(
        self,
        representative_id: uuid.UUID,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[FinancialLedgerEntry], int]:
        """Entries ordered by sequence, oldest first."""
        query = (
            select(FinancialLedgerEntry)
            .where(FinancialLedgerEntry.representative_id == representative_id)
            .order_by(FinancialLedgerEntry.sequence)
            .offset(skip)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), await self.entry_count(representative_id)

    async def get_entries_for_reference(self, reference_type: str, reference_id: uuid.UUID) -> List[FinancialLedgerEntry]:
        result = await self.db.execute(
            select(FinancialLedgerEntry)
            .where(
                FinancialLedgerEntry.reference_type == reference_type,
                FinancialLedgerEntry.reference_id == reference_id,
            )
            .order_by(FinancialLedgerEntry.sequence)
        )
        return list(result.scalars().all())

    async def verify_running_balances(self, representative_id: uuid.UUID) -> List[dict]:
        """
        Recompute the cumulative sum and report every entry whose stored
        running balance (or sequence) disagrees. Empty list means consistent.
        """
        entries, _ = await self.get_ledger(representative_id)
        mismatches = []
        expected = ZERO
        for position, entry in enumerate(entries, start=1):
            expected = quantize_money(expected + entry.amount)
            stored = quantize_money(entry.running_balance)
            if stored != expected or entry.sequence != position:
                mismatches.append({
                    "sequence": entry.sequence,
                    "stored_running_balance": stored,
                    "expected_running_balance": expected,
                })

        if mismatches:
            logger.error(
                f"Ledger for representative {representative_id} has "
                f"{len(mismatches)} running-balance mismatches"
            )
        return mismatches
