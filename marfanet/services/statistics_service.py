"""Statistics Cache: memoized dashboard aggregates.

Each metric is computed on first access (or once its valid_until has
passed) and stored as {value, calculated_at, valid_until}. Mutating
services call invalidate_metrics() for the metrics they affect, once when
they write and again after their session commits.
Consumers must tolerate staleness up to STATS_CACHE_TTL; balances are
never read from here.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set
import logging

from sqlalchemy import event, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from marfanet.config import settings
from marfanet.core.exceptions import EntityNotFound
from marfanet.db_types import quantize_money
from marfanet.models.representative import Collaborator, Representative, RepresentativeStatus
from marfanet.models.invoice import Invoice, InvoiceStatus
from marfanet.models.ledger import FinancialLedgerEntry
from marfanet.services.cache_service import CacheService, get_cache

logger = logging.getLogger(__name__)

KEY_PREFIX = "stats:"

# Session.info key holding metrics to drop when the session commits
DIRTY_METRICS_KEY = "dirty_metrics"

TOTAL_REPRESENTATIVES = "total_representatives"
ACTIVE_REPRESENTATIVES = "active_representatives"
MONTHLY_INVOICES = "monthly_invoices"
MONTHLY_REVENUE = "monthly_revenue"
OVERDUE_INVOICES = "overdue_invoices"
TOTAL_OUTSTANDING = "total_outstanding"
COLLABORATOR_EARNINGS = "collaborator_earnings"

# Metrics touched by each kind of mutation
INVOICE_METRICS = (MONTHLY_INVOICES, MONTHLY_REVENUE, OVERDUE_INVOICES)
LEDGER_METRICS = (TOTAL_OUTSTANDING,)
DIRECTORY_METRICS = (TOTAL_REPRESENTATIVES, ACTIVE_REPRESENTATIVES)
COMMISSION_METRICS = (COLLABORATOR_EARNINGS,)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _money(value) -> str:
    return str(quantize_money(value or Decimal("0")))


async def _count_representatives(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(Representative.id)))).scalar() or 0


async def _count_active_representatives(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Representative.id)).where(
            Representative.status == RepresentativeStatus.ACTIVE.value
        )
    )
    return result.scalar() or 0


async def _count_monthly_invoices(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Invoice.id)).where(
            Invoice.created_at >= _month_start(datetime.now(timezone.utc)),
            Invoice.status != InvoiceStatus.CANCELLED.value,
        )
    )
    return result.scalar() or 0


async def _sum_monthly_revenue(db: AsyncSession) -> str:
    result = await db.execute(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(
            Invoice.created_at >= _month_start(datetime.now(timezone.utc)),
            Invoice.status != InvoiceStatus.CANCELLED.value,
        )
    )
    return _money(result.scalar())


async def _count_overdue_invoices(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Invoice.id)).where(Invoice.status == InvoiceStatus.OVERDUE.value)
    )
    return result.scalar() or 0


async def _sum_outstanding(db: AsyncSession) -> str:
    result = await db.execute(select(func.coalesce(func.sum(FinancialLedgerEntry.amount), 0)))
    return _money(result.scalar())


async def _sum_collaborator_earnings(db: AsyncSession) -> str:
    result = await db.execute(
        select(func.coalesce(func.sum(Collaborator.current_accumulated_earnings), 0))
    )
    return _money(result.scalar())


METRIC_CALCULATORS: Dict[str, Callable[[AsyncSession], Awaitable[Any]]] = {
    TOTAL_REPRESENTATIVES: _count_representatives,
    ACTIVE_REPRESENTATIVES: _count_active_representatives,
    MONTHLY_INVOICES: _count_monthly_invoices,
    MONTHLY_REVENUE: _sum_monthly_revenue,
    OVERDUE_INVOICES: _count_overdue_invoices,
    TOTAL_OUTSTANDING: _sum_outstanding,
    COLLABORATOR_EARNINGS: _sum_collaborator_earnings,
}


async def invalidate_metrics(*metric_keys: str, session: Optional[AsyncSession] = None) -> None:
    """
    Drop memoized values; the next get() recomputes them.

    With a session the keys are dropped again after that session commits,
    so a value recomputed from uncommitted state does not live for a full TTL.
    """
    cache = get_cache()
    for key in metric_keys:
        await cache.delete(f"{KEY_PREFIX}{key}")
    if session is not None:
        session.info.setdefault(DIRTY_METRICS_KEY, set()).update(metric_keys)
    logger.debug(f"Invalidated metrics: {', '.join(metric_keys)}")


_pending_invalidations: Set[asyncio.Task] = set()


def _forget_invalidation(task: asyncio.Task) -> None:
    _pending_invalidations.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Post-commit metric invalidation failed: {task.exception()}")


@event.listens_for(Session, "after_commit")
def _invalidate_after_commit(session: Session) -> None:
    metric_keys = session.info.pop(DIRTY_METRICS_KEY, None)
    if not metric_keys:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    task = loop.create_task(invalidate_metrics(*sorted(metric_keys)))
    _pending_invalidations.add(task)
    task.add_done_callback(_forget_invalidation)


class StatisticsService:
    """Lazily computed, TTL-bounded aggregates."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheService] = None,
        ttl: Optional[int] = None,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.ttl = ttl or settings.STATS_CACHE_TTL

    @staticmethod
    def metric_keys() -> Iterable[str]:
        return METRIC_CALCULATORS.keys()

    async def get(self, metric_key: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Return {metric_key, value, calculated_at, valid_until}.

        Served from cache while valid_until is in the future, otherwise
        recomputed and memoized.
        """
        calculator = METRIC_CALCULATORS.get(metric_key)
        if calculator is None:
            raise EntityNotFound(f"Unknown metric: {metric_key}", {"metric_key": metric_key})

        now = now or datetime.now(timezone.utc)
        cached = await self.cache.get(f"{KEY_PREFIX}{metric_key}")
        if cached and datetime.fromisoformat(cached["valid_until"]) > now:
            return cached

        value = await calculator(self.db)
        entry = {
            "metric_key": metric_key,
            "value": value,
            "calculated_at": now.isoformat(),
            "valid_until": (now + timedelta(seconds=self.ttl)).isoformat(),
        }
        await self.cache.set(f"{KEY_PREFIX}{metric_key}", entry, ttl=self.ttl)
        logger.debug(f"Computed metric {metric_key} = {value}")
        return entry

    async def get_dashboard(self) -> Dict[str, Dict[str, Any]]:
        """All metrics keyed by name."""
        now = datetime.now(timezone.utc)
        return {key: await self.get(key, now=now) for key in self.metric_keys()}

    async def invalidate(self, metric_key: str) -> bool:
        return await self.cache.delete(f"{KEY_PREFIX}{metric_key}")

    async def invalidate_all(self) -> int:
        cleared = await self.cache.clear_pattern(f"{KEY_PREFIX}*")
        logger.info(f"Invalidated {cleared} cached metrics")
        return cleared
