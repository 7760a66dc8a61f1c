import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marfanet.core.exceptions import EntityNotFound
from marfanet.jobs.cache_jobs import cleanup_expired_cache
from marfanet.models.representative import Representative
from marfanet.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from marfanet.services.cache_service import InMemoryCache, reset_cache
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService
from marfanet.services.statistics_service import (
    KEY_PREFIX,
    MONTHLY_INVOICES,
    TOTAL_OUTSTANDING,
    TOTAL_REPRESENTATIVES,
    StatisticsService,
)


async def issue(db, rep):
    return await InvoiceLifecycleService(db).create_invoice(
        InvoiceCreate(
            representative_id=rep.id,
            items=[InvoiceItemCreate(service_class="unlimited", duration_months=1, quantity=1)],
        )
    )


async def test_value_is_memoized_until_valid_until(db, make_representative):
    stats = StatisticsService(db, ttl=60)
    await make_representative("stats_rep_1")

    now = datetime.now(timezone.utc)
    first = await stats.get(TOTAL_REPRESENTATIVES, now=now)
    assert first["value"] == 1
    assert first["valid_until"] == (now + timedelta(seconds=60)).isoformat()

    # Bypass the service layer so nothing invalidates the entry
    db.add(Representative(full_name="Silent", admin_username="silent", sourcing_type="direct"))
    await db.flush()

    cached = await stats.get(TOTAL_REPRESENTATIVES, now=now + timedelta(seconds=30))
    assert cached["value"] == 1
    assert cached["calculated_at"] == first["calculated_at"]

    recomputed = await stats.get(TOTAL_REPRESENTATIVES, now=now + timedelta(seconds=61))
    assert recomputed["value"] == 2


async def test_mutations_invalidate_affected_metrics(db, make_representative):
    stats = StatisticsService(db)
    rep = await make_representative("stats_rep")

    assert (await stats.get(MONTHLY_INVOICES))["value"] == 0
    assert (await stats.get(TOTAL_OUTSTANDING))["value"] == "0.00"

    await issue(db, rep)

    assert (await stats.get(MONTHLY_INVOICES))["value"] == 1
    assert (await stats.get(TOTAL_OUTSTANDING))["value"] == "40000.00"

    await InvoiceLifecycleService(db).record_payment(Decimal("15000"), representative_id=rep.id)
    assert (await stats.get(TOTAL_OUTSTANDING))["value"] == "25000.00"


async def test_metrics_are_dropped_again_after_commit(db, fresh_cache, make_representative):
    await make_representative("commit_rep")

    # Memoized from the uncommitted write
    await StatisticsService(db).get(TOTAL_REPRESENTATIVES)
    assert await fresh_cache.get(f"{KEY_PREFIX}{TOTAL_REPRESENTATIVES}") is not None

    await db.commit()
    await asyncio.sleep(0.01)

    assert await fresh_cache.get(f"{KEY_PREFIX}{TOTAL_REPRESENTATIVES}") is None
    assert "dirty_metrics" not in db.info


async def test_dashboard_has_every_metric(db):
    dashboard = await StatisticsService(db).get_dashboard()
    assert set(dashboard) == set(StatisticsService.metric_keys())
    assert dashboard["collaborator_earnings"]["value"] == "0.00"


async def test_unknown_metric(db):
    with pytest.raises(EntityNotFound):
        await StatisticsService(db).get("nope")


async def test_invalidate_all(db, fresh_cache):
    stats = StatisticsService(db)
    await stats.get_dashboard()
    assert len(fresh_cache.backend) == len(list(StatisticsService.metric_keys()))

    cleared = await stats.invalidate_all()
    assert cleared == len(list(StatisticsService.metric_keys()))
    assert len(fresh_cache.backend) == 0


async def test_cleanup_job_drops_expired_entries():
    cache = reset_cache(InMemoryCache())
    await cache.set("stats:old", {"value": 1}, ttl=-1)
    await cache.set("stats:fresh", {"value": 2}, ttl=60)

    assert await cleanup_expired_cache() == 1
    assert await cache.get("stats:fresh") == {"value": 2}
