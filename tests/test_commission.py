import uuid
from decimal import Decimal

import pytest

from marfanet.core.exceptions import EntityNotFound, InsufficientPayoutBalance, LedgerEngineError
from marfanet.schemas.commission import ManualCommissionCreate
from marfanet.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from marfanet.services.commission_service import CommissionService
from marfanet.services.directory_service import DirectoryService
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService


@pytest.fixture
async def collaborator(make_collaborator):
    return await make_collaborator("behnam_001", Decimal("10"))


@pytest.fixture
async def sourced_rep(make_representative, collaborator):
    return await make_representative("sourced_rep", collaborator_id=collaborator.id)


async def issue(db, representative, *items, **fields):
    data = InvoiceCreate(
        representative_id=representative.id,
        items=[InvoiceItemCreate(**item) for item in items],
        **fields,
    )
    return await InvoiceLifecycleService(db).create_invoice(data)


UNLIMITED_100K = {"service_class": "unlimited", "duration_months": 1, "quantity": 1, "unit_price": Decimal("100000")}
LIMITED_9000 = {"service_class": "limited", "duration_months": 3, "quantity": 10, "unit_price": Decimal("900")}


async def test_collaborator_percentage_applies_to_base_amount(db, collaborator, sourced_rep):
    invoice = await issue(db, sourced_rep, UNLIMITED_100K)

    records = await CommissionService(db).get_records_for_invoice(invoice.id)
    assert len(records) == 1
    record = records[0]
    assert record.commission_amount == Decimal("10000.00")
    assert record.commission_rate == Decimal("10")
    assert record.base_revenue_amount == Decimal("100000.00")
    assert record.revenue_type == "unlimited"
    assert record.calculation_method == "automatic"

    refreshed = await DirectoryService(db).get_collaborator(collaborator.id)
    assert refreshed.current_accumulated_earnings == Decimal("10000.00")
    assert refreshed.total_earnings_to_date == Decimal("10000.00")


async def test_per_class_overrides_make_a_mixed_record(db, make_representative, collaborator):
    rep = await make_representative(
        "override_rep", collaborator_id=collaborator.id, volume_commission_rate=Decimal("5")
    )
    invoice = await issue(db, rep, LIMITED_9000, UNLIMITED_100K)

    [record] = await CommissionService(db).get_records_for_invoice(invoice.id)
    # 9000 x 5% + 100000 x 10%
    assert record.commission_amount == Decimal("10450.00")
    assert record.revenue_type == "mixed"
    assert record.base_revenue_amount == Decimal("109000.00")

    rates = {item.service_class: item.commission_rate for item in invoice.items}
    assert rates == {"limited": Decimal("5"), "unlimited": Decimal("10")}


async def test_single_override_rate(db, make_representative, collaborator):
    rep = await make_representative(
        "volume_rep", collaborator_id=collaborator.id, volume_commission_rate=Decimal("7.5")
    )
    invoice = await issue(db, rep, LIMITED_9000)

    [record] = await CommissionService(db).get_records_for_invoice(invoice.id)
    assert record.commission_rate == Decimal("7.5")
    assert record.commission_amount == Decimal("675.00")
    assert record.revenue_type == "limited"


async def test_direct_representative_accrues_nothing(db, make_representative):
    rep = await make_representative("direct_rep")
    invoice = await issue(db, rep, UNLIMITED_100K)

    assert await CommissionService(db).compute_and_accrue(invoice) is None
    assert await CommissionService(db).get_records_for_invoice(invoice.id) == []


async def test_accrual_is_idempotent(db, collaborator, sourced_rep):
    invoice = await issue(db, sourced_rep, UNLIMITED_100K)
    service = CommissionService(db)

    again = await service.compute_and_accrue(invoice)
    assert again.commission_amount == Decimal("10000.00")
    assert len(await service.get_records_for_invoice(invoice.id)) == 1

    summary = await service.get_earnings_summary(collaborator.id)
    assert summary["total_earnings_to_date"] == Decimal("10000.00")
    assert summary["is_consistent"] is True


class TestPayouts:
    async def test_payout_draws_down_earnings(self, db, collaborator, sourced_rep):
        await issue(db, sourced_rep, UNLIMITED_100K)
        service = CommissionService(db)

        payout = await service.record_payout(collaborator.id, Decimal("4000"), payment_method="card")

        assert payout.balance_after == Decimal("6000.00")
        summary = await service.get_earnings_summary(collaborator.id)
        assert summary["current_accumulated_earnings"] == Decimal("6000.00")
        assert summary["total_earnings_to_date"] == Decimal("10000.00")
        assert summary["total_payouts_to_date"] == Decimal("4000.00")
        assert summary["payout_count"] == 1
        assert summary["is_consistent"] is True

    async def test_payout_larger_than_earnings_is_rejected(self, db, collaborator, sourced_rep):
        await issue(db, sourced_rep, UNLIMITED_100K)
        service = CommissionService(db)

        with pytest.raises(InsufficientPayoutBalance) as exc:
            await service.record_payout(collaborator.id, Decimal("10000.01"))
        assert exc.value.available == Decimal("10000.00")

        summary = await service.get_earnings_summary(collaborator.id)
        assert summary["current_accumulated_earnings"] == Decimal("10000.00")
        assert summary["total_payouts_to_date"] == Decimal("0.00")
        assert await service.get_payouts(collaborator.id) == []

    async def test_payout_of_everything(self, db, collaborator, sourced_rep):
        await issue(db, sourced_rep, UNLIMITED_100K)
        payout = await CommissionService(db).record_payout(collaborator.id, Decimal("10000"))
        assert payout.balance_after == Decimal("0.00")

    async def test_non_positive_payout(self, db, collaborator):
        with pytest.raises(LedgerEngineError):
            await CommissionService(db).record_payout(collaborator.id, Decimal("0"))

    async def test_unknown_collaborator(self, db):
        with pytest.raises(EntityNotFound):
            await CommissionService(db).record_payout(uuid.uuid4(), Decimal("10"))


class TestReversal:
    async def test_cancel_writes_negative_record(self, db, collaborator, sourced_rep):
        invoice = await issue(db, sourced_rep, UNLIMITED_100K)
        await InvoiceLifecycleService(db).cancel_invoice(invoice.id, reason="wrong month")

        records = await CommissionService(db).get_records_for_invoice(invoice.id)
        assert sorted(r.commission_amount for r in records) == [Decimal("-10000.00"), Decimal("10000.00")]
        reversal = next(r for r in records if r.commission_amount < 0)
        original = next(r for r in records if r.commission_amount > 0)
        assert reversal.reverses_record_id == original.id
        assert reversal.notes == "wrong month"

        summary = await CommissionService(db).get_earnings_summary(collaborator.id)
        assert summary["current_accumulated_earnings"] == Decimal("0.00")
        assert summary["total_earnings_to_date"] == Decimal("0.00")
        # Lifetime earnings are net of reversals; lifetime payouts are untouched
        assert summary["total_earnings_to_date"] == sum(r.commission_amount for r in records)
        assert summary["total_payouts_to_date"] == Decimal("0.00")
        assert summary["is_consistent"] is True

    async def test_clawback_after_payout_blocks_cancel(self, db, collaborator, sourced_rep):
        invoice = await issue(db, sourced_rep, UNLIMITED_100K)
        await CommissionService(db).record_payout(collaborator.id, Decimal("8000"))

        with pytest.raises(InsufficientPayoutBalance):
            await InvoiceLifecycleService(db).cancel_invoice(invoice.id)

        summary = await CommissionService(db).get_earnings_summary(collaborator.id)
        assert summary["current_accumulated_earnings"] == Decimal("2000.00")
        assert summary["is_consistent"] is True


async def test_manual_commission(db, collaborator, sourced_rep):
    service = CommissionService(db)
    record = await service.record_manual_commission(
        collaborator.id,
        ManualCommissionCreate(
            representative_id=sourced_rep.id,
            base_revenue_amount=Decimal("50000"),
            commission_rate=Decimal("4"),
            notes="bonus",
        ),
    )

    assert record.commission_amount == Decimal("2000.00")
    assert record.calculation_method == "manual"
    records, total = await service.get_commission_records(collaborator.id)
    assert total == 1 and records[0].id == record.id

    summary = await service.get_earnings_summary(collaborator.id)
    assert summary["current_accumulated_earnings"] == Decimal("2000.00")
    assert summary["representative_count"] == 1
    assert summary["is_consistent"] is True
