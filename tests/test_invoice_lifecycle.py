import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from marfanet.core.exceptions import (
    DuplicateInvoice,
    EntityNotFound,
    InvalidInvoiceTransition,
    InvoiceValidationError,
    PricingUnresolved,
)
from marfanet.models.invoice import Invoice, InvoiceItem
from marfanet.models.ledger import FinancialLedgerEntry
from marfanet.schemas.invoice import InvoiceCreate, InvoiceFilter, InvoiceItemCreate
from marfanet.services.commission_service import CommissionService
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService
from marfanet.services.ledger_service import LedgerService
from marfanet.services.pricing_service import PricingService

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
async def rep(make_representative):
    return await make_representative("lifecycle_rep", limited_price_3_month=Decimal("900"))


@pytest.fixture
def service(db):
    return InvoiceLifecycleService(db)


def limited_3_months(quantity=10, **fields):
    return InvoiceItemCreate(service_class="limited", duration_months=3, quantity=quantity, **fields)


def invoice_data(rep, *items, **fields):
    return InvoiceCreate(representative_id=rep.id, items=list(items) or [limited_3_months()], **fields)


async def count(db, model, *conditions):
    return (await db.execute(select(func.count(model.id)).where(*conditions))).scalar()


class TestCreateInvoice:
    async def test_priced_from_representative_table(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep), now=NOW)

        assert invoice.base_amount == Decimal("9000.00")
        assert invoice.total_amount == Decimal("9000.00")
        assert invoice.status == "pending"
        assert invoice.price_source == "representative_rate"
        assert invoice.due_date == NOW + timedelta(days=30)
        [item] = invoice.items
        assert item.unit_price == Decimal("900.00")
        assert item.line_total == Decimal("9000.00")
        assert item.description == "اشتراک 3 ماهه محدود"

        entries = await LedgerService(db).get_entries_for_reference("invoice", invoice.id)
        assert [e.amount for e in entries] == [Decimal("9000.00")]
        assert await LedgerService(db).current_balance(rep.id) == Decimal("9000.00")

    async def test_stored_line_total_matches_stored_quantity(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep, limited_3_months(quantity=Decimal("1.0004"))))

        item = (await db.execute(
            select(InvoiceItem)
            .where(InvoiceItem.invoice_id == invoice.id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        assert item.quantity == Decimal("1.000")
        assert item.line_total == item.quantity * item.unit_price
        assert invoice.total_amount == Decimal("900.00")

    async def test_generated_numbers_are_sequential(self, service, rep):
        first = await service.create_invoice(invoice_data(rep), now=NOW)
        second = await service.create_invoice(invoice_data(rep), now=NOW)
        assert first.invoice_number == "INV-2026-000001"
        assert second.invoice_number == "INV-2026-000002"

    async def test_discount_and_tax(self, service, rep):
        invoice = await service.create_invoice(
            invoice_data(rep, discount_amount=Decimal("1000"), tax_amount=Decimal("720")), now=NOW
        )
        assert invoice.total_amount == Decimal("8720.00")

    async def test_discount_larger_than_base(self, db, service, rep):
        with pytest.raises(InvoiceValidationError):
            await service.create_invoice(invoice_data(rep, discount_amount=Decimal("9001")))
        assert await count(db, Invoice) == 0

    async def test_base_amount_must_match_lines(self, db, service, rep):
        with pytest.raises(InvoiceValidationError):
            await service.create_invoice(invoice_data(rep, base_amount=Decimal("8000")))
        assert await count(db, Invoice) == 0
        assert await count(db, FinancialLedgerEntry) == 0

    async def test_matching_base_amount_is_accepted(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep, base_amount=Decimal("9000")))
        assert invoice.base_amount == Decimal("9000.00")

    async def test_unresolved_price_writes_nothing(self, db, rep):
        service = InvoiceLifecycleService(db, pricing=PricingService(default_unlimited=[Decimal("0")] * 6))
        data = invoice_data(
            rep,
            limited_3_months(),
            InvoiceItemCreate(service_class="unlimited", duration_months=2, quantity=1),
        )
        with pytest.raises(PricingUnresolved):
            await service.create_invoice(data)
        assert await count(db, Invoice) == 0
        assert await count(db, FinancialLedgerEntry) == 0

    async def test_unknown_representative(self, service):
        data = InvoiceCreate(representative_id=uuid.uuid4(), items=[limited_3_months()])
        with pytest.raises(EntityNotFound):
            await service.create_invoice(data)

    async def test_duplicate_number_is_rejected_without_side_effects(
        self, db, make_collaborator, make_representative
    ):
        collaborator = await make_collaborator()
        rep = await make_representative("dup_rep", collaborator_id=collaborator.id)
        service = InvoiceLifecycleService(db)

        first = await service.create_invoice(invoice_data(rep, invoice_number="MF-1001"))
        with pytest.raises(DuplicateInvoice) as exc:
            await service.create_invoice(invoice_data(rep, invoice_number="MF-1001"))

        assert exc.value.existing_invoice_id == first.id
        assert await count(db, Invoice) == 1
        assert await LedgerService(db).entry_count(rep.id) == 1
        assert len(await CommissionService(db).get_records_for_invoice(first.id)) == 1

    async def test_zero_total_is_paid_on_issue(self, db, service, rep):
        invoice = await service.create_invoice(
            invoice_data(rep, discount_amount=Decimal("9000")), now=NOW
        )
        assert invoice.total_amount == Decimal("0.00")
        assert invoice.status == "paid"
        assert invoice.paid_date == NOW
        assert await LedgerService(db).entry_count(rep.id) == 1

    async def test_list_invoices_by_status(self, service, rep):
        await service.create_invoice(invoice_data(rep))
        cancelled = await service.create_invoice(invoice_data(rep))
        await service.cancel_invoice(cancelled.id)

        pending, total = await service.list_invoices(InvoiceFilter(status="pending"))
        assert total == 1
        assert pending[0].id != cancelled.id


class TestPayments:
    async def test_two_halves_settle_the_invoice(self, db, service, make_representative):
        rep = await make_representative("halves_rep", limited_price_1_month=Decimal("1000"))
        invoice = await service.create_invoice(
            invoice_data(rep, InvoiceItemCreate(service_class="limited", duration_months=1, quantity=10))
        )
        assert invoice.total_amount == Decimal("10000.00")

        first = await service.record_payment(Decimal("5000"), invoice_id=invoice.id, now=NOW)
        assert first.payment.payment_type == "partial"
        assert invoice.status == "pending"
        assert invoice.paid_date is None

        paid_at = NOW + timedelta(days=1)
        second = await service.record_payment(Decimal("5000"), invoice_id=invoice.id, now=paid_at)
        assert second.payment.payment_type == "full"
        assert second.warnings == []
        assert invoice.status == "paid"
        assert invoice.paid_date == paid_at

        assert await service.amount_paid(invoice.id) == Decimal("10000.00")
        assert await LedgerService(db).current_balance(rep.id) == Decimal("0.00")
        assert second.ledger_entry.running_balance == Decimal("0.00")

    async def test_payment_on_paid_invoice_is_overpayment(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        await service.record_payment(Decimal("9000"), invoice_id=invoice.id, now=NOW)

        extra = await service.record_payment(
            Decimal("500"), invoice_id=invoice.id, now=NOW + timedelta(days=2)
        )
        assert extra.payment.payment_type == "overpayment"
        assert extra.warnings
        assert invoice.paid_date == NOW
        assert await LedgerService(db).current_balance(rep.id) == Decimal("-500.00")

    async def test_single_overpayment_settles_and_warns(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        result = await service.record_payment(Decimal("10000"), invoice_id=invoice.id)
        assert result.payment.payment_type == "overpayment"
        assert invoice.status == "paid"
        assert len(result.warnings) == 1

    async def test_payment_on_cancelled_invoice_is_rejected(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        await service.cancel_invoice(invoice.id)

        with pytest.raises(InvalidInvoiceTransition):
            await service.record_payment(Decimal("100"), invoice_id=invoice.id)
        assert await service.get_payments(invoice.id) == []

    async def test_on_account_payment(self, db, service, rep):
        result = await service.record_payment(Decimal("5000"), representative_id=rep.id, payment_method="cash")

        assert result.invoice is None
        assert result.payment.payment_type == "on_account"
        assert result.ledger_entry.amount == Decimal("-5000.00")
        assert await LedgerService(db).current_balance(rep.id) == Decimal("-5000.00")

    async def test_payment_representative_must_own_invoice(self, service, rep, make_representative):
        other = await make_representative("other_rep")
        invoice = await service.create_invoice(invoice_data(rep))
        with pytest.raises(InvoiceValidationError):
            await service.record_payment(Decimal("100"), invoice_id=invoice.id, representative_id=other.id)

    async def test_payment_needs_a_target(self, service):
        with pytest.raises(InvoiceValidationError):
            await service.record_payment(Decimal("100"))


class TestCancel:
    async def test_cancel_pending_reverses_the_debit(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        cancelled = await service.cancel_invoice(invoice.id, reason="duplicate upload", now=NOW)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at == NOW
        assert cancelled.cancellation_reason == "duplicate upload"

        entries = await LedgerService(db).get_entries_for_reference("invoice", invoice.id)
        assert [e.amount for e in entries] == [Decimal("9000.00"), Decimal("-9000.00")]
        assert entries[1].is_reversal is True
        assert await LedgerService(db).current_balance(rep.id) == Decimal("0.00")
        assert await LedgerService(db).verify_running_balances(rep.id) == []

    async def test_cancel_paid_is_rejected(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        await service.record_payment(Decimal("9000"), invoice_id=invoice.id)

        with pytest.raises(InvalidInvoiceTransition):
            await service.cancel_invoice(invoice.id)
        assert invoice.status == "paid"
        assert await LedgerService(db).entry_count(rep.id) == 2

    async def test_cancel_twice_is_rejected(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        await service.cancel_invoice(invoice.id)
        with pytest.raises(InvalidInvoiceTransition):
            await service.cancel_invoice(invoice.id)

    async def test_partial_payment_stays_as_credit(self, db, service, rep):
        invoice = await service.create_invoice(invoice_data(rep))
        await service.record_payment(Decimal("4000"), invoice_id=invoice.id)
        await service.cancel_invoice(invoice.id)

        assert await LedgerService(db).current_balance(rep.id) == Decimal("-4000.00")


class TestOverdue:
    async def test_sweep_marks_only_past_due_pending(self, service, rep):
        late = await service.create_invoice(invoice_data(rep, due_date=NOW - timedelta(days=1)))
        on_time = await service.create_invoice(invoice_data(rep, due_date=NOW + timedelta(days=1)))
        settled = await service.create_invoice(invoice_data(rep, due_date=NOW - timedelta(days=3)))
        await service.record_payment(Decimal("9000"), invoice_id=settled.id)

        marked = await service.mark_overdue_invoices(now=NOW)

        assert [invoice.id for invoice in marked] == [late.id]
        assert late.status == "overdue"
        assert on_time.status == "pending"
        assert settled.status == "paid"
        assert await service.mark_overdue_invoices(now=NOW) == []

    async def test_partial_payment_reverts_overdue_to_pending(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep, due_date=NOW - timedelta(days=1)))
        await service.mark_overdue_invoices(now=NOW)

        await service.record_payment(Decimal("1000"), invoice_id=invoice.id)
        assert invoice.status == "pending"

    async def test_overdue_invoice_can_be_paid_in_full(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep, due_date=NOW - timedelta(days=1)))
        await service.mark_overdue_invoices(now=NOW)

        await service.record_payment(Decimal("9000"), invoice_id=invoice.id, now=NOW)
        assert invoice.status == "paid"
        assert invoice.paid_date == NOW

    async def test_overdue_invoice_can_be_cancelled(self, service, rep):
        invoice = await service.create_invoice(invoice_data(rep, due_date=NOW - timedelta(days=1)))
        await service.mark_overdue_invoices(now=NOW)

        cancelled = await service.cancel_invoice(invoice.id)
        assert cancelled.status == "cancelled"
