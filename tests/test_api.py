"""End-to-end flows through the HTTP API."""
import json
from decimal import Decimal

import pytest

API = "/api/v1"


@pytest.fixture
async def collaborator(client):
    response = await client.post(f"{API}/collaborators", json={
        "collaborator_name": "Behnam",
        "unique_collaborator_id": "behnam_001",
        "commission_percentage": "10",
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def representative(client, collaborator):
    response = await client.post(f"{API}/representatives", json={
        "full_name": "Api Rep",
        "admin_username": "api_rep",
        "collaborator_id": collaborator["id"],
        "limited_price_3_month": "900",
    })
    assert response.status_code == 201, response.text
    return response.json()


def money(value) -> Decimal:
    return Decimal(str(value))


async def create_invoice(client, representative, number, quantity=10):
    return await client.post(f"{API}/invoices", json={
        "invoice_number": number,
        "representative_id": representative["id"],
        "items": [{"service_class": "limited", "duration_months": 3, "quantity": quantity}],
    })


async def test_invoice_payment_and_commission_flow(client, collaborator, representative):
    assert representative["sourcing_type"] == "collaborator"

    response = await create_invoice(client, representative, "API-0001")
    assert response.status_code == 201, response.text
    invoice = response.json()
    assert money(invoice["total_amount"]) == Decimal("9000")
    assert invoice["status"] == "pending"
    assert invoice["items"][0]["description"] == "اشتراک 3 ماهه محدود"

    balance = (await client.get(f"{API}/representatives/{representative['id']}/balance")).json()
    assert money(balance["current_balance"]) == Decimal("9000")
    assert balance["is_consistent"] is True

    response = await client.post(f"{API}/payments", json={"invoice_id": invoice["id"], "amount": "9000"})
    assert response.status_code == 201, response.text
    payment = response.json()
    assert payment["payment"]["payment_type"] == "full"
    assert payment["invoice"]["status"] == "paid"
    assert money(payment["ledger_entry"]["running_balance"]) == Decimal("0")

    ledger = (await client.get(f"{API}/representatives/{representative['id']}/ledger")).json()
    assert ledger["total"] == 2
    assert [entry["sequence"] for entry in ledger["items"]] == [1, 2]
    verify = await client.get(f"{API}/representatives/{representative['id']}/ledger/verify")
    assert verify.json() == []

    payments = (await client.get(f"{API}/invoices/{invoice['id']}/payments")).json()
    assert len(payments) == 1

    earnings = (await client.get(f"{API}/collaborators/{collaborator['id']}/earnings")).json()
    assert money(earnings["current_accumulated_earnings"]) == Decimal("900")
    assert earnings["is_consistent"] is True

    commissions = (await client.get(f"{API}/collaborators/{collaborator['id']}/commissions")).json()
    assert commissions["total"] == 1
    assert money(commissions["items"][0]["commission_amount"]) == Decimal("900")


async def test_duplicate_invoice_is_409(client, representative):
    assert (await create_invoice(client, representative, "API-DUP")).status_code == 201

    response = await create_invoice(client, representative, "API-DUP")
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "DuplicateInvoice"

    listing = (await client.get(f"{API}/invoices", params={"representative_id": representative["id"]})).json()
    assert listing["total"] == 1


async def test_cancel_rules(client, representative):
    paid = (await create_invoice(client, representative, "API-PAID")).json()
    await client.post(f"{API}/payments", json={"invoice_id": paid["id"], "amount": "9000"})

    response = await client.post(f"{API}/invoices/{paid['id']}/cancel")
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "InvalidInvoiceTransition"

    pending = (await create_invoice(client, representative, "API-PENDING")).json()
    response = await client.post(f"{API}/invoices/{pending['id']}/cancel", json={"reason": "test"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "test"

    balance = (await client.get(f"{API}/representatives/{representative['id']}/balance")).json()
    assert money(balance["current_balance"]) == Decimal("0")


async def test_payout_over_earnings_is_422(client, collaborator, representative):
    await create_invoice(client, representative, "API-PAYOUT")

    response = await client.post(f"{API}/collaborators/{collaborator['id']}/payouts", json={"amount": "1000"})
    assert response.status_code == 422
    assert response.json()["detail"]["type"] == "InsufficientPayoutBalance"

    response = await client.post(f"{API}/collaborators/{collaborator['id']}/payouts", json={"amount": "500"})
    assert response.status_code == 201, response.text
    assert money(response.json()["balance_after"]) == Decimal("400")

    payouts = (await client.get(f"{API}/collaborators/{collaborator['id']}/payouts")).json()
    assert payouts["total"] == 1


async def test_invalid_duration_is_422(client):
    response = await client.post(f"{API}/representatives", json={"full_name": "X", "admin_username": "x"})
    rep = response.json()
    response = await client.post(f"{API}/invoices", json={
        "representative_id": rep["id"],
        "items": [{"service_class": "limited", "duration_months": 7, "quantity": 1}],
    })
    assert response.status_code == 422


async def test_on_account_payment(client, representative):
    response = await client.post(f"{API}/payments", json={
        "representative_id": representative["id"],
        "amount": "2500",
        "payment_method": "cash",
    })
    assert response.status_code == 201, response.text
    assert response.json()["invoice"] is None
    assert response.json()["payment"]["payment_type"] == "on_account"


async def test_missing_entities_are_404(client):
    missing = "00000000-0000-0000-0000-000000000000"
    assert (await client.get(f"{API}/invoices/{missing}")).status_code == 404
    assert (await client.get(f"{API}/representatives/{missing}/balance")).status_code == 404
    assert (await client.get(f"{API}/collaborators/{missing}")).status_code == 404
    assert (await client.get(f"{API}/imports/batches/{missing}")).status_code == 404


async def test_batch_endpoint_reports_partial_success(client, representative):
    records = [
        {"invoice_number": "BATCH-1", "admin_username": "api_rep",
         "items": [{"service_class": "limited", "duration_months": 3, "quantity": 1}]},
        {"invoice_number": "BATCH-2", "admin_username": "nobody",
         "items": [{"service_class": "limited", "duration_months": 3, "quantity": 1}]},
    ]
    response = await client.post(f"{API}/imports/batch", json={"kind": "invoices", "records": records})

    assert response.status_code == 200, response.text
    report = response.json()
    assert report["total_processed"] == 2
    assert report["successful_inserts"] == 1
    assert report["failed_inserts"] == 1
    assert report["results"][1]["error_type"] == "EntityNotFound"
    assert report["results"][1]["record"]["admin_username"] == "nobody"


async def test_usage_sheet_upload(client):
    header = ",".join(f"c{n}" for n in range(25))
    cells = [""] * 25
    cells[0], cells[1], cells[5], cells[7] = "sheet_rep", "Sheet Rep", "1000", "3"
    content = f"{header}\n{','.join(cells)}\n".encode("utf-8")

    response = await client.post(
        f"{API}/imports/usage-sheet",
        files={"file": ("usage.csv", content, "text/csv")},
        data={"batch_name": "Upload"},
    )
    assert response.status_code == 200, response.text
    result = response.json()
    assert result["invoices_created"] == 1
    assert money(result["total_amount"]) == Decimal("3000")

    batch = (await client.get(f"{API}/imports/batches/{result['batch_id']}")).json()
    assert batch["batch_name"] == "Upload"
    history = (await client.get(f"{API}/imports/file-imports")).json()
    assert [item["status"] for item in history] == ["completed"]


async def test_usage_sheet_rejects_other_formats(client):
    response = await client.post(
        f"{API}/imports/usage-sheet",
        files={"file": ("usage.pdf", b"%PDF", "application/pdf")},
    )
    assert response.status_code == 400


async def test_overdue_sweep_endpoint(client, representative):
    await client.post(f"{API}/invoices", json={
        "invoice_number": "API-LATE",
        "representative_id": representative["id"],
        "items": [{"service_class": "limited", "duration_months": 3, "quantity": 1}],
        "due_date": "2026-01-01T00:00:00+00:00",
    })
    response = await client.post(f"{API}/invoices/mark-overdue", json={"as_of": "2026-02-01T00:00:00+00:00"})
    assert response.status_code == 200, response.text
    assert response.json() == {"marked_count": 1, "invoice_numbers": ["API-LATE"]}


async def test_stats(client, representative):
    await create_invoice(client, representative, "API-STATS")

    dashboard = (await client.get(f"{API}/stats")).json()
    assert money(dashboard["metrics"]["total_outstanding"]["value"]) == Decimal("9000")
    assert dashboard["metrics"]["total_representatives"]["value"] == 1

    assert (await client.get(f"{API}/stats/nope")).status_code == 404
    cleared = (await client.post(f"{API}/stats/invalidate")).json()
    assert cleared["cleared"] == len(dashboard["metrics"])


async def test_health_and_root(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
    assert "docs" in (await client.get("/")).json()


async def test_usage_sheet_accepts_json_export(client):
    item = {"admin_username": "json_rep", "limited_1_month_volume": "2"}
    for months in range(1, 7):
        item.setdefault(f"limited_{months}_month_volume", "0")
        item[f"unlimited_{months}_month"] = "0"

    response = await client.post(
        f"{API}/imports/usage-sheet",
        files={"file": ("export.json", json.dumps([item]).encode("utf-8"), "application/json")},
    )
    assert response.status_code == 200, response.text
    assert money(response.json()["total_amount"]) == Decimal("1800")
