import json
from decimal import Decimal

import pytest
from sqlalchemy import select

from marfanet.models.file_import import FileImport
from marfanet.models.invoice import Invoice, InvoiceBatch
from marfanet.services.batch_import_service import BatchImportService
from marfanet.services.directory_service import DirectoryService
from marfanet.services.usage_sheet_parser import UsageSheetError, UsageSheetParser, parse_number

COLUMNS = 25


def sheet_row(username="", full_name="", price_per_gb="", unlimited_monthly="", limited=None, unlimited=None):
    cells = [""] * COLUMNS
    cells[0], cells[1] = username, full_name
    cells[5], cells[6] = price_per_gb, unlimited_monthly
    for months, quantity in (limited or {}).items():
        cells[7 + months - 1] = quantity
    for months, quantity in (unlimited or {}).items():
        cells[19 + months - 1] = quantity
    return ",".join(cells)


def build_sheet(*rows):
    header = ",".join(f"col{n}" for n in range(COLUMNS))
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


MONTHLY_SHEET = build_sheet(
    sheet_row("ali", "Ali Ahmadi", "1000", "40000", limited={1: "10"}, unlimited={1: "2"}),
    sheet_row("reza", "Reza Karimi", "1000", "40000"),
    sheet_row("sara", "Sara Moradi", "1000", "40000", limited={2: "abc"}),
    sheet_row(),
    sheet_row(),
    sheet_row("ghost", "Never Read", "1000", "40000", limited={1: "5"}),
)


class TestParser:
    def test_rows_and_errors(self):
        rows, errors = UsageSheetParser().parse(MONTHLY_SHEET, "march.csv")

        assert [row.admin_username for row in rows] == ["ali", "reza"]
        ali, reza = rows
        assert ali.row_number == 2
        assert ali.quantities == {("limited", 1): Decimal("10"), ("unlimited", 1): Decimal("2")}
        assert reza.has_usage is False
        assert len(errors) == 1
        assert errors[0].startswith("ردیف 4:")

    def test_price_table_from_sheet_prices(self):
        rows, _ = UsageSheetParser().parse(MONTHLY_SHEET, "march.csv")
        table = rows[0].price_table()

        assert table["limited_price_1_month"] == Decimal("1000")
        assert table["limited_price_6_month"] == Decimal("1000")
        assert table["unlimited_price_1_month"] == Decimal("40000")
        assert table["unlimited_price_3_month"] == Decimal("120000")

    def test_semicolon_delimiter(self):
        content = MONTHLY_SHEET.decode("utf-8").replace(",", ";").encode("utf-8")
        rows, _ = UsageSheetParser().parse(content, "march.csv")
        assert rows[0].quantities[("limited", 1)] == Decimal("10")

    def test_header_only_file(self):
        with pytest.raises(UsageSheetError):
            UsageSheetParser().parse(build_sheet(), "empty.csv")

    def test_unsupported_extension(self):
        with pytest.raises(UsageSheetError):
            UsageSheetParser().parse(MONTHLY_SHEET, "march.pdf")


def json_item(username, **values):
    item = {"admin_username": username}
    for months in range(1, 7):
        item[f"limited_{months}_month_volume"] = "0"
        item[f"unlimited_{months}_month"] = "0"
    item.update(values)
    return item


JSON_EXPORT = json.dumps([
    json_item("ali", limited_1_month_volume="12.5", unlimited_3_month=2),
    json_item("reza"),
    json_item("sara", unlimited_2_month="1.5"),
    {"admin_username": "partial"},
]).encode("utf-8")


class TestJsonExport:
    def test_items_and_errors(self):
        rows, errors = UsageSheetParser().parse(JSON_EXPORT, "export.json")

        assert [row.admin_username for row in rows] == ["ali", "reza"]
        assert rows[0].quantities == {("limited", 1): Decimal("12.5"), ("unlimited", 3): Decimal("2")}
        assert rows[0].full_name == "ali"
        assert rows[1].has_usage is False
        assert [error.split(":")[0] for error in errors] == ["آیتم 3", "آیتم 4"]
        assert "Missing fields: limited_1_month_volume" in errors[1]

    def test_must_be_an_array(self):
        with pytest.raises(UsageSheetError):
            UsageSheetParser().parse(b'{"admin_username": "ali"}', "export.json")

    def test_empty_array(self):
        with pytest.raises(UsageSheetError):
            UsageSheetParser().parse(b"[]", "export.json")

    def test_malformed_json(self):
        with pytest.raises(UsageSheetError):
            UsageSheetParser().parse(b"[{", "export.json")


@pytest.mark.parametrize("raw,expected", [
    ("۱۲۳", Decimal("123")),
    ("1,500", Decimal("1500")),
    ("۲٫۵", Decimal("2.5")),
    (" 7 ", Decimal("7")),
    (12, Decimal("12")),
    ("", None),
    ("abc", None),
    (True, None),
])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


async def test_import_creates_one_invoice_per_used_row(db):
    result = await BatchImportService(db).import_usage_sheet(MONTHLY_SHEET, "march.csv", batch_name="March")

    assert result["records_processed"] == 1
    assert result["records_skipped"] == 1
    assert result["records_failed"] == 1
    assert result["invoices_created"] == 1
    assert result["total_amount"] == Decimal("90000.00")
    assert result["message"] == "فایل با موفقیت پردازش شد"
    assert len(result["errors"]) == 1

    ali = await DirectoryService(db).get_representative_by_username("ali")
    assert ali.full_name == "Ali Ahmadi"
    assert ali.limited_price_1_month == Decimal("1000.00")
    assert await DirectoryService(db).get_representative_by_username("ghost") is None

    [invoice] = (await db.execute(select(Invoice))).scalars().all()
    assert invoice.representative_id == ali.id
    assert invoice.batch_id == result["batch_id"]
    # 10 x 1000 + 2 x 40000
    assert invoice.total_amount == Decimal("90000.00")

    batch = await db.get(InvoiceBatch, result["batch_id"])
    assert batch.batch_name == "March"
    assert batch.processing_status == "completed"
    assert batch.total_invoices == 1

    file_import = await BatchImportService(db).get_file_import(result["file_import_id"])
    assert file_import.status == "completed"
    assert file_import.records_processed == 1


async def test_existing_representative_keeps_its_prices(db, make_representative):
    await make_representative("ali", limited_price_1_month=Decimal("800"), unlimited_price_1_month=Decimal("35000"))

    result = await BatchImportService(db).import_usage_sheet(MONTHLY_SHEET, "march.csv")

    # 10 x 800 + 2 x 35000
    assert result["total_amount"] == Decimal("78000.00")


async def test_unreadable_sheet_marks_the_import_failed(db):
    with pytest.raises(UsageSheetError):
        await BatchImportService(db).import_usage_sheet(build_sheet(), "empty.csv")

    imports, total = await BatchImportService(db).list_file_imports()
    assert total == 1
    assert imports[0].status == "failed"
    assert imports[0].error_details == ["File has no data rows"]
    assert (await db.execute(select(FileImport.batch_id))).scalar() is None


async def test_import_json_export_prices_from_default_table(db):
    result = await BatchImportService(db).import_usage_sheet(JSON_EXPORT, "export.json")

    assert result["invoices_created"] == 1
    assert result["records_skipped"] == 1
    assert result["records_failed"] == 2
    # 12.5 x 900 + 2 x 120000
    assert result["total_amount"] == Decimal("251250.00")

    file_import = await BatchImportService(db).get_file_import(result["file_import_id"])
    assert file_import.status == "completed"
