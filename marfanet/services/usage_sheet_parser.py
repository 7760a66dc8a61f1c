"""
Usage Sheet Parser

Reads the monthly usage sheet exported from the subscription panel.
One row per representative, first row is the header:

    A  admin_username          F  price per GB (limited)
    B  full name               G  monthly unlimited price
    C  phone number            H-M  limited quantities, 1-6 months
    D  telegram id             T-Y  unlimited quantities, 1-6 months
    E  store name

Reading stops at two consecutive rows without an admin_username.
Supports CSV (comma, semicolon or tab separated) and XLSX.

The panel's JSON export is also accepted: an array of objects with
admin_username, limited_{1..6}_month_volume and unlimited_{1..6}_month.
"""
import csv
import io
import json
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
import logging

from marfanet.core.exceptions import BatchRowError
from marfanet.models.representative import ServiceClass, DURATION_MONTHS

logger = logging.getLogger(__name__)

USERNAME_COLUMN = 0
FULL_NAME_COLUMN = 1
PHONE_COLUMN = 2
TELEGRAM_COLUMN = 3
STORE_COLUMN = 4
PRICE_PER_GB_COLUMN = 5
UNLIMITED_MONTHLY_COLUMN = 6
LIMITED_QUANTITY_START = 7     # column H
UNLIMITED_QUANTITY_START = 19  # column T

MAX_CONSECUTIVE_EMPTY_ROWS = 2

JSON_LIMITED_FIELD = "limited_{months}_month_volume"
JSON_UNLIMITED_FIELD = "unlimited_{months}_month"
JSON_REQUIRED_FIELDS = ("admin_username",) + tuple(
    template.format(months=months)
    for template in (JSON_LIMITED_FIELD, JSON_UNLIMITED_FIELD)
    for months in DURATION_MONTHS
)

PERSIAN_DIGITS = str.maketrans("۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩", "01234567890123456789")


class UsageSheetError(BatchRowError):
    """The file as a whole cannot be read."""


@dataclass
class UsageSheetRow:
    """One representative's usage for the month."""
    row_number: int
    admin_username: str
    full_name: str
    phone_number: Optional[str] = None
    telegram_id: Optional[str] = None
    store_name: Optional[str] = None
    price_per_gb: Optional[Decimal] = None
    unlimited_monthly_price: Optional[Decimal] = None
    # (service_class, duration_months) -> quantity, only cells > 0
    quantities: Dict[Tuple[str, int], Decimal] = field(default_factory=dict)

    @property
    def has_usage(self) -> bool:
        return bool(self.quantities)

    def price_table(self) -> Dict[str, Decimal]:
        """
        Tier table implied by the sheet's price columns: the per-GB price
        for every limited duration, and the monthly price times the number
        of months for unlimited.
        """
        table = {}
        for months in DURATION_MONTHS:
            if self.price_per_gb is not None and self.price_per_gb > 0:
                table[f"limited_price_{months}_month"] = self.price_per_gb
            if self.unlimited_monthly_price is not None and self.unlimited_monthly_price > 0:
                table[f"unlimited_price_{months}_month"] = self.unlimited_monthly_price * months
        return table


def parse_number(value) -> Optional[Decimal]:
    """Parse a sheet cell into a Decimal, accepting Persian digits and thousands separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))

    text = str(value).strip().translate(PERSIAN_DIGITS)
    text = re.sub(r"[,\s٬]", "", text).replace("٫", ".")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def _cell(row: List, index: int) -> Optional[str]:
    if index >= len(row) or row[index] is None:
        return None
    text = str(row[index]).strip()
    return text or None


class UsageSheetParser:
    """Turns raw sheet rows into UsageSheetRow objects."""

    def read_rows(self, file_bytes: bytes, filename: str) -> List[List]:
        """Raw cell rows from a CSV or XLSX file."""
        name = (filename or "").lower()
        if name.endswith((".xlsx", ".xlsm")):
            return self._read_xlsx(file_bytes)
        if name.endswith((".csv", ".txt", ".tsv")) or not name:
            return self._read_csv(file_bytes)
        raise UsageSheetError(f"Unsupported file type: {filename}", details={"file_name": filename})

    def _read_csv(self, file_bytes: bytes) -> List[List]:
        try:
            content = file_bytes.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise UsageSheetError("File is not valid UTF-8 text") from e

        # Detect delimiter
        first_line = content.split("\n", 1)[0]
        delimiter = ","
        if "\t" in first_line:
            delimiter = "\t"
        elif ";" in first_line and "," not in first_line:
            delimiter = ";"

        return [list(row) for row in csv.reader(io.StringIO(content), delimiter=delimiter)]

    def _read_xlsx(self, file_bytes: bytes) -> List[List]:
        import openpyxl

        try:
            workbook = openpyxl.load_workbook(io.BytesIO(file_bytes), data_only=True, read_only=True)
        except Exception as e:
            raise UsageSheetError(f"Failed to read Excel file: {str(e)}") from e

        sheet = workbook.active
        rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        workbook.close()
        return rows

    def parse(self, file_bytes: bytes, filename: str) -> Tuple[List[UsageSheetRow], List[str]]:
        """
        Parse the sheet.

        Returns (rows, errors). Rows that cannot be read are reported in
        errors and left out; the header row is skipped.
        """
        if (filename or "").lower().endswith(".json"):
            return self.parse_json(file_bytes, filename)

        raw_rows = self.read_rows(file_bytes, filename)
        if len(raw_rows) < 2:
            raise UsageSheetError("File has no data rows", details={"file_name": filename})

        parsed: List[UsageSheetRow] = []
        errors: List[str] = []
        consecutive_empty = 0

        for row_number, row in enumerate(raw_rows[1:], start=2):
            admin_username = _cell(row, USERNAME_COLUMN)
            if not admin_username:
                consecutive_empty += 1
                if consecutive_empty >= MAX_CONSECUTIVE_EMPTY_ROWS:
                    logger.debug(f"Stopped reading {filename} at row {row_number}")
                    break
                continue
            consecutive_empty = 0

            try:
                parsed.append(self.parse_row(row_number, row))
            except BatchRowError as e:
                errors.append(f"ردیف {row_number}: {e.message}")
                logger.warning(f"{filename} row {row_number}: {e.message}")

        return parsed, errors

    def parse_row(self, row_number: int, row: List) -> UsageSheetRow:
        admin_username = _cell(row, USERNAME_COLUMN)
        usage = UsageSheetRow(
            row_number=row_number,
            admin_username=admin_username,
            full_name=_cell(row, FULL_NAME_COLUMN) or admin_username,
            phone_number=_cell(row, PHONE_COLUMN),
            telegram_id=_cell(row, TELEGRAM_COLUMN),
            store_name=_cell(row, STORE_COLUMN),
            price_per_gb=parse_number(_cell(row, PRICE_PER_GB_COLUMN)),
            unlimited_monthly_price=parse_number(_cell(row, UNLIMITED_MONTHLY_COLUMN)),
        )

        for service_class, start in (
            (ServiceClass.LIMITED.value, LIMITED_QUANTITY_START),
            (ServiceClass.UNLIMITED.value, UNLIMITED_QUANTITY_START),
        ):
            for months in DURATION_MONTHS:
                raw = _cell(row, start + months - 1)
                if raw is None:
                    continue
                quantity = parse_number(raw)
                if quantity is None or quantity < 0:
                    raise BatchRowError(
                        f"Invalid quantity '{raw}' for {service_class} {months} month(s)",
                        row_number=row_number,
                        details={"admin_username": admin_username},
                    )
                if quantity > 0:
                    usage.quantities[(service_class, months)] = quantity

        return usage

    # ==================== JSON EXPORT ====================

    def parse_json(self, file_bytes: bytes, filename: str) -> Tuple[List[UsageSheetRow], List[str]]:
        """Parse a JSON export; items are numbered from 1 in errors."""
        try:
            data = json.loads(file_bytes.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UsageSheetError(f"Invalid JSON file: {e}", details={"file_name": filename}) from e

        if not isinstance(data, list):
            raise UsageSheetError("JSON file must be an array of objects", details={"file_name": filename})
        if not data:
            raise UsageSheetError("File has no data rows", details={"file_name": filename})

        parsed: List[UsageSheetRow] = []
        errors: List[str] = []
        for item_number, item in enumerate(data, start=1):
            try:
                parsed.append(self.parse_json_item(item_number, item))
            except BatchRowError as e:
                errors.append(f"آیتم {item_number}: {e.message}")
                logger.warning(f"{filename} item {item_number}: {e.message}")

        return parsed, errors

    def parse_json_item(self, item_number: int, item) -> UsageSheetRow:
        if not isinstance(item, dict):
            raise BatchRowError("Item must be an object", row_number=item_number)

        missing = [name for name in JSON_REQUIRED_FIELDS if name not in item]
        if missing:
            raise BatchRowError(f"Missing fields: {', '.join(missing)}", row_number=item_number)

        admin_username = str(item["admin_username"] or "").strip()
        if not admin_username:
            raise BatchRowError("admin_username is empty", row_number=item_number)

        usage = UsageSheetRow(
            row_number=item_number,
            admin_username=admin_username,
            full_name=str(item.get("full_name") or admin_username).strip(),
        )

        for service_class, template in (
            (ServiceClass.LIMITED.value, JSON_LIMITED_FIELD),
            (ServiceClass.UNLIMITED.value, JSON_UNLIMITED_FIELD),
        ):
            for months in DURATION_MONTHS:
                name = template.format(months=months)
                quantity = parse_number(item[name])
                valid = quantity is not None and quantity >= 0
                # Unlimited lines are subscription counts
                if valid and service_class == ServiceClass.UNLIMITED.value:
                    valid = quantity == quantity.to_integral_value()
                if not valid:
                    raise BatchRowError(
                        f"Invalid value '{item[name]}' for {name}",
                        row_number=item_number,
                        details={"admin_username": admin_username},
                    )
                if quantity > 0:
                    usage.quantities[(service_class, months)] = quantity

        return usage
