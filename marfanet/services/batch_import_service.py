"""
Batch Importer

Bulk creation of representatives and invoices with partial-failure
semantics. Every record runs in its own transaction with its own
timeout:
- a failing record is rolled back alone and reported as RowError
- committed records are never rolled back by a later failure
- the batch as a whole never aborts because of one record

Also imports the monthly usage sheet: one invoice per representative row,
grouped under an InvoiceBatch and tracked by a FileImport record.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
import uuid
import logging

from pydantic import ValidationError
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marfanet.config import settings
from marfanet.core.exceptions import EntityNotFound, LedgerEngineError
from marfanet.db_types import ZERO, quantize_money
from marfanet.models.file_import import FileImport, FileImportStatus
from marfanet.models.invoice import BatchStatus, Invoice, InvoiceBatch, InvoiceStatus
from marfanet.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from marfanet.schemas.representative import RepresentativeCreate
from marfanet.services.directory_service import DirectoryService
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService
from marfanet.services.usage_sheet_parser import UsageSheetError, UsageSheetParser, UsageSheetRow

logger = logging.getLogger(__name__)

BATCH_KINDS = ("representatives", "invoices")

RowHandler = Callable[[AsyncSession, Any], Awaitable[Any]]


@dataclass
class RowOk:
    index: int
    value: Any
    ok: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "ok": True, "id": str(self.value) if self.value is not None else None}


@dataclass
class RowError:
    index: int
    error_type: str
    message: str
    record: Optional[Dict[str, Any]] = None
    ok: bool = field(default=False, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "ok": False,
            "error_type": self.error_type,
            "message": self.message,
            "record": self.record,
        }


RowResult = Union[RowOk, RowError]


@dataclass
class BatchReport:
    """Outcome of a batch, one result per input record in input order."""
    results: List[RowResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def successful_inserts(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed_inserts(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def success(self) -> bool:
        return self.successful_inserts > 0

    @property
    def errors(self) -> List[str]:
        return [f"ردیف {r.index + 1}: {r.message}" for r in self.results if not r.ok]

    @property
    def message(self) -> str:
        return f"{self.successful_inserts} رکورد با موفقیت ثبت شد، {self.failed_inserts} رکورد ناموفق"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_processed": self.total_processed,
            "successful_inserts": self.successful_inserts,
            "failed_inserts": self.failed_inserts,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
            "message": self.message,
        }


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()))
        parts.append(f"{location}: {detail.get('msg')}" if location else detail.get("msg", ""))
    return "; ".join(parts)


class BatchImportService:
    """
    Runs records through the directory and invoice lifecycle services one
    transaction at a time.

    With concurrency 1 rows run sequentially on the given session, each
    inside a SAVEPOINT and committed on success. With higher concurrency
    each row gets its own session from `session_factory`; per-representative
    ledger appends stay serialized by the ledger store.
    """

    def __init__(
        self,
        db: AsyncSession,
        session_factory: Optional[async_sessionmaker] = None,
        row_timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.row_timeout = row_timeout or settings.BATCH_ROW_TIMEOUT_SECONDS
        self.concurrency = max(1, concurrency or settings.BATCH_CONCURRENCY)
        self.parser = UsageSheetParser()

    # ==================== ROW EXECUTION ====================

    async def _run_in_session(self, session: AsyncSession, handler: RowHandler, payload: Any) -> Any:
        async with session.begin_nested():
            return await handler(session, payload)

    async def _run_sequential_row(self, handler: RowHandler, payload: Any) -> Any:
        try:
            value = await asyncio.wait_for(
                self._run_in_session(self.db, handler, payload), timeout=self.row_timeout
            )
            await self.db.commit()
        except (asyncio.TimeoutError, SQLAlchemyError):
            # A cancelled or failed statement can leave the transaction unusable
            await self.db.rollback()
            raise
        return value

    async def _run_isolated_row(self, handler: RowHandler, payload: Any) -> Any:
        factory = self.session_factory
        if factory is None:
            from marfanet.database import async_session_factory
            factory = async_session_factory

        async with factory() as session:
            try:
                value = await asyncio.wait_for(handler(session, payload), timeout=self.row_timeout)
                await session.commit()
                return value
            except Exception:
                await session.rollback()
                raise

    async def _run_row(
        self,
        index: int,
        record: Dict[str, Any],
        handler: RowHandler,
        payload: Any,
        isolated: bool,
    ) -> RowResult:
        try:
            if isolated:
                value = await self._run_isolated_row(handler, payload)
            else:
                value = await self._run_sequential_row(handler, payload)
            return RowOk(index=index, value=value)
        except ValidationError as e:
            message, error_type = _describe_validation_error(e), "ValidationError"
        except LedgerEngineError as e:
            message, error_type = e.message, type(e).__name__
        except asyncio.TimeoutError:
            message, error_type = f"Timed out after {self.row_timeout}s", "Timeout"
        except SQLAlchemyError as e:
            logger.exception(f"Database error in batch row {index + 1}")
            cause = getattr(e, "orig", None) or e
            message, error_type = f"خطای پایگاه داده ({type(cause).__name__})", type(e).__name__
        except Exception as e:
            logger.exception(f"Unexpected error in batch row {index + 1}")
            message, error_type = str(e) or type(e).__name__, type(e).__name__

        logger.warning(f"Batch row {index + 1} rejected ({error_type}): {message}")
        return RowError(index=index, error_type=error_type, message=message, record=record)

    async def _run_rows(self, rows: List[Tuple[int, Dict[str, Any], RowHandler, Any]]) -> List[RowResult]:
        if self.concurrency <= 1:
            return [await self._run_row(*row, isolated=False) for row in rows]

        # Rows use their own sessions; release the caller's transaction first
        await self.db.commit()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(row):
            async with semaphore:
                return await self._run_row(*row, isolated=True)

        return list(await asyncio.gather(*(bounded(row) for row in rows)))

    # ==================== ROW HANDLERS ====================

    @staticmethod
    async def _create_representative(session: AsyncSession, record: Dict[str, Any]) -> uuid.UUID:
        data = RepresentativeCreate.model_validate(record)
        representative = await DirectoryService(session).create_representative(data)
        return representative.id

    @staticmethod
    async def _create_invoice(session: AsyncSession, record: Dict[str, Any]) -> uuid.UUID:
        record = dict(record)
        username = record.pop("admin_username", None)
        if username and not record.get("representative_id"):
            representative = await DirectoryService(session).get_representative_by_username(username)
            if representative is None:
                raise EntityNotFound(f"Representative '{username}' not found", {"admin_username": username})
            record["representative_id"] = representative.id

        data = InvoiceCreate.model_validate(record)
        invoice = await InvoiceLifecycleService(session).create_invoice(data)
        return invoice.id

    # ==================== BATCH ====================

    async def process_batch(self, records: List[Dict[str, Any]], kind: str) -> BatchReport:
        """
        Import representatives or invoices.

        Invoice records may name their representative by `admin_username`
        instead of `representative_id`.
        """
        if kind not in BATCH_KINDS:
            raise LedgerEngineError(f"Unknown batch kind: {kind}", {"kind": kind})

        handler = self._create_representative if kind == "representatives" else self._create_invoice
        results = await self._run_rows(
            [(index, record, handler, record) for index, record in enumerate(records)]
        )
        report = BatchReport(results=results)

        logger.info(
            f"Batch of {report.total_processed} {kind}: "
            f"{report.successful_inserts} ok, {report.failed_inserts} failed"
        )
        return report

    # ==================== USAGE SHEET ====================

    @staticmethod
    async def _import_sheet_row(session: AsyncSession, payload: Tuple[UsageSheetRow, uuid.UUID]) -> uuid.UUID:
        row, batch_id = payload
        directory = DirectoryService(session)

        representative = await directory.get_representative_by_username(row.admin_username)
        if representative is None:
            representative = await directory.create_representative(
                RepresentativeCreate(
                    full_name=row.full_name,
                    admin_username=row.admin_username,
                    phone_number=row.phone_number,
                    telegram_id=row.telegram_id,
                    store_name=row.store_name,
                    **row.price_table(),
                )
            )
            logger.info(f"Usage sheet row {row.row_number}: created representative {row.admin_username}")

        items = [
            InvoiceItemCreate(service_class=service_class, duration_months=months, quantity=quantity)
            for (service_class, months), quantity in sorted(row.quantities.items())
        ]
        invoice = await InvoiceLifecycleService(session).create_invoice(
            InvoiceCreate(representative_id=representative.id, items=items, batch_id=batch_id)
        )
        return invoice.id

    async def finalize_batch(self, batch_id: uuid.UUID, failed: bool = False) -> InvoiceBatch:
        """Recompute the derived counters from the batch's invoices and close it."""
        batch = await self.db.get(InvoiceBatch, batch_id, populate_existing=True)
        if batch is None:
            raise EntityNotFound(f"Invoice batch not found: {batch_id}", {"batch_id": str(batch_id)})

        count, total = (await self.db.execute(
            select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_amount), 0)).where(
                Invoice.batch_id == batch_id,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
        )).one()

        batch.total_invoices = count
        batch.total_amount = quantize_money(total)
        batch.processing_status = BatchStatus.FAILED.value if failed else BatchStatus.COMPLETED.value
        await self.db.flush()
        return batch

    async def import_usage_sheet(
        self,
        file_bytes: bytes,
        filename: str,
        batch_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create one invoice per representative row of a usage sheet.

        Unknown representatives are created with the sheet's prices as their
        tier table. Rows without any quantity are skipped.
        """
        now = datetime.now(timezone.utc)
        file_import = FileImport(file_name=filename, status=FileImportStatus.PROCESSING.value)
        self.db.add(file_import)
        await self.db.flush()

        try:
            rows, parse_errors = self.parser.parse(file_bytes, filename)
        except UsageSheetError as e:
            file_import.status = FileImportStatus.FAILED.value
            file_import.error_details = [e.message]
            file_import.completed_at = datetime.now(timezone.utc)
            await self.db.commit()
            logger.error(f"Usage sheet {filename} rejected: {e.message}")
            raise

        batch = InvoiceBatch(
            batch_name=batch_name or f"{filename} {now:%Y-%m-%d}",
            file_name=filename,
            processing_status=BatchStatus.PROCESSING.value,
            upload_date=now,
        )
        self.db.add(batch)
        await self.db.flush()
        file_import.batch_id = batch.id
        await self.db.commit()

        file_import_id, batch_id = file_import.id, batch.id
        with_usage = [row for row in rows if row.has_usage]
        skipped = len(rows) - len(with_usage)

        results = await self._run_rows([
            (position, {"row_number": row.row_number, "admin_username": row.admin_username},
             self._import_sheet_row, (row, batch_id))
            for position, row in enumerate(with_usage)
        ])
        report = BatchReport(results=results)
        errors = parse_errors + [
            f"ردیف {r.record['row_number']}: {r.message}" for r in results if not r.ok
        ]

        failed = report.successful_inserts == 0 and (report.failed_inserts > 0 or parse_errors)
        batch = await self.finalize_batch(batch_id, failed=bool(failed))

        file_import = await self.db.get(FileImport, file_import_id, populate_existing=True)
        file_import.records_processed = report.successful_inserts
        file_import.records_skipped = skipped
        file_import.records_failed = report.failed_inserts + len(parse_errors)
        file_import.error_details = errors or None
        file_import.status = FileImportStatus.FAILED.value if failed else FileImportStatus.COMPLETED.value
        file_import.completed_at = datetime.now(timezone.utc)
        await self.db.commit()

        logger.info(
            f"Usage sheet {filename}: {report.successful_inserts} invoices, "
            f"{skipped} skipped, {file_import.records_failed} failed, total {batch.total_amount}"
        )
        return {
            "file_import_id": file_import_id,
            "batch_id": batch_id,
            "records_processed": file_import.records_processed,
            "records_skipped": skipped,
            "records_failed": file_import.records_failed,
            "invoices_created": batch.total_invoices,
            "total_amount": batch.total_amount if batch.total_amount is not None else ZERO,
            "errors": errors,
            "message": "فایل با موفقیت پردازش شد" if not failed else report.message,
        }

    # ==================== HISTORY ====================

    async def list_file_imports(self, skip: int = 0, limit: int = 50) -> Tuple[List[FileImport], int]:
        total = (await self.db.execute(select(func.count(FileImport.id)))).scalar() or 0
        result = await self.db.execute(
            select(FileImport).order_by(FileImport.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_file_import(self, file_import_id: uuid.UUID) -> FileImport:
        file_import = await self.db.get(FileImport, file_import_id)
        if file_import is None:
            raise EntityNotFound(f"File import not found: {file_import_id}", {"file_import_id": str(file_import_id)})
        return file_import
