# Services module
from marfanet.services.directory_service import DirectoryService
from marfanet.services.pricing_service import PricingService
from marfanet.services.ledger_service import LedgerService
from marfanet.services.commission_service import CommissionService
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService, PaymentResult
from marfanet.services.batch_import_service import BatchImportService, BatchReport, RowOk, RowError
from marfanet.services.statistics_service import StatisticsService

__all__ = [
    "DirectoryService",
    "PricingService",
    "LedgerService",
    "CommissionService",
    "InvoiceLifecycleService",
    "PaymentResult",
    "BatchImportService",
    "BatchReport",
    "RowOk",
    "RowError",
    "StatisticsService",
]
