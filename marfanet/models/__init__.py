"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""
from marfanet.models.representative import (
    Collaborator,
    CollaboratorStatus,
    Representative,
    RepresentativeStatus,
    ServiceClass,
    SourcingType,
    DURATION_MONTHS,
)
from marfanet.models.invoice import (
    BatchStatus,
    Invoice,
    InvoiceBatch,
    InvoiceItem,
    InvoiceStatus,
    Payment,
    PriceSource,
)
from marfanet.models.ledger import FinancialLedgerEntry, LedgerTransactionType
from marfanet.models.commission import (
    CalculationMethod,
    CollaboratorPayout,
    CommissionRecord,
    RevenueType,
)
from marfanet.models.file_import import FileImport, FileImportStatus

__all__ = [
    "Collaborator",
    "CollaboratorStatus",
    "Representative",
    "RepresentativeStatus",
    "ServiceClass",
    "SourcingType",
    "DURATION_MONTHS",
    "BatchStatus",
    "Invoice",
    "InvoiceBatch",
    "InvoiceItem",
    "InvoiceStatus",
    "Payment",
    "PriceSource",
    "FinancialLedgerEntry",
    "LedgerTransactionType",
    "CalculationMethod",
    "CollaboratorPayout",
    "CommissionRecord",
    "RevenueType",
    "FileImport",
    "FileImportStatus",
]
