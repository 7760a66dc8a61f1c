"""
Domain exceptions for the ledger engine.

Every failure is scoped to one operation (one invoice, one payment, one
payout or one batch row). `status_code` is the HTTP status the API layer
uses when translating the error.
"""
from typing import Any, Dict, Optional


class LedgerEngineError(Exception):
    """Base class for all engine errors."""
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EntityNotFound(LedgerEngineError):
    """Referenced representative, collaborator, invoice or batch does not exist."""
    status_code = 404


class DirectoryValidationError(LedgerEngineError):
    """Representative/collaborator data violates a directory invariant."""
    status_code = 422


class PricingUnresolved(LedgerEngineError):
    """Neither the representative's tier table nor the default table has a price."""
    status_code = 422

    def __init__(self, service_class: Any, duration_months: Any, details: Optional[Dict[str, Any]] = None):
        self.service_class = service_class
        self.duration_months = duration_months
        super().__init__(
            f"No price found for {service_class} / {duration_months} month(s)",
            details,
        )


class InvoiceValidationError(LedgerEngineError):
    """Invoice amounts or items are inconsistent."""
    status_code = 422


class DuplicateInvoice(LedgerEngineError):
    """An invoice with the same number already exists. Safe to ignore on retry."""
    status_code = 409

    def __init__(self, invoice_number: str, existing_invoice_id: Any = None):
        self.invoice_number = invoice_number
        self.existing_invoice_id = existing_invoice_id
        super().__init__(
            f"Invoice {invoice_number} already exists",
            {"invoice_number": invoice_number, "existing_invoice_id": str(existing_invoice_id) if existing_invoice_id else None},
        )


class InvalidInvoiceTransition(LedgerEngineError):
    """Requested status change is not allowed from the invoice's current status."""
    status_code = 409

    def __init__(self, invoice_number: str, current_status: str, target: str):
        self.invoice_number = invoice_number
        self.current_status = current_status
        self.target = target
        super().__init__(
            f"Invoice {invoice_number} cannot go from '{current_status}' to '{target}'",
            {"invoice_number": invoice_number, "current_status": current_status, "target": target},
        )


class InsufficientPayoutBalance(LedgerEngineError):
    """Payout (or commission clawback) exceeds the collaborator's accumulated earnings."""
    status_code = 422

    def __init__(self, collaborator_id: Any, requested, available):
        self.collaborator_id = collaborator_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} exceeds accumulated earnings {available}",
            {"collaborator_id": str(collaborator_id), "requested": str(requested), "available": str(available)},
        )


class LedgerConflict(LedgerEngineError):
    """A concurrent append claimed the same ledger sequence. Retried by the ledger store."""
    status_code = 409

    def __init__(self, representative_id: Any, sequence: int):
        self.representative_id = representative_id
        self.sequence = sequence
        super().__init__(
            f"Ledger sequence {sequence} already taken for representative {representative_id}",
            {"representative_id": str(representative_id), "sequence": sequence},
        )


class BatchRowError(LedgerEngineError):
    """A single batch record failed validation or insert."""
    status_code = 422

    def __init__(self, message: str, row_number: int = None, details: Optional[Dict[str, Any]] = None):
        self.row_number = row_number
        super().__init__(message, details)
