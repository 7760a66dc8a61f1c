"""
Enum Utilities for VARCHAR-based Status Fields

ARCHITECTURE STANDARD:
━━━━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(20) - NOT PostgreSQL ENUM
• SQLAlchemy: String(20) with Mapped[str]
• Pydantic: Python Enum for API validation
• API Response: Use string directly (NO .value needed)
• Case: All enum values stored in lowercase (matches legacy MarFanet data)

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: InvoiceStatus.PENDING → "pending" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly

USAGE PATTERNS:
━━━━━━━━━━━━━━━
1. In SQLAlchemy Models:
   status: Mapped[str] = mapped_column(String(20), default="pending")

2. In Pydantic Schemas (with case normalization):
   _normalize_status = create_lowercase_validator('status', VALID_INVOICE_STATUSES)

3. In services:
   if is_status(invoice.status, InvoiceStatus.PAID): ...
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> str:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(InvoiceStatus.PENDING)
        'pending'
        >>> get_enum_value("pending")
        'pending'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, or None if not a member.
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(ServiceClass)
        'limited, unlimited'
    """
    return ", ".join(enum_values(enum_class))


def is_status(db_value: str, enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value


def status_in(db_value: str, *enum_values: Enum) -> bool:
    """Check if database value matches any of the given enums."""
    if db_value is None:
        return False
    return db_value in [e.value for e in enum_values]


def normalize_to_lowercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to lowercase if it's a valid enum value.

    Invalid values are returned as-is so Pydantic raises the validation error.
    """
    if value is None:
        return value
    if isinstance(value, str):
        lower_v = value.strip().lower()
        if lower_v in valid_values:
            return lower_v
    return value


def create_lowercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to lowercase.

    Usage:
        class MySchema(BaseModel):
            status: InvoiceStatus

            _normalize_status = create_lowercase_validator('status', VALID_INVOICE_STATUSES)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_lowercase(v, valid_values)

    return validate


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_REPRESENTATIVE_STATUSES = {"active", "inactive", "suspended"}

VALID_SOURCING_TYPES = {"direct", "collaborator"}

VALID_SERVICE_CLASSES = {"limited", "unlimited"}

VALID_INVOICE_STATUSES = {"pending", "paid", "overdue", "cancelled"}

VALID_BATCH_STATUSES = {"pending", "processing", "completed", "failed"}

VALID_LEDGER_TRANSACTION_TYPES = {"invoice", "payment"}

VALID_CALCULATION_METHODS = {"automatic", "manual"}
