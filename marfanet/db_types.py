"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from decimal import Decimal

from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Toman amounts: 12 integer digits, 2 decimals
MoneyType = Numeric(14, 2)

# Commission / percentage values (0-100)
RateType = Numeric(5, 2)

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Invoice item quantities: 9 integer digits, 3 decimals
QuantityType = Numeric(12, 3)
QUANTITY_STEP = Decimal("0.001")


def quantize_money(value) -> Decimal:
    """Round a money value to two decimals."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def quantize_quantity(value) -> Decimal:
    """Round an item quantity to the three decimals the column stores."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(QUANTITY_STEP)
