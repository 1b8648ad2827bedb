"""Enumerations shared across Shop Ledger modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), and the command-line front-end rely on a single source of
truth for sheet names, validation outcomes, and reporting defaults.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Number of entries shown in the "top products" ranking.
DEFAULT_TOP_PRODUCTS = 5

DEFAULT_EXTRACTION_MODEL = "gemini-2.0-flash"

# Smallest currency unit; derived prices are rounded to it.
MONEY_QUANTUM = Decimal("0.01")


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    BILLS = "Bills"
    BILL_ITEMS = "BillItems"
    PRODUCTS = "Products"
    SHOPS = "Shops"


class ValidationErrorKind(str, Enum):
    """Enumerate the reasons the master validator can reject a bill."""

    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    UNKNOWN_SHOP = "UNKNOWN_SHOP"
    NO_ITEMS = "NO_ITEMS"
    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"
    INVALID_VALUE = "INVALID_VALUE"


class RenameOutcome(str, Enum):
    """Enumerate how a shop rename request was resolved."""

    RENAMED = "RENAMED"
    SHOP_NOT_FOUND = "SHOP_NOT_FOUND"
    MASTER_CREATED = "MASTER_CREATED"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TOP_PRODUCTS",
    "DEFAULT_EXTRACTION_MODEL",
    "MONEY_QUANTUM",
    "SheetName",
    "ValidationErrorKind",
    "RenameOutcome",
]
