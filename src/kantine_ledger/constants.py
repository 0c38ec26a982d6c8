"""Enumerations and fixed values shared across the Kantine ledger modules.

Keeps identifiers used by the data access layer (DAL), the ledger engine and
the presentation layers in one place so sentinel values and sheet names never
drift apart.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Sentinel product ids for entries that do not reference a catalog product.
PAYMENT_PRODUCT_ID = "payment"
MANUAL_PRODUCT_ID = "manual"

PAYMENT_PRODUCT_NAME = "Bezahlung"
MANUAL_DEBIT_DESCRIPTION = "Manueller Betrag"
MANUAL_CREDIT_DESCRIPTION = "Guthaben eingezahlt"

# Lowest quantity the booking screen allows for a correction.
MIN_BOOKING_QUANTITY = -10
LOW_STOCK_THRESHOLD = 5

DEFAULT_RESET_HOUR = 8
DEFAULT_REPORT_HOUR = 8
DEFAULT_CHECK_INTERVAL_MINUTES = 30

CENT = Decimal("0.01")


class EntryKind(str, Enum):
    """Discriminator of the single ledger entry shape."""

    PURCHASE = "PURCHASE"
    MANUAL = "MANUAL"
    PAYMENT = "PAYMENT"


class EmployeeGroup(str, Enum):
    """Fixed roster groups; display names come from ``config.ini``."""

    GROUP1 = "group1"
    GROUP2 = "group2"
    GROUP3 = "group3"


class ProductCategory(str, Enum):
    """Catalog categories shown on the booking screen."""

    SWEETS = "süßigkeiten"
    DRINKS = "getränke"
    SNACKS = "snacks"
    FOOD = "essen"
    OTHER = "sonstige"


class DailyCounter(str, Enum):
    """Item counters tracked for the current day, in match priority order."""

    LUNCH = "mittagessen"
    ROLLS = "broetchen"
    EGGS = "eier"
    COFFEE = "kaffee"


class MetaKey(str, Enum):
    """Keys stored on the ``Meta`` worksheet."""

    LAST_STATS_RESET = "LastStatsReset"
    LAST_REPORT_DATE = "LastReportDate"
    LAST_CSV_BACKUP = "LastCsvBackup"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    EMPLOYEES = "Employees"
    PRODUCTS = "Products"
    TRANSACTION_LOG = "TransactionLog"
    DAILY_STATS = "DailyStats"
    META = "Meta"


DEFAULT_GROUP_NAMES = {
    EmployeeGroup.GROUP1.value: "4te Tour",
    EmployeeGroup.GROUP2.value: "2Tour",
    EmployeeGroup.GROUP3.value: "Gäste",
}

# Product names whose same-day entries the opt-in purge removes.
PURGEABLE_PRODUCT_NAMES = ("Mittagessen", "Brötchen", "Kaffee")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PAYMENT_PRODUCT_ID",
    "MANUAL_PRODUCT_ID",
    "PAYMENT_PRODUCT_NAME",
    "MANUAL_DEBIT_DESCRIPTION",
    "MANUAL_CREDIT_DESCRIPTION",
    "MIN_BOOKING_QUANTITY",
    "LOW_STOCK_THRESHOLD",
    "DEFAULT_RESET_HOUR",
    "DEFAULT_REPORT_HOUR",
    "DEFAULT_CHECK_INTERVAL_MINUTES",
    "CENT",
    "EntryKind",
    "EmployeeGroup",
    "ProductCategory",
    "DailyCounter",
    "MetaKey",
    "SheetName",
    "DEFAULT_GROUP_NAMES",
    "PURGEABLE_PRODUCT_NAMES",
]
