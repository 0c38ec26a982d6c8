"""Data access layer for the Kantine ledger.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating,
   deleting or bulk-replacing individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CHECK_INTERVAL_MINUTES,
    DEFAULT_GROUP_NAMES,
    DEFAULT_REPORT_HOUR,
    DEFAULT_RESET_HOUR,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
EMPLOYEES_SHEET = SheetName.EMPLOYEES.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value
DAILY_STATS_SHEET = SheetName.DAILY_STATS.value
META_SHEET = SheetName.META.value

LUNCH_LIST_SEPARATOR = ";"


@dataclass(frozen=True)
class MailSettings:
    """SMTP connection details for the outbound debt report."""

    host: str
    port: int
    sender: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    use_tls: bool = True


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    canteen_name: str
    schema_version: str
    group_names: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_GROUP_NAMES))
    reset_hour: int = DEFAULT_RESET_HOUR
    report_hour: int = DEFAULT_REPORT_HOUR
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    purge_same_day_entries: bool = False
    daily_csv_backup: bool = True
    report_recipient: Optional[str] = None
    report_dir: Optional[Path] = None
    mail: Optional[MailSettings] = None


@dataclass(frozen=True)
class EmployeeRow:
    """In-memory view of a row from the ``Employees`` sheet.

    ``balance`` is the display cache written by the ledger; it is never read
    back as the source of truth.
    """

    employee_id: str
    name: str
    group: str
    hide_coffee: bool = False
    balance: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    unit_price: Decimal
    stock: int
    category: str


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    transaction_id: str
    timestamp_iso: str
    entry_kind: str
    employee_id: str
    employee_name: str
    product_id: str
    product_name: str
    price: Decimal
    quantity: int


@dataclass(frozen=True)
class DailyStatsRow:
    """In-memory view of the single row stored on the ``DailyStats`` sheet."""

    stats_date: Optional[date]
    lunch: int = 0
    rolls: int = 0
    eggs: int = 0
    coffee: int = 0
    lunch_employees: tuple[str, ...] = ()


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _anchor_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_mail_settings(parser: configparser.ConfigParser) -> Optional[MailSettings]:
    """Read the optional ``[Mail]`` section.

    Returns ``None`` when the section is absent so callers can skip delivery.

    Raises:
        KeyError: If the section exists but lacks ``Host`` or ``Sender``.
    """

    if not parser.has_section("Mail"):
        return None
    try:
        host = parser.get("Mail", "Host")
        sender = parser.get("Mail", "Sender")
    except configparser.NoOptionError as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    return MailSettings(
        host=host,
        port=parser.getint("Mail", "Port", fallback=587),
        sender=sender,
        username=parser.get("Mail", "Username", fallback=None),
        password=parser.get("Mail", "Password", fallback=None),
        use_tls=parser.getboolean("Mail", "UseTLS", fallback=True),
    )


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory; ``[Groups]``, ``[Schedule]``,
    ``[Report]`` and ``[Mail]`` fall back to defaults. Relative paths are
    anchored to ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` and ``OutputDir`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If a numeric or boolean option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        canteen_name = parser.get("System", "CanteenName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    group_names = dict(DEFAULT_GROUP_NAMES)
    if parser.has_section("Groups"):
        for key in group_names:
            group_names[key] = parser.get("Groups", key, fallback=group_names[key])

    report_dir_raw = parser.get("Report", "OutputDir", fallback="reports")

    return ConfigSettings(
        data_file=_anchor_path(data_file_raw, base_path),
        canteen_name=canteen_name,
        schema_version=schema_version,
        group_names=group_names,
        reset_hour=parser.getint("Schedule", "ResetHour", fallback=DEFAULT_RESET_HOUR),
        report_hour=parser.getint("Schedule", "ReportHour", fallback=DEFAULT_REPORT_HOUR),
        check_interval_minutes=parser.getint(
            "Schedule", "CheckIntervalMinutes", fallback=DEFAULT_CHECK_INTERVAL_MINUTES
        ),
        purge_same_day_entries=parser.getboolean("Schedule", "PurgeSameDayEntries", fallback=False),
        daily_csv_backup=parser.getboolean("Schedule", "DailyCsvBackup", fallback=True),
        report_recipient=parser.get("Report", "Recipient", fallback=None),
        report_dir=_anchor_path(report_dir_raw, base_path),
        mail=parse_mail_settings(parser),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_employees(workbook: Workbook) -> Iterable[EmployeeRow]:
    """Iterate over the ``Employees`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, EMPLOYEES_SHEET):
        yield deserialize_employee(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted into a :class:`ProductRow` via :func:`deserialize_product`.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream ledger entries from the ``TransactionLog`` worksheet.

    Rows are yielded in sheet order, which is the insertion order of the
    append-only log. Monetary values become :class:`~decimal.Decimal`.

    Args:
        workbook (Workbook): Workbook containing the transaction log sheet.

    Yields:
        TransactionRow: Normalized entry for each populated row.
    """

    for raw in _iter_sheet(workbook, TRANSACTION_LOG_SHEET):
        yield deserialize_transaction(raw)


def read_daily_stats(workbook: Workbook) -> DailyStatsRow:
    """Return the stored daily counters, or an empty undated record."""

    for raw in _iter_sheet(workbook, DAILY_STATS_SHEET):
        return deserialize_daily_stats(raw)
    return DailyStatsRow(stats_date=None)


def write_daily_stats(workbook: Workbook, record: DailyStatsRow) -> None:
    """Overwrite the single data row of the ``DailyStats`` sheet."""

    sheet = workbook[DAILY_STATS_SHEET]
    for col, value in enumerate(serialize_daily_stats(record), start=1):
        sheet.cell(row=2, column=col, value=value)


def get_meta(workbook: Workbook, key: str) -> Optional[str]:
    """Look up a marker value on the ``Meta`` sheet."""

    for raw in _iter_sheet(workbook, META_SHEET):
        if raw[0] == key:
            return None if raw[1] is None else str(raw[1])
    return None


def set_meta(workbook: Workbook, key: str, value: str) -> None:
    """Insert or overwrite a marker value on the ``Meta`` sheet."""

    row_index = locate_row(workbook, META_SHEET, "Key", key)
    sheet = workbook[META_SHEET]
    if row_index is None:
        sheet.append([key, value])
    else:
        sheet.cell(row=row_index, column=2, value=value)


def append_employee(workbook: Workbook, record: EmployeeRow) -> None:
    """Append an employee record to the ``Employees`` worksheet."""

    workbook[EMPLOYEES_SHEET].append(serialize_employee(record))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet.

    The dataclass is serialized into the exact column ordering expected by the
    sheet before being appended.

    Args:
        workbook (Workbook): Workbook whose products sheet should be modified.
        record (ProductRow): Structured product data ready for persistence.
    """

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a ledger entry to the ``TransactionLog`` worksheet.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization, allowing Excel to preserve precision when the workbook is
    saved.

    Args:
        workbook (Workbook): Workbook containing the transaction log.
        record (TransactionRow): Entry to persist.
    """

    workbook[TRANSACTION_LOG_SHEET].append(serialize_transaction(record))


def _replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_idx, values in enumerate(rows, start=2):
        for col, value in enumerate(values, start=1):
            sheet.cell(row=row_idx, column=col, value=value)


def replace_transactions(workbook: Workbook, records: Sequence[TransactionRow]) -> None:
    """Bulk-replace every ledger entry, keeping the header row.

    Only backup restore and the opt-in same-day purge use this; normal
    operation appends.
    """

    _replace_rows(workbook, TRANSACTION_LOG_SHEET, (serialize_transaction(record) for record in records))


def replace_employees(workbook: Workbook, records: Sequence[EmployeeRow]) -> None:
    """Bulk-replace the roster, keeping the header row."""

    _replace_rows(workbook, EMPLOYEES_SHEET, (serialize_employee(record) for record in records))


def replace_products(workbook: Workbook, records: Sequence[ProductRow]) -> None:
    """Bulk-replace the catalog, keeping the header row."""

    _replace_rows(workbook, PRODUCTS_SHEET, (serialize_product(record) for record in records))


def _update_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, field_values: Mapping[str, Any]) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for name, value in field_values.items():
        if name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {name}")
        sheet.cell(row=row_index, column=header_map[name], value=value)


def update_employee(workbook: Workbook, employee_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update selected columns for an existing employee.

    Raises:
        KeyError: If the employee or any referenced column cannot be found.
    """

    _update_row(workbook, EMPLOYEES_SHEET, "EmployeeID", employee_id, field_values)


def update_product(workbook: Workbook, product_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    The function locates the row whose ``ProductID`` matches ``product_id``,
    validates that each requested field exists in the header row, and then
    writes the provided values into the corresponding cells.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values)


def delete_employee(workbook: Workbook, employee_id: str) -> None:
    """Remove an employee row; ledger entries referencing it are untouched."""

    row_index = locate_row(workbook, EMPLOYEES_SHEET, "EmployeeID", employee_id)
    if row_index is None:
        raise KeyError(f"Employee not found: {employee_id}")
    workbook[EMPLOYEES_SHEET].delete_rows(row_index)


def delete_product(workbook: Workbook, product_id: str) -> None:
    """Remove a product row; ledger entries keep their name snapshot."""

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")
    workbook[PRODUCTS_SHEET].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # ids typed into Excel by hand may come back as numbers
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _to_decimal(raw: object, default: str) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def serialize_employee(record: EmployeeRow) -> list[object]:
    """Arrange an employee as ``[EmployeeID, EmployeeName, Group, HideCoffee, Balance]``."""

    return [record.employee_id, record.name, record.group, record.hide_coffee, record.balance]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering.

    Returns:
        list[object]: Values arranged as ``[ProductID, ProductName,
        UnitPrice, Stock, Category]``.
    """

    return [record.product_id, record.product_name, record.unit_price, record.stock, record.category]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a ledger entry into the transaction log column order."""

    return [
        record.transaction_id,
        record.timestamp_iso,
        record.entry_kind,
        record.employee_id,
        record.employee_name,
        record.product_id,
        record.product_name,
        record.price,
        record.quantity,
    ]


def serialize_daily_stats(record: DailyStatsRow) -> list[object]:
    return [
        record.stats_date.isoformat() if record.stats_date is not None else None,
        record.lunch,
        record.rolls,
        record.eggs,
        record.coffee,
        LUNCH_LIST_SEPARATOR.join(record.lunch_employees),
    ]


def deserialize_employee(raw_row: Sequence[object]) -> EmployeeRow:
    """Convert a raw worksheet row into a strongly typed employee record."""

    employee_id, name, group, hide_coffee, balance_raw = raw_row[:5]
    return EmployeeRow(
        employee_id=str(employee_id),
        name=str(name) if name is not None else "",
        group=str(group) if group is not None else "",
        hide_coffee=bool(hide_coffee),
        balance=_to_decimal(balance_raw, "0.00"),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    The converter normalizes prices into :class:`~decimal.Decimal` and coerces
    id/name fields to ``str`` to avoid surprises caused by Excel automatically
    interpreting numbers.
    """

    product_id, product_name, price_raw, stock_raw, category = raw_row[:5]
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        unit_price=_to_decimal(price_raw, "0.00"),
        stock=_to_int(stock_raw),
        category=str(category) if category is not None else "",
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed ledger entry.

    Args:
        raw_row (Sequence[object]): Raw cell values from the transaction log row
            in their worksheet order.

    Returns:
        TransactionRow: Dataclass reflecting the row contents with consistent
            Python types.
    """

    (
        transaction_id,
        timestamp_iso,
        entry_kind,
        employee_id,
        employee_name,
        product_id,
        product_name,
        price_raw,
        quantity_raw,
    ) = raw_row[:9]

    return TransactionRow(
        transaction_id=str(transaction_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        entry_kind=str(entry_kind) if entry_kind is not None else "",
        employee_id=str(employee_id) if employee_id is not None else "",
        employee_name=str(employee_name) if employee_name is not None else "",
        product_id=str(product_id) if product_id is not None else "",
        product_name=str(product_name) if product_name is not None else "",
        price=_to_decimal(price_raw, "0.00"),
        quantity=_to_int(quantity_raw),
    )


def deserialize_daily_stats(raw_row: Sequence[object]) -> DailyStatsRow:
    stats_date_raw, lunch, rolls, eggs, coffee, lunch_list = raw_row[:6]
    names = tuple(name for name in str(lunch_list or "").split(LUNCH_LIST_SEPARATOR) if name)
    return DailyStatsRow(
        stats_date=date.fromisoformat(str(stats_date_raw)) if stats_date_raw else None,
        lunch=_to_int(lunch),
        rolls=_to_int(rolls),
        eggs=_to_int(eggs),
        coffee=_to_int(coffee),
        lunch_employees=names,
    )
