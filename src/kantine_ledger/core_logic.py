"""Business logic layer for the Kantine ledger.

This module orchestrates the append-only ``TransactionLog``, the roster, the
catalog and the daily counters. It consumes the Data Access Layer (DAL) for
all I/O and delegates balance arithmetic to :mod:`kantine_ledger.ledger` so
every reader derives balances from the same fold.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from openpyxl.workbook import Workbook

from . import daily_stats, data_manager, ledger, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    LOW_STOCK_THRESHOLD,
    MANUAL_PRODUCT_ID,
    MIN_BOOKING_QUANTITY,
    PAYMENT_PRODUCT_ID,
    PAYMENT_PRODUCT_NAME,
    MANUAL_DEBIT_DESCRIPTION,
    DailyCounter,
    EmployeeGroup,
    EntryKind,
    MetaKey,
    ProductCategory,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced employee or product is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL.

    One context is created per process by :func:`load_runtime_context`; the
    cache lives and dies with it.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for booking a product; a negative quantity is a correction."""

    employee_id: str
    product_id: str
    quantity: int = 1
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ManualAdjustmentCommand:
    """User intent for a free-form amount; ``amount`` is parsed at the boundary."""

    employee_id: str
    amount: Union[str, Decimal]
    credit: bool = False
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC datetime when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _local_date(moment: datetime) -> date:
    """Calendar date of ``moment`` in local time (naive values are taken as local)."""

    return moment.astimezone().date() if moment.tzinfo is not None else moment.date()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are simple dictionaries that store precomputed query results so
    repeated reads do not rescan the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping used to cache derived collections.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_employees_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the roster cache bucket (``all`` and ``by_id``) on demand."""

    bucket = _get_cache_bucket(context, "employees")
    if "all" not in bucket:
        all_employees = list(data_manager.iter_employees(context.workbook))
        bucket["all"] = all_employees
        bucket["by_id"] = {employee.employee_id: employee for employee in all_employees}
        log.debug("Populated employees cache with %d entries", len(all_employees))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Args:
        context (RuntimeContext): Runtime state used to access the workbook and
            shared caches.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products and a ``by_id``
            lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand.

    Entries are immutable after creation, so the cached list stays valid until
    the next append invalidates it.
    """

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def list_employees(context: RuntimeContext, *, group: Optional[str] = None) -> List[data_manager.EmployeeRow]:
    """Return roster rows in sheet order, optionally restricted to one group.

    The ``balance`` field of the returned rows is the stored display cache;
    use :func:`calculate_balances` for authoritative values.
    """
    cache = _ensure_employees_cache(context)
    if group is None:
        return list(cache["all"])
    return [employee for employee in cache["all"] if employee.group == group]


def list_products(context: RuntimeContext, *, category: Optional[str] = None) -> List[data_manager.ProductRow]:
    """Return catalog rows in sheet order, optionally restricted to one category."""
    cache = _ensure_products_cache(context)
    if category is None:
        return list(cache["all"])
    return [product for product in cache["all"] if product.category == category]


def list_transactions(context: RuntimeContext, *, employee_id: Optional[str] = None) -> List[data_manager.TransactionRow]:
    """Fetch the append-only ledger from cache.

    The returned list is a shallow copy so callers can sort or filter without
    mutating the shared cache. Entries remain in insertion order.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        employee_id (str | None): Restrict the listing to one employee.

    Returns:
        list[data_manager.TransactionRow]: Snapshot of the ledger.
    """
    entries = _ensure_transactions_cache(context)["all"]
    if employee_id is None:
        return list(entries)
    return [entry for entry in entries if entry.employee_id == employee_id]


def get_employee(context: RuntimeContext, employee_id: str) -> data_manager.EmployeeRow:
    """Resolve an employee by id.

    Raises:
        MissingReferenceError: If ``employee_id`` is not on the roster.
    """
    cache = _ensure_employees_cache(context)
    try:
        return cache["by_id"][employee_id]
    except KeyError as exc:
        log.warning("Employee lookup failed for id '%s'", employee_id)
        raise MissingReferenceError(f"Unknown employee id: {employee_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the catalog.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def visible_products(context: RuntimeContext, employee_id: str) -> List[data_manager.ProductRow]:
    """Catalog as shown to one employee; coffee is hidden for ``hide_coffee``."""
    employee = get_employee(context, employee_id)
    products = list_products(context)
    if not employee.hide_coffee:
        return products
    return [
        product
        for product in products
        if daily_stats.classify_product(product.product_name) is not DailyCounter.COFFEE
    ]


def low_stock_products(context: RuntimeContext, *, threshold: int = LOW_STOCK_THRESHOLD) -> List[data_manager.ProductRow]:
    """Products whose stock fell below ``threshold``."""
    return [product for product in list_products(context) if product.stock < threshold]


def add_employee(
    context: RuntimeContext,
    *,
    name: str,
    group: str,
    hide_coffee: bool = False,
    employee_id: Optional[str] = None,
) -> data_manager.EmployeeRow:
    """Append a new employee to the roster.

    Raises:
        BusinessRuleViolation: If the id already exists.
        ValueError: If the name is blank or the group unknown.
    """
    require_name(name)
    require_group(group)
    employee_id = employee_id or generate_transaction_id(prefix="E")
    if employee_id in _ensure_employees_cache(context)["by_id"]:
        log.warning("Rejected duplicate employee id '%s'", employee_id)
        raise BusinessRuleViolation(f"Employee '{employee_id}' already exists")

    record = data_manager.EmployeeRow(
        employee_id=employee_id,
        name=name.strip(),
        group=group,
        hide_coffee=hide_coffee,
    )
    data_manager.append_employee(context.workbook, record)
    _invalidate_cache(context, "employees")
    log.info("Added employee '%s' (%s) to %s", record.employee_id, record.name, record.group)
    return record


def update_employee(
    context: RuntimeContext,
    employee_id: str,
    *,
    name: Optional[str] = None,
    group: Optional[str] = None,
    hide_coffee: Optional[bool] = None,
) -> data_manager.EmployeeRow:
    """Change roster fields; past ledger entries keep their name snapshot.

    Raises:
        MissingReferenceError: If the employee is unknown.
        ValueError: If the new name is blank or the group unknown.
    """
    current = get_employee(context, employee_id)
    field_values: Dict[str, Any] = {}
    if name is not None:
        require_name(name)
        field_values["EmployeeName"] = name.strip()
    if group is not None:
        require_group(group)
        field_values["Group"] = group
    if hide_coffee is not None:
        field_values["HideCoffee"] = hide_coffee
    if not field_values:
        return current

    data_manager.update_employee(context.workbook, employee_id, field_values=field_values)
    _invalidate_cache(context, "employees")
    log.info("Updated employee '%s': %s", employee_id, ", ".join(field_values))
    return get_employee(context, employee_id)


def remove_employee(context: RuntimeContext, employee_id: str) -> None:
    """Delete an employee; their ledger entries stay as orphans."""
    get_employee(context, employee_id)
    data_manager.delete_employee(context.workbook, employee_id)
    _invalidate_cache(context, "employees")
    log.info("Removed employee '%s'", employee_id)


def add_product(
    context: RuntimeContext,
    *,
    product_name: str,
    unit_price: Decimal,
    stock: int = 0,
    category: str = ProductCategory.FOOD.value,
    product_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Append a product to the catalog.

    Raises:
        BusinessRuleViolation: If the id already exists or collides with a
            sentinel id.
        ValueError: If the name is blank, the price negative or the category
            unknown.
    """
    require_name(product_name)
    require_nonnegative_money(unit_price)
    require_category(category)
    product_id = product_id or generate_transaction_id(prefix="P")
    if product_id in (PAYMENT_PRODUCT_ID, MANUAL_PRODUCT_ID):
        raise BusinessRuleViolation(f"Product id '{product_id}' is reserved")
    if product_id in _ensure_products_cache(context)["by_id"]:
        log.warning("Rejected duplicate product id '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")

    record = data_manager.ProductRow(
        product_id=product_id,
        product_name=product_name.strip(),
        unit_price=unit_price,
        stock=stock,
        category=category,
    )
    data_manager.append_product(context.workbook, record)
    _invalidate_cache(context, "products")
    log.info("Added product '%s' (%s) at %s", record.product_id, record.product_name, record.unit_price)
    return record


def update_product(
    context: RuntimeContext,
    product_id: str,
    *,
    product_name: Optional[str] = None,
    unit_price: Optional[Decimal] = None,
    stock: Optional[int] = None,
    category: Optional[str] = None,
) -> data_manager.ProductRow:
    """Change catalog fields; a new price only affects future bookings.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValueError: If a supplied value fails validation.
    """
    current = get_product(context, product_id)
    field_values: Dict[str, Any] = {}
    if product_name is not None:
        require_name(product_name)
        field_values["ProductName"] = product_name.strip()
    if unit_price is not None:
        require_nonnegative_money(unit_price)
        field_values["UnitPrice"] = unit_price
    if stock is not None:
        field_values["Stock"] = stock
    if category is not None:
        require_category(category)
        field_values["Category"] = category
    if not field_values:
        return current

    data_manager.update_product(context.workbook, product_id, field_values=field_values)
    _invalidate_cache(context, "products")
    log.info("Updated product '%s': %s", product_id, ", ".join(field_values))
    return get_product(context, product_id)


def remove_product(context: RuntimeContext, product_id: str) -> None:
    """Delete a product; historical entries keep their ``product_name``."""
    get_product(context, product_id)
    data_manager.delete_product(context.workbook, product_id)
    _invalidate_cache(context, "products")
    log.info("Removed product '%s'", product_id)


def _append_entry(context: RuntimeContext, entry: data_manager.TransactionRow) -> None:
    data_manager.append_transaction(context.workbook, entry)
    _invalidate_cache(context, "transactions")


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> data_manager.TransactionRow:
    """Validate and append a product booking to the ledger.

    The price is ``unit_price * quantity``; a negative quantity books a
    correction with a negative price. Stock is reduced by the quantity but
    never below zero, and a correction puts items back. Today's counters are
    updated after the daily reset check; bookings dated on another day leave
    them alone.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (PurchaseCommand): Structured booking intent.

    Returns:
        data_manager.TransactionRow: Newly appended entry.

    Raises:
        MissingReferenceError: If the employee or product is unknown.
        ValueError: When the quantity is zero or below the correction limit.
    """
    employee = get_employee(context, command.employee_id)
    product = get_product(context, command.product_id)
    require_booking_quantity(command.quantity)

    timestamp = _resolve_timestamp(command.timestamp)
    entry = ledger.build_purchase_entry(
        employee,
        product,
        command.quantity,
        transaction_id=generate_transaction_id(when=timestamp),
        timestamp=timestamp,
    )
    _append_entry(context, entry)

    data_manager.update_product(
        context.workbook,
        product.product_id,
        field_values={"Stock": max(0, product.stock - command.quantity)},
    )
    _invalidate_cache(context, "products")

    booked_on = _local_date(timestamp)
    today = _local_date(_resolve_timestamp(None))
    if booked_on == today:
        stats = _current_daily_stats(context, today)
        stats = daily_stats.increment_daily_counter(stats, product.product_name, command.quantity)
        if command.quantity > 0 and daily_stats.classify_product(product.product_name) is DailyCounter.LUNCH:
            stats = daily_stats.record_lunch_employee(stats, employee.name)
        data_manager.write_daily_stats(context.workbook, stats)
    else:
        log.info(
            "Booking '%s' is dated %s, daily counters for %s left as they are",
            entry.transaction_id,
            booked_on,
            today,
        )

    log.info(
        "Recorded PURCHASE '%s' for employee '%s' (product=%s, quantity=%s, price=%s)",
        entry.transaction_id,
        employee.employee_id,
        product.product_name,
        command.quantity,
        entry.price,
    )
    return entry


def record_manual_adjustment(context: RuntimeContext, command: ManualAdjustmentCommand) -> data_manager.TransactionRow:
    """Validate and append a manual amount.

    Raises:
        MissingReferenceError: If the employee is unknown.
        ValueError: If the amount is not numeric or zero.
    """
    amount = ledger.parse_amount(command.amount)
    employee = get_employee(context, command.employee_id)

    timestamp = _resolve_timestamp(command.timestamp)
    entry = ledger.build_manual_entry(
        employee,
        amount,
        credit=command.credit,
        description=command.description,
        transaction_id=generate_transaction_id(prefix="M", when=timestamp),
        timestamp=timestamp,
    )
    _append_entry(context, entry)
    log.info(
        "Recorded MANUAL '%s' for employee '%s' (price=%s)",
        entry.transaction_id,
        employee.employee_id,
        entry.price,
    )
    return entry


def clear_balance(
    context: RuntimeContext,
    employee_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> Optional[data_manager.TransactionRow]:
    """Settle an employee's balance by appending one payment entry.

    The balance is recomputed from the ledger, never read from the stored
    cache. Neither earlier entries nor the employee row are modified; the next
    aggregation yields zero. Confirmation is the caller's job.

    Returns:
        data_manager.TransactionRow | None: The payment entry, or ``None`` when
            the balance was already zero.

    Raises:
        MissingReferenceError: If the employee is unknown.
    """
    employee = get_employee(context, employee_id)
    moment = _resolve_timestamp(timestamp)
    entry = ledger.build_payment_entry(
        employee,
        _ensure_transactions_cache(context)["all"],
        transaction_id=generate_transaction_id(prefix="Z", when=moment),
        timestamp=moment,
    )
    if entry is None:
        log.info("Balance of employee '%s' already zero; nothing to clear", employee_id)
        return None

    _append_entry(context, entry)
    log.info(
        "Recorded PAYMENT '%s' clearing employee '%s' (price=%s)",
        entry.transaction_id,
        employee_id,
        entry.price,
    )
    return entry


def calculate_balances(context: RuntimeContext) -> List[data_manager.EmployeeRow]:
    """Roster with balances derived from the full ledger."""
    return ledger.compute_balances(
        _ensure_employees_cache(context)["all"],
        _ensure_transactions_cache(context)["all"],
    )


def calculate_total_balance(context: RuntimeContext) -> Decimal:
    """Sum of all derived balances, credits included (admin overview figure)."""
    return sum((employee.balance for employee in calculate_balances(context)), ledger.ZERO)


def build_debt_report(context: RuntimeContext, *, now: Optional[datetime] = None) -> ledger.DebtReport:
    """Debts-only snapshot of the current ledger."""
    return ledger.build_debt_report(
        _ensure_employees_cache(context)["all"],
        _ensure_transactions_cache(context)["all"],
        as_of=_resolve_timestamp(now),
    )


def sync_balance_cache(context: RuntimeContext) -> List[data_manager.EmployeeRow]:
    """Write derived balances into the roster's display column.

    Nothing in the ledger reads these values back.
    """
    balances = calculate_balances(context)
    for employee in balances:
        data_manager.update_employee(
            context.workbook,
            employee.employee_id,
            field_values={"Balance": employee.balance},
        )
    _invalidate_cache(context, "employees")
    log.info("Synchronized cached balances for %d employees", len(balances))
    return balances


def _current_daily_stats(context: RuntimeContext, today: date) -> data_manager.DailyStatsRow:
    stats, _ = daily_stats.check_daily_reset(data_manager.read_daily_stats(context.workbook), today)
    return stats


def get_daily_stats(context: RuntimeContext) -> data_manager.DailyStatsRow:
    """Stored daily counters as-is (no reset applied)."""
    return data_manager.read_daily_stats(context.workbook)


def run_daily_reset(context: RuntimeContext, *, today: Optional[date] = None) -> bool:
    """Zero the counters when the stored date is not ``today``.

    Returns:
        bool: ``True`` when a reset happened; same-day calls return ``False``.
    """
    today = today or _local_date(_resolve_timestamp(None))
    stats, changed = daily_stats.check_daily_reset(data_manager.read_daily_stats(context.workbook), today)
    if changed:
        data_manager.write_daily_stats(context.workbook, stats)
    return changed


def run_hour_gated_reset(
    context: RuntimeContext,
    *,
    now: Optional[datetime] = None,
    purge: Optional[bool] = None,
) -> bool:
    """Zero lunch, rolls and coffee once per day after the reset hour.

    When ``purge`` is true (default: ``PurgeSameDayEntries`` from the
    configuration) today's entries for those products are also removed from
    the ledger. That rewrites history and is therefore opt-in.

    Returns:
        bool: ``True`` when the reset ran.
    """
    moment = _resolve_timestamp(now).astimezone()
    today = moment.date()
    marker = data_manager.get_meta(context.workbook, MetaKey.LAST_STATS_RESET.value)
    last_reset = date.fromisoformat(marker) if marker else None
    if not daily_stats.is_hour_gated_reset_due(moment, last_reset, context.settings.reset_hour):
        return False

    stats = daily_stats.apply_hour_gated_reset(_current_daily_stats(context, today))
    data_manager.write_daily_stats(context.workbook, stats)

    if purge is None:
        purge = context.settings.purge_same_day_entries
    if purge:
        kept = daily_stats.purge_same_day_entries(_ensure_transactions_cache(context)["all"], today)
        data_manager.replace_transactions(context.workbook, kept)
        _invalidate_cache(context, "transactions")

    data_manager.set_meta(context.workbook, MetaKey.LAST_STATS_RESET.value, today.isoformat())
    log.info("Hour-gated reset ran for %s (purge=%s)", today, purge)
    return True


def get_last_report_date(context: RuntimeContext) -> Optional[date]:
    marker = data_manager.get_meta(context.workbook, MetaKey.LAST_REPORT_DATE.value)
    return date.fromisoformat(marker) if marker else None


def mark_report_sent(context: RuntimeContext, day: date) -> None:
    data_manager.set_meta(context.workbook, MetaKey.LAST_REPORT_DATE.value, day.isoformat())


def get_last_csv_backup_date(context: RuntimeContext) -> Optional[date]:
    marker = data_manager.get_meta(context.workbook, MetaKey.LAST_CSV_BACKUP.value)
    return date.fromisoformat(marker) if marker else None


def mark_csv_backup_written(context: RuntimeContext, day: date) -> None:
    data_manager.set_meta(context.workbook, MetaKey.LAST_CSV_BACKUP.value, day.isoformat())


def export_backup(context: RuntimeContext, destination: Path, *, now: Optional[datetime] = None) -> Path:
    """Dump roster, catalog and ledger to a JSON backup file.

    Money is written as strings so no precision is lost on the way back in.
    """
    payload = {
        "employees": [
            {
                "id": employee.employee_id,
                "name": employee.name,
                "group": employee.group,
                "hideCoffee": employee.hide_coffee,
                "balance": str(employee.balance),
            }
            for employee in calculate_balances(context)
        ],
        "products": [
            {
                "id": product.product_id,
                "name": product.product_name,
                "price": str(product.unit_price),
                "stock": product.stock,
                "category": product.category,
            }
            for product in list_products(context)
        ],
        "transactions": [
            {
                "id": entry.transaction_id,
                "kind": entry.entry_kind,
                "employeeId": entry.employee_id,
                "employeeName": entry.employee_name,
                "productId": entry.product_id,
                "productName": entry.product_name,
                "price": str(entry.price),
                "quantity": entry.quantity,
                "timestamp": entry.timestamp_iso,
            }
            for entry in list_transactions(context)
        ],
        "exportDate": _resolve_timestamp(now).isoformat(),
    }
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    log.info("Exported backup to '%s'", destination)
    return destination


def import_backup(context: RuntimeContext, source: Path) -> Dict[str, int]:
    """Replace roster, catalog and ledger with the contents of a JSON backup.

    Missing top-level keys leave the corresponding sheet untouched. Legacy
    manual entries carrying ``amount`` instead of ``price`` are normalized.

    Returns:
        dict[str, int]: Number of rows written per replaced sheet.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        ValueError: If an entry carries neither ``price`` nor ``amount``.
    """
    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Backup not found: {source}")
    payload = json.loads(source.read_text(encoding="utf-8"), parse_float=Decimal)

    counts: Dict[str, int] = {}
    if payload.get("employees") is not None:
        employees = [normalize_employee(item) for item in payload["employees"]]
        data_manager.replace_employees(context.workbook, employees)
        counts["employees"] = len(employees)
    if payload.get("products") is not None:
        products = [normalize_product(item) for item in payload["products"]]
        data_manager.replace_products(context.workbook, products)
        counts["products"] = len(products)
    if payload.get("transactions") is not None:
        entries = [normalize_entry(item) for item in payload["transactions"]]
        data_manager.replace_transactions(context.workbook, entries)
        counts["transactions"] = len(entries)

    _invalidate_cache(context, "employees", "products", "transactions")
    log.info("Imported backup '%s': %s", source, counts)
    return counts


def normalize_employee(item: Mapping[str, Any]) -> data_manager.EmployeeRow:
    return data_manager.EmployeeRow(
        employee_id=str(item["id"]),
        name=str(item.get("name", "")),
        group=str(item.get("group", EmployeeGroup.GROUP1.value)),
        hide_coffee=bool(item.get("hideCoffee", False)),
        balance=Decimal(str(item.get("balance", "0"))),
    )


def normalize_product(item: Mapping[str, Any]) -> data_manager.ProductRow:
    return data_manager.ProductRow(
        product_id=str(item["id"]),
        product_name=str(item.get("name", "")),
        unit_price=Decimal(str(item.get("price", "0"))),
        stock=int(item.get("stock", 0)),
        category=str(item.get("category", ProductCategory.OTHER.value)),
    )


def normalize_entry(item: Mapping[str, Any]) -> data_manager.TransactionRow:
    """Collapse the historical entry shapes into one signed-price row.

    Product bookings and payments carry ``price``; old manual entries carry
    ``amount`` and ``description`` instead.

    Raises:
        ValueError: If neither ``price`` nor ``amount`` is present.
    """
    if item.get("price") is not None:
        price = Decimal(str(item["price"]))
    elif item.get("amount") is not None:
        price = Decimal(str(item["amount"]))
    else:
        raise ValueError(f"Ledger entry '{item.get('id')}' has neither price nor amount")

    product_id = str(item.get("productId") or MANUAL_PRODUCT_ID)
    if item.get("kind"):
        kind = str(item["kind"])
    elif product_id == PAYMENT_PRODUCT_ID:
        kind = EntryKind.PAYMENT.value
    elif product_id == MANUAL_PRODUCT_ID:
        kind = EntryKind.MANUAL.value
    else:
        kind = EntryKind.PURCHASE.value

    default_name = PAYMENT_PRODUCT_NAME if kind == EntryKind.PAYMENT.value else MANUAL_DEBIT_DESCRIPTION
    return data_manager.TransactionRow(
        transaction_id=str(item["id"]),
        timestamp_iso=str(item.get("timestamp", "")),
        entry_kind=kind,
        employee_id=str(item.get("employeeId", "")),
        employee_name=str(item.get("employeeName", "")),
        product_id=product_id,
        product_name=str(item.get("productName") or item.get("description") or default_name),
        price=price,
        quantity=int(item.get("quantity", 1)),
    )


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier ``{prefix}{YYYYMMDDHHMMSSffffff}``.

    Microseconds keep ids unique for entries created within the same second;
    caller-supplied timestamps give deterministic ids in tests and imports.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_booking_quantity(quantity: int) -> None:
    """Validate a booking quantity.

    Raises:
        ValueError: If ``quantity`` is zero or below ``MIN_BOOKING_QUANTITY``.
    """
    if quantity == 0 or quantity < MIN_BOOKING_QUANTITY:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError(f"Quantity must be non-zero and at least {MIN_BOOKING_QUANTITY}")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_name(name: str) -> None:
    if not name or not name.strip():
        log.error("Name validation failed: blank value")
        raise ValueError("Name must not be blank")


def require_group(group: str) -> None:
    if group not in {member.value for member in EmployeeGroup}:
        log.error("Unknown employee group: %s", group)
        raise ValueError(f"Unknown employee group: {group}")


def require_category(category: str) -> None:
    if category not in {member.value for member in ProductCategory}:
        log.error("Unknown product category: %s", category)
        raise ValueError(f"Unknown product category: {category}")
