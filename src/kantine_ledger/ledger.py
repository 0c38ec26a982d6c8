"""Pure balance engine for the Kantine ledger.

Every function in this module works on already-loaded snapshots of employees
and ledger entries and has no side effects. Balances are always re-derived by
folding the append-only log; the ``balance`` stored on an employee row is only
ever overwritten here, never read.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence

from . import log
from .constants import (
    CENT,
    MANUAL_CREDIT_DESCRIPTION,
    MANUAL_DEBIT_DESCRIPTION,
    MANUAL_PRODUCT_ID,
    PAYMENT_PRODUCT_ID,
    PAYMENT_PRODUCT_NAME,
    EntryKind,
)
from .data_manager import EmployeeRow, ProductRow, TransactionRow


ZERO = Decimal("0")


@dataclass(frozen=True)
class DebtReport:
    """Debts-only snapshot handed to the CSV export and the email sender."""

    employees_with_debts: List[EmployeeRow]
    total_debt: Decimal
    as_of: datetime
    transactions: List[TransactionRow]


def compute_balances(employees: Iterable[EmployeeRow], transactions: Iterable[TransactionRow]) -> List[EmployeeRow]:
    """Fold the ledger into one balance per employee.

    A single pass builds an ``employee_id -> sum(price)`` map which is then
    merged into the employee records. Entries referencing unknown employees
    are skipped. Every employee is returned exactly once, in input order,
    with ``balance`` replaced (an empty log yields zero for everyone).

    Args:
        employees (Iterable[EmployeeRow]): Roster snapshot.
        transactions (Iterable[TransactionRow]): Ledger snapshot in any order.

    Returns:
        list[EmployeeRow]: Copies of the input rows carrying derived balances.
    """

    roster = list(employees)
    known_ids = {employee.employee_id for employee in roster}
    sums: Dict[str, Decimal] = {}
    orphans = 0
    for entry in transactions:
        if entry.employee_id not in known_ids:
            orphans += 1
            continue
        sums[entry.employee_id] = sums.get(entry.employee_id, ZERO) + entry.price

    if orphans:
        log.debug("Skipped %d ledger entries without a matching employee", orphans)

    return [replace(employee, balance=sums.get(employee.employee_id, ZERO)) for employee in roster]


def balance_for(employee_id: str, transactions: Iterable[TransactionRow]) -> Decimal:
    """Sum the prices of a single employee's entries."""

    total = ZERO
    for entry in transactions:
        if entry.employee_id == employee_id:
            total += entry.price
    return total


def format_money(amount: Decimal) -> str:
    """Round to cents for presentation only."""

    return str(amount.quantize(CENT))


def parse_amount(raw: object) -> Decimal:
    """Parse a manual amount typed by a user.

    Accepts a comma as the decimal separator.

    Raises:
        ValueError: If ``raw`` is not numeric, not finite or zero.
    """

    text = str(raw).strip().replace(",", ".") if raw is not None else ""
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        log.error("Manual amount is not numeric: %r", raw)
        raise ValueError(f"Amount is not a number: {raw!r}") from exc
    if not amount.is_finite():
        log.error("Manual amount is not finite: %r", raw)
        raise ValueError(f"Amount is not a number: {raw!r}")
    if amount == ZERO:
        log.error("Manual amount is zero")
        raise ValueError("Amount must not be zero")
    return amount


def build_purchase_entry(
    employee: EmployeeRow,
    product: ProductRow,
    quantity: int,
    *,
    transaction_id: str,
    timestamp: datetime,
) -> TransactionRow:
    """Materialize a product booking; negative quantities are corrections.

    The entry snapshots the employee and product names so later renames or
    deletions do not change history.
    """

    return TransactionRow(
        transaction_id=transaction_id,
        timestamp_iso=timestamp.isoformat(),
        entry_kind=EntryKind.PURCHASE.value,
        employee_id=employee.employee_id,
        employee_name=employee.name,
        product_id=product.product_id,
        product_name=product.product_name,
        price=product.unit_price * quantity,
        quantity=quantity,
    )


def build_manual_entry(
    employee: EmployeeRow,
    amount: Decimal,
    *,
    credit: bool,
    description: Optional[str],
    transaction_id: str,
    timestamp: datetime,
) -> TransactionRow:
    """Materialize a manual adjustment.

    Credit mode (money paid in) always lowers the balance, debit mode always
    raises it, regardless of the sign the user typed.
    """

    price = -abs(amount) if credit else abs(amount)
    label = description or (MANUAL_CREDIT_DESCRIPTION if credit else MANUAL_DEBIT_DESCRIPTION)
    return TransactionRow(
        transaction_id=transaction_id,
        timestamp_iso=timestamp.isoformat(),
        entry_kind=EntryKind.MANUAL.value,
        employee_id=employee.employee_id,
        employee_name=employee.name,
        product_id=MANUAL_PRODUCT_ID,
        product_name=label,
        price=price,
        quantity=1,
    )


def build_payment_entry(
    employee: EmployeeRow,
    transactions: Iterable[TransactionRow],
    *,
    transaction_id: str,
    timestamp: datetime,
) -> Optional[TransactionRow]:
    """Build the counter-entry that brings an employee's balance to zero.

    The balance is recomputed from ``transactions``; the stored
    ``employee.balance`` cache is ignored. Returns ``None`` when the balance
    is already exactly zero. A negative balance (credit) produces a positive
    entry that likewise lands on zero.
    """

    current = balance_for(employee.employee_id, transactions)
    if current == ZERO:
        return None
    return TransactionRow(
        transaction_id=transaction_id,
        timestamp_iso=timestamp.isoformat(),
        entry_kind=EntryKind.PAYMENT.value,
        employee_id=employee.employee_id,
        employee_name=employee.name,
        product_id=PAYMENT_PRODUCT_ID,
        product_name=PAYMENT_PRODUCT_NAME,
        price=-current,
        quantity=1,
    )


def build_debt_report(
    employees: Iterable[EmployeeRow],
    transactions: Sequence[TransactionRow],
    *,
    as_of: datetime,
) -> DebtReport:
    """Produce the debts-only snapshot.

    Employees with a positive balance are kept and sorted by descending
    balance (``sorted`` is stable, so ties keep roster order). ``total_debt``
    sums only those balances. ``transactions`` carries the entries of the
    employees in debt, in log order.
    """

    balances = compute_balances(employees, transactions)
    debtors = sorted(
        (employee for employee in balances if employee.balance > ZERO),
        key=lambda employee: employee.balance,
        reverse=True,
    )
    total = sum((employee.balance for employee in debtors), ZERO)
    debtor_ids = {employee.employee_id for employee in debtors}
    entries = [entry for entry in transactions if entry.employee_id in debtor_ids]
    log.debug("Built debt report: %d debtors, total=%s", len(debtors), total)
    return DebtReport(
        employees_with_debts=debtors,
        total_debt=total,
        as_of=as_of,
        transactions=entries,
    )


def unit_price_of(entry: TransactionRow) -> Decimal:
    """Recover the unit price of an entry for display (zero quantity yields the price)."""

    if entry.quantity == 0:
        return entry.price
    return entry.price / entry.quantity


def sort_for_display(transactions: Iterable[TransactionRow], *, newest_first: bool = True) -> List[TransactionRow]:
    """Order entries by timestamp for history views; balances never use this."""

    return sorted(transactions, key=lambda entry: entry.timestamp_iso, reverse=newest_first)
