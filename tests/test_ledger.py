"""Unit tests for the pure balance engine."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from kantine_ledger import ledger
from kantine_ledger.data_manager import EmployeeRow, ProductRow, TransactionRow


WHEN = datetime(2024, 1, 1, 9, 30, tzinfo=UTC)


def _employee(employee_id, name="Anna", balance="0.00"):
    return EmployeeRow(employee_id, name, "group1", False, Decimal(balance))


def _entry(transaction_id, employee_id, price, quantity=1, product_name="Kaffee"):
    return TransactionRow(
        transaction_id=transaction_id,
        timestamp_iso=f"2024-01-01T09:{transaction_id[-1]}0:00",
        entry_kind="PURCHASE",
        employee_id=employee_id,
        employee_name="",
        product_id="P1",
        product_name=product_name,
        price=Decimal(price),
        quantity=quantity,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def test_compute_balances_sums_prices_per_employee():
    employees = [_employee("E1"), _employee("E2", "Ben")]
    transactions = [
        _entry("T1", "E1", "6.00"),
        _entry("T2", "E2", "1.50"),
        _entry("T3", "E1", "-2.50"),
    ]

    result = ledger.compute_balances(employees, transactions)

    assert [(row.employee_id, row.balance) for row in result] == [
        ("E1", Decimal("3.50")),
        ("E2", Decimal("1.50")),
    ]


def test_compute_balances_is_order_independent():
    employees = [_employee("E1")]
    transactions = [_entry("T1", "E1", "0.10"), _entry("T2", "E1", "0.20"), _entry("T3", "E1", "-0.05")]

    forward = ledger.compute_balances(employees, transactions)
    backward = ledger.compute_balances(employees, list(reversed(transactions)))

    assert forward == backward
    assert forward[0].balance == Decimal("0.25")


def test_compute_balances_is_idempotent_and_ignores_stored_balance():
    employees = [_employee("E1", balance="99.00")]
    transactions = [_entry("T1", "E1", "4.00")]

    first = ledger.compute_balances(employees, transactions)
    second = ledger.compute_balances(first, transactions)

    assert first == second
    assert second[0].balance == Decimal("4.00")


def test_compute_balances_with_empty_log_yields_zero_for_everyone():
    result = ledger.compute_balances([_employee("E1"), _employee("E2")], [])
    assert [row.balance for row in result] == [Decimal("0"), Decimal("0")]


def test_compute_balances_skips_orphan_entries():
    result = ledger.compute_balances([_employee("E1")], [_entry("T1", "E1", "1.00"), _entry("T2", "GONE", "50.00")])

    assert len(result) == 1
    assert result[0].balance == Decimal("1.00")


def test_compute_balances_avoids_float_drift():
    transactions = [_entry(f"T{i}", "E1", "0.10") for i in range(3)]
    (row,) = ledger.compute_balances([_employee("E1")], transactions)
    assert row.balance == Decimal("0.30")


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------


def test_build_purchase_entry_multiplies_unit_price():
    product = ProductRow("P1", "Kaffee", Decimal("1.50"), 10, "getränke")

    entry = ledger.build_purchase_entry(_employee("E1"), product, 3, transaction_id="T1", timestamp=WHEN)

    assert entry.price == Decimal("4.50")
    assert entry.quantity == 3
    assert entry.employee_name == "Anna"
    assert entry.product_name == "Kaffee"
    assert entry.entry_kind == "PURCHASE"
    assert entry.timestamp_iso == WHEN.isoformat()


def test_negative_quantity_books_a_correction():
    product = ProductRow("P1", "Kaffee", Decimal("1.50"), 10, "getränke")
    employee = _employee("E1")
    existing = [_entry("T1", "E1", "6.00")]

    correction = ledger.build_purchase_entry(employee, product, -2, transaction_id="T2", timestamp=WHEN)
    (after,) = ledger.compute_balances([employee], existing + [correction])

    assert correction.price == Decimal("-3.00")
    assert after.balance == Decimal("3.00")


@pytest.mark.parametrize(
    ("amount", "credit", "expected", "label"),
    [
        (Decimal("5"), False, Decimal("5"), "Manueller Betrag"),
        (Decimal("-5"), False, Decimal("5"), "Manueller Betrag"),
        (Decimal("5"), True, Decimal("-5"), "Guthaben eingezahlt"),
        (Decimal("-5"), True, Decimal("-5"), "Guthaben eingezahlt"),
    ],
)
def test_build_manual_entry_applies_sign_by_mode(amount, credit, expected, label):
    entry = ledger.build_manual_entry(
        _employee("E1"), amount, credit=credit, description=None, transaction_id="M1", timestamp=WHEN
    )

    assert entry.price == expected
    assert entry.product_name == label
    assert entry.product_id == "manual"
    assert entry.quantity == 1


def test_build_manual_entry_keeps_custom_description():
    entry = ledger.build_manual_entry(
        _employee("E1"), Decimal("2"), credit=False, description="Kuchen", transaction_id="M1", timestamp=WHEN
    )
    assert entry.product_name == "Kuchen"


@pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity", "0", "0,00", None])
def test_parse_amount_rejects_invalid_input(raw):
    with pytest.raises(ValueError):
        ledger.parse_amount(raw)


def test_parse_amount_accepts_comma_separator():
    assert ledger.parse_amount(" 12,50 ") == Decimal("12.50")


# ---------------------------------------------------------------------------
# Payment clearing
# ---------------------------------------------------------------------------


def test_build_payment_entry_clears_outstanding_debt():
    employee = _employee("E1", balance="0.00")
    transactions = [_entry("T1", "E1", "10.00"), _entry("T2", "E1", "2.50")]

    payment = ledger.build_payment_entry(employee, transactions, transaction_id="Z1", timestamp=WHEN)
    (after,) = ledger.compute_balances([employee], transactions + [payment])

    assert payment.price == Decimal("-12.50")
    assert payment.product_id == "payment"
    assert payment.product_name == "Bezahlung"
    assert payment.entry_kind == "PAYMENT"
    assert after.balance == Decimal("0.00")


def test_build_payment_entry_offsets_credit_balance():
    transactions = [_entry("T1", "E1", "-4.00")]

    payment = ledger.build_payment_entry(_employee("E1"), transactions, transaction_id="Z1", timestamp=WHEN)

    assert payment.price == Decimal("4.00")


def test_build_payment_entry_returns_none_when_balance_is_zero():
    transactions = [_entry("T1", "E1", "2.00"), _entry("T2", "E1", "-2.00")]
    assert ledger.build_payment_entry(_employee("E1", balance="7.00"), transactions, transaction_id="Z1", timestamp=WHEN) is None


# ---------------------------------------------------------------------------
# Debt report
# ---------------------------------------------------------------------------


def test_build_debt_report_filters_sorts_and_totals():
    employees = [_employee("E1", "Anna"), _employee("E2", "Ben"), _employee("E3", "Cem"), _employee("E4", "Dora")]
    transactions = [
        _entry("T1", "E1", "5.00"),
        _entry("T2", "E2", "-3.00"),
        _entry("T3", "E3", "9.00"),
        _entry("T4", "E4", "5.00"),
    ]

    report = ledger.build_debt_report(employees, transactions, as_of=WHEN)

    assert [row.name for row in report.employees_with_debts] == ["Cem", "Anna", "Dora"]
    assert report.total_debt == Decimal("19.00")
    assert [entry.transaction_id for entry in report.transactions] == ["T1", "T3", "T4"]
    assert report.as_of == WHEN


def test_build_debt_report_without_debtors_is_empty():
    report = ledger.build_debt_report([_employee("E1")], [], as_of=WHEN)
    assert report.employees_with_debts == []
    assert report.total_debt == Decimal("0")


def test_unit_price_of_recovers_price_per_item():
    assert ledger.unit_price_of(_entry("T1", "E1", "4.50", quantity=3)) == Decimal("1.50")


def test_sort_for_display_orders_newest_first():
    entries = [_entry("T1", "E1", "1"), _entry("T3", "E1", "1"), _entry("T2", "E1", "1")]
    assert [entry.transaction_id for entry in ledger.sort_for_display(entries)] == ["T3", "T2", "T1"]


def test_format_money_rounds_to_cents():
    assert ledger.format_money(Decimal("3.005")) == "3.00"
    assert ledger.format_money(Decimal("2")) == "2.00"
