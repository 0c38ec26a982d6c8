"""Tests for the workbook-backed data access layer."""

from __future__ import annotations

import configparser
from datetime import date
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from kantine_ledger import constants, data_manager  # noqa: E402


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk upwards from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "CanteenName") == "Testkantine"
    assert parser.get("Report", "Recipient") == "kasse@example.org"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile and OutputDir entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.report_dir == (bundle.config_path.parent / "reports").resolve()
    assert settings.report_hour == 9
    assert settings.purge_same_day_entries is False


def test_parse_settings_applies_defaults_for_optional_sections(tmp_path):
    """Only [System] is mandatory; everything else falls back to defaults."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile = data.xlsx\nCanteenName = K\nSchemaVersion = 1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.reset_hour == constants.DEFAULT_RESET_HOUR
    assert settings.check_interval_minutes == constants.DEFAULT_CHECK_INTERVAL_MINUTES
    assert settings.group_names == constants.DEFAULT_GROUP_NAMES
    assert settings.report_recipient is None
    assert settings.daily_csv_backup is True
    assert settings.mail is None


def test_parse_settings_reads_csv_backup_switch(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile = data.xlsx\nCanteenName = K\nSchemaVersion = 1.0.0\n"
        "[Schedule]\nDailyCsvBackup = off\n"
    )

    assert data_manager.parse_settings(parser, base_path=tmp_path).daily_csv_backup is False


def test_parse_settings_reads_group_names_and_mail(tmp_path):
    """Group display names and SMTP details come from their own sections."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile = data.xlsx\nCanteenName = K\nSchemaVersion = 1.0.0\n"
        "[Groups]\ngroup2 = Spätschicht\n"
        "[Mail]\nHost = smtp.local\nSender = k@example.org\nUseTLS = no\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.group_names["group2"] == "Spätschicht"
    assert settings.group_names["group1"] == "4te Tour"
    assert settings.mail == data_manager.MailSettings(
        host="smtp.local",
        port=587,
        sender="k@example.org",
        use_tls=False,
    )


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_mail_settings_requires_host(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Mail]\nSender = k@example.org\n")
    with pytest.raises(KeyError):
        data_manager.parse_mail_settings(parser)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(workbook.sheetnames) == {member.value for member in constants.SheetName}


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[constants.SheetName.EMPLOYEES.value].append(["E2", "Jordan", "group2", False, 0])
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy[constants.SheetName.EMPLOYEES.value].iter_rows(min_row=2, values_only=True))
    assert ("E2", "Jordan", "group2", False, 0) in rows


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    original[constants.SheetName.PRODUCTS.value].append(["P200", "Wasser", 0.6, 40, "getränke"])
    data_manager.save_workbook(original, master_workbook_path)

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert [row.product_id for row in data_manager.iter_products(refreshed)] == ["P200"]


def test_iter_employees_yields_typed_rows(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    sheet = workbook[constants.SheetName.EMPLOYEES.value]
    sheet.append([101, "Anna", "group1", True, 12.5])
    sheet.append([None, None, None, None, None])
    sheet.append(["E2", "Ben", "group3", None, None])

    rows = list(data_manager.iter_employees(workbook))

    assert rows == [
        data_manager.EmployeeRow("101", "Anna", "group1", True, Decimal("12.5")),
        data_manager.EmployeeRow("E2", "Ben", "group3", False, Decimal("0.00")),
    ]


def test_append_and_iter_transactions_round_trip_through_disk(master_workbook_path):
    """Entries persist in insertion order with Decimal prices."""

    workbook = data_manager.open_workbook(master_workbook_path)
    first = data_manager.TransactionRow(
        "T1", "2024-01-01T09:00:00+00:00", "PURCHASE", "E1", "Anna", "P1", "Kaffee", Decimal("3.00"), 2
    )
    second = data_manager.TransactionRow(
        "Z1", "2024-01-02T09:00:00+00:00", "PAYMENT", "E1", "Anna", "payment", "Bezahlung", Decimal("-3.00"), 1
    )
    data_manager.append_transaction(workbook, first)
    data_manager.append_transaction(workbook, second)
    data_manager.save_workbook(workbook, master_workbook_path)

    rows = list(data_manager.iter_transactions(data_manager.open_workbook(master_workbook_path)))

    assert [row.transaction_id for row in rows] == ["T1", "Z1"]
    assert rows[0].price == Decimal("3")
    assert rows[1].price == Decimal("-3")
    assert rows[1].product_name == "Bezahlung"


def test_replace_transactions_keeps_header_and_drops_old_rows(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    for index in range(3):
        data_manager.append_transaction(
            workbook,
            data_manager.TransactionRow(
                f"T{index}", "2024-01-01T09:00:00", "PURCHASE", "E1", "Anna", "P1", "Kaffee", Decimal("1.50"), 1
            ),
        )
    keep = data_manager.TransactionRow(
        "M1", "2024-01-01T10:00:00", "MANUAL", "E1", "Anna", "manual", "Manueller Betrag", Decimal("2.00"), 1
    )

    data_manager.replace_transactions(workbook, [keep])

    sheet = workbook[constants.SheetName.TRANSACTION_LOG.value]
    assert sheet.cell(row=1, column=1).value == "TransactionID"
    assert list(data_manager.iter_transactions(workbook)) == [keep]


def test_update_employee_modifies_existing_row(master_workbook_path):
    """update_employee should mutate values for the matching EmployeeID."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_employee(workbook, data_manager.EmployeeRow("E5", "Old", "group1"))

    data_manager.update_employee(workbook, "E5", field_values={"EmployeeName": "New", "HideCoffee": True})

    (row,) = list(data_manager.iter_employees(workbook))
    assert row.name == "New"
    assert row.hide_coffee is True


def test_update_product_missing_raises(master_workbook_path):
    """Updating a nonexistent product should surface a KeyError."""

    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "NOPE", field_values={"ProductName": "X"})


def test_update_product_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(
        workbook, data_manager.ProductRow("P1", "Kaffee", Decimal("1.50"), 5, "getränke")
    )
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "P1", field_values={"SellPrice": Decimal("2.00")})


def test_delete_employee_removes_row(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_employee(workbook, data_manager.EmployeeRow("E1", "Anna", "group1"))
    data_manager.append_employee(workbook, data_manager.EmployeeRow("E2", "Ben", "group2"))

    data_manager.delete_employee(workbook, "E1")

    assert [row.employee_id for row in data_manager.iter_employees(workbook)] == ["E2"]
    with pytest.raises(KeyError):
        data_manager.delete_employee(workbook, "E1")


def test_locate_row_matches_numeric_ids(master_workbook_path):
    """Ids typed as numbers in Excel should still be found by their string form."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[constants.SheetName.PRODUCTS.value].append([7, "Wasser", 0.6, 40, "getränke"])

    row_index = data_manager.locate_row(
        workbook,
        constants.SheetName.PRODUCTS.value,
        "ProductID",
        "7",
    )
    assert row_index == 2
    assert data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "ProductID", "NOPE") is None


def test_daily_stats_round_trip(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    assert data_manager.read_daily_stats(workbook) == data_manager.DailyStatsRow(stats_date=None)

    stats = data_manager.DailyStatsRow(date(2024, 1, 2), lunch=3, rolls=1, eggs=0, coffee=4, lunch_employees=("Anna", "Ben"))
    data_manager.write_daily_stats(workbook, stats)
    data_manager.save_workbook(workbook, master_workbook_path)

    assert data_manager.read_daily_stats(data_manager.open_workbook(master_workbook_path)) == stats


def test_meta_values_are_upserted(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    assert data_manager.get_meta(workbook, "LastStatsReset") is None

    data_manager.set_meta(workbook, "LastStatsReset", "2024-01-01")
    data_manager.set_meta(workbook, "LastStatsReset", "2024-01-02")

    assert data_manager.get_meta(workbook, "LastStatsReset") == "2024-01-02"
    assert workbook[constants.SheetName.META.value].max_row == 2


def test_serialize_transaction_preserves_order():
    """serialize_transaction should follow the column ordering defined by setup."""

    record = data_manager.TransactionRow(
        "T9", "2024-01-01T09:00:00", "PURCHASE", "E1", "Anna", "P1", "Kaffee", Decimal("1.50"), 1
    )
    assert data_manager.serialize_transaction(record) == [
        "T9",
        "2024-01-01T09:00:00",
        "PURCHASE",
        "E1",
        "Anna",
        "P1",
        "Kaffee",
        Decimal("1.50"),
        1,
    ]


def test_deserialize_product_constructs_dataclass():
    row = data_manager.deserialize_product((3, "Ei", 0.3, "30", "essen"))
    assert row == data_manager.ProductRow("3", "Ei", Decimal("0.3"), 30, "essen")
