"""Utility for initializing the Kantine master workbook.

The module doubles as a console script (``kantine-setup``) and as a library
used by tests. The workbook layout is defined once here and matched by the
column order of the serializers in :mod:`kantine_ledger.data_manager`.
"""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import ProductCategory, SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.EMPLOYEES.value: [
        "EmployeeID",
        "EmployeeName",
        "Group",
        "HideCoffee",
        "Balance",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "UnitPrice",
        "Stock",
        "Category",
    ],
    SheetName.TRANSACTION_LOG.value: [
        "TransactionID",
        "Timestamp",
        "EntryKind",
        "EmployeeID",
        "EmployeeName",
        "ProductID",
        "ProductName",
        "Price",
        "Quantity",
    ],
    SheetName.DAILY_STATS.value: [
        "StatsDate",
        "Lunch",
        "Rolls",
        "Eggs",
        "Coffee",
        "LunchEmployees",
    ],
    SheetName.META.value: [
        "Key",
        "Value",
    ],
}

# Starting catalog of a fresh canteen.
DEFAULT_PRODUCTS: Sequence[data_manager.ProductRow] = (
    data_manager.ProductRow("1", "Mittagessen", Decimal("6.00"), 10, ProductCategory.FOOD.value),
    data_manager.ProductRow("2", "Brötchen", Decimal("1.00"), 20, ProductCategory.FOOD.value),
    data_manager.ProductRow("3", "Kaffee", Decimal("1.50"), 25, ProductCategory.DRINKS.value),
    data_manager.ProductRow("4", "Ei", Decimal("0.30"), 30, ProductCategory.FOOD.value),
    data_manager.ProductRow("5", "1 Weingummi", Decimal("0.10"), 100, ProductCategory.SWEETS.value),
    data_manager.ProductRow("6", "Kinderriegel/Duplo", Decimal("0.30"), 25, ProductCategory.SWEETS.value),
    data_manager.ProductRow("7", "Wasser", Decimal("0.60"), 40, ProductCategory.DRINKS.value),
    data_manager.ProductRow("8", "Eis", Decimal("0.80"), 15, ProductCategory.SWEETS.value),
    data_manager.ProductRow("9", "Cola/Fanta/Iso/Apfelschorle", Decimal("1.50"), 30, ProductCategory.DRINKS.value),
    data_manager.ProductRow("10", "Erdnüsse", Decimal("1.50"), 20, ProductCategory.SNACKS.value),
    data_manager.ProductRow("11", "Mars/Snickers/Kitkat", Decimal("0.80"), 25, ProductCategory.SWEETS.value),
)

CONFIG_FILE = "config.ini"


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    products: Sequence[data_manager.ProductRow] = DEFAULT_PRODUCTS,
    overwrite: bool = False,
) -> Path:
    """Create the Kantine master workbook at ``destination``.

    Parameters are overridable to facilitate testing; pass ``products=()``
    for an empty catalog. When ``overwrite`` is ``False`` (the default) this
    function raises ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    for product in products:
        data_manager.append_product(workbook, product)

    workbook.save(destination)
    log.info("Created master workbook '%s' with %d products", destination, len(products))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, seed_products: bool = True) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return create_master_workbook(
        settings.data_file,
        products=DEFAULT_PRODUCTS if seed_products else (),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="kantine-setup", description="Initialize the Kantine data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--empty-catalog",
        action="store_true",
        help="Do not seed the default products.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``kantine-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Kantine Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(
            config_path,
            overwrite=args.force,
            seed_products=not args.empty_catalog,
        )
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
