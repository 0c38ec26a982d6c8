"""Command-line entry points for the Kantine ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer and printing the results of read commands. Keeping the CLI thin ensures
the same parser configuration can be reused by tests, scripts, or any
alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, ledger, log, reporting
from .constants import LOW_STOCK_THRESHOLD, EmployeeGroup, ProductCategory
from .scheduler import LedgerScheduler


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="kantine-cli",
        description="Command-line tools for the Kantine ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as bookings and resets."""
    specs = {
        "add-employee": register_add_employee_command(subparsers),
        "update-employee": register_update_employee_command(subparsers),
        "remove-employee": register_remove_employee_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "remove-product": register_remove_product_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "manual": register_manual_command(subparsers),
        "clear-balance": register_clear_balance_command(subparsers),
        "reset-daily": register_reset_daily_command(subparsers),
        "sync-balances": register_sync_balances_command(subparsers),
        "import-backup": register_import_backup_command(subparsers),
        "send-report": register_send_report_command(subparsers),
        "run-scheduler": register_run_scheduler_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as balances and exports."""
    specs = {
        "balances": register_balances_command(subparsers),
        "debts": register_debts_command(subparsers),
        "products": register_products_command(subparsers),
        "stats": register_stats_command(subparsers),
        "log": register_log_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "export-csv": register_export_csv_command(subparsers),
        "export-backup": register_export_backup_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    configure: Optional[Callable[[argparse.ArgumentParser], None]] = None,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if configure is not None:
            configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-employee``."""
    name = "add-employee"
    help_text = "Add an employee to the roster."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--group", choices=[member.value for member in EmployeeGroup], required=True)
        parser.add_argument("--hide-coffee", action="store_true", help="Hide coffee products for this employee.")
        parser.add_argument("--employee-id", default=None, help="Explicit id (generated when omitted).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_employee)


def register_update_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-employee``."""
    name = "update-employee"
    help_text = "Change name, group or coffee visibility of an employee."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--group", choices=[member.value for member in EmployeeGroup], default=None)
        coffee = parser.add_mutually_exclusive_group()
        coffee.add_argument("--hide-coffee", dest="hide_coffee", action="store_const", const=True, default=None)
        coffee.add_argument("--show-coffee", dest="hide_coffee", action="store_const", const=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_employee)


def register_remove_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-employee``."""
    return _simple_command(
        "remove-employee",
        "Remove an employee; their ledger entries are kept.",
        run_remove_employee,
        lambda parser: parser.add_argument("--employee-id", required=True),
    )


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--unit-price", required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument(
            "--category",
            choices=[member.value for member in ProductCategory],
            default=ProductCategory.FOOD.value,
        )
        parser.add_argument("--product-id", default=None, help="Explicit id (generated when omitted).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change name, price, stock or category of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", default=None)
        parser.add_argument("--unit-price", default=None)
        parser.add_argument("--stock", type=int, default=None)
        parser.add_argument("--category", choices=[member.value for member in ProductCategory], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_remove_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-product``."""
    return _simple_command(
        "remove-product",
        "Remove a product from the catalog.",
        run_remove_product,
        lambda parser: parser.add_argument("--product-id", required=True),
    )


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Book a product for an employee (negative quantity corrects a booking)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, default=1)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_manual_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``manual``."""
    name = "manual"
    help_text = "Book a free-form amount (use --credit for money paid in)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--amount", required=True, help="Amount; a comma decimal separator is accepted.")
        parser.add_argument("--credit", action="store_true", help="Lower the balance instead of raising it.")
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_manual)


def register_clear_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``clear-balance``."""
    name = "clear-balance"
    help_text = "Append a payment that brings an employee's balance to zero."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_clear_balance)


def register_reset_daily_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset-daily``."""
    name = "reset-daily"
    help_text = "Run the daily counter reset now."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--hour-gated",
            action="store_true",
            help="Also run the once-per-day reset of lunch, rolls and coffee.",
        )
        parser.add_argument(
            "--purge",
            action="store_true",
            default=None,
            help="With --hour-gated: remove today's lunch, roll and coffee entries from the ledger.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset_daily)


def register_sync_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sync-balances``."""
    return _simple_command(
        "sync-balances",
        "Write derived balances into the roster's Balance column.",
        run_sync_balances,
    )


def register_import_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-backup``."""
    return _simple_command(
        "import-backup",
        "Replace roster, catalog and ledger with a JSON backup.",
        run_import_backup,
        lambda parser: parser.add_argument("--source", type=Path, required=True),
    )


def register_send_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``send-report``."""
    return _simple_command(
        "send-report",
        "Email the debt report now.",
        run_send_report,
        lambda parser: parser.add_argument("--attach-csv", action="store_true"),
    )


def register_run_scheduler_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``run-scheduler``."""
    name = "run-scheduler"
    help_text = "Run resets and the daily report on a timer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
        parser.add_argument("--no-report", action="store_true", help="Never send the debt report.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_scheduler)


def register_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``balances``."""
    return _simple_command(
        "balances",
        "Display every employee's balance derived from the ledger.",
        run_balances_report,
        lambda parser: parser.add_argument(
            "--group", choices=[member.value for member in EmployeeGroup], default=None
        ),
    )


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    return _simple_command("debts", "Display employees with outstanding debts.", run_debts_report)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    return _simple_command(
        "products",
        "Display the catalog, optionally as seen by one employee.",
        run_products_report,
        lambda parser: parser.add_argument("--employee-id", default=None),
    )


def register_stats_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stats``."""
    return _simple_command("stats", "Display today's item counters and lunch list.", run_stats_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display ledger entries, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", default=None)
        parser.add_argument("--limit", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    return _simple_command(
        "low-stock",
        "Display products running out of stock.",
        run_low_stock_report,
        lambda parser: parser.add_argument("--threshold", type=int, default=LOW_STOCK_THRESHOLD),
    )


def register_export_csv_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-csv``."""
    name = "export-csv"
    help_text = "Export the ledger with balances as CSV."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--debts-only", action="store_true", help="Restrict to employees in debt.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_csv)


def register_export_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-backup``."""
    return _simple_command(
        "export-backup",
        "Write roster, catalog and ledger to a JSON backup.",
        run_export_backup,
        lambda parser: parser.add_argument("--output", type=Path, required=True),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _parse_money(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        return Decimal(raw.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Not a valid amount: {raw!r}") from exc


def translate_add_employee(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-employee request."""
    return {
        "name": args.name,
        "group": args.group,
        "hide_coffee": getattr(args, "hide_coffee", False),
        "employee_id": args.employee_id,
    }


def translate_update_employee(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "name": args.name,
        "group": args.group,
        "hide_coffee": args.hide_coffee,
    }


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_name": args.product_name,
        "unit_price": _parse_money(args.unit_price),
        "stock": args.stock,
        "category": args.category,
        "product_id": args.product_id,
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "product_name": args.product_name,
        "unit_price": _parse_money(args.unit_price),
        "stock": args.stock,
        "category": args.category,
    }


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        employee_id=args.employee_id,
        product_id=args.product_id,
        quantity=args.quantity,
    )


def translate_manual(args: argparse.Namespace) -> core_logic.ManualAdjustmentCommand:
    """Translate CLI args into a manual adjustment command object."""
    return core_logic.ManualAdjustmentCommand(
        employee_id=args.employee_id,
        amount=args.amount,
        credit=args.credit,
        description=args.description,
    )


def run_add_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-employee workflow in the BLL."""
    payload = translate_add_employee(args)
    employee = core_logic.add_employee(context, **payload)
    print(f"Added {employee.name} ({employee.employee_id})")
    return 0


def run_update_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    payload = translate_update_employee(args)
    core_logic.update_employee(context, args.employee_id, **payload)
    return 0


def run_remove_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.remove_employee(context, args.employee_id)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added {product.product_name} ({product.product_id})")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    payload = translate_update_product(args)
    core_logic.update_product(context, args.product_id, **payload)
    return 0


def run_remove_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.remove_product(context, args.product_id)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    command = translate_purchase(args)
    entry = core_logic.record_purchase(context, command)
    print(f"{entry.employee_name}: {entry.quantity}x {entry.product_name} = {ledger.format_money(entry.price)} €")
    return 0


def run_manual(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual adjustment workflow via the BLL."""
    command = translate_manual(args)
    entry = core_logic.record_manual_adjustment(context, command)
    print(f"{entry.employee_name}: {entry.product_name} {ledger.format_money(entry.price)} €")
    return 0


def run_clear_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Clear an employee's balance after confirmation.

    Declining the prompt exits with code 1 so nothing is persisted.
    """
    employee = core_logic.get_employee(context, args.employee_id)
    if not args.yes:
        balance = ledger.balance_for(employee.employee_id, core_logic.list_transactions(context))
        answer = input(f"Clear balance of {employee.name} ({ledger.format_money(balance)} €)? [y/N] ")
        if answer.strip().lower() not in ("y", "yes", "j", "ja"):
            print("Aborted.")
            return 1
    entry = core_logic.clear_balance(context, employee.employee_id)
    if entry is None:
        print(f"{employee.name} has no open balance.")
    else:
        print(f"{employee.name}: payment of {ledger.format_money(-entry.price)} € recorded")
    return 0


def run_reset_daily(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily reset and, on request, the hour-gated reset."""
    changed = core_logic.run_daily_reset(context)
    if args.hour_gated:
        changed = core_logic.run_hour_gated_reset(context, purge=args.purge) or changed
    print("Counters reset." if changed else "Counters already current.")
    return 0


def run_sync_balances(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.sync_balance_cache(context)
    return 0


def run_import_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    counts = core_logic.import_backup(context, args.source)
    print(", ".join(f"{key}: {value}" for key, value in counts.items()) or "Nothing imported.")
    return 0


def run_send_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Email the debt report and remember the day it was sent."""
    now = datetime.now(UTC).astimezone()
    report = reporting.deliver_debt_report(context, now=now, csv_attachment=args.attach_csv)
    core_logic.mark_report_sent(context, now.date())
    print(f"Report sent: {len(report.employees_with_debts)} debtors, {ledger.format_money(report.total_debt)} €")
    return 0


def run_scheduler(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Run one scheduler tick or loop until interrupted."""
    scheduler = LedgerScheduler(context, send_reports=not args.no_report)
    if args.once:
        result = scheduler.tick()
        print(
            f"daily_reset={result.daily_reset} hour_gated_reset={result.hour_gated_reset} "
            f"report_sent={result.report_sent} csv_backup={result.csv_backup}"
        )
    else:
        scheduler.run_forever()
    return 0


def run_balances_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every employee's derived balance."""
    group_names = context.settings.group_names
    for employee in core_logic.calculate_balances(context):
        if args.group is not None and employee.group != args.group:
            continue
        group = group_names.get(employee.group, employee.group)
        print(f"{employee.employee_id}\t{employee.name}\t{group}\t{ledger.format_money(employee.balance)}")
    print(f"Total\t{ledger.format_money(core_logic.calculate_total_balance(context))}")
    return 0


def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the debts-only report."""
    report = core_logic.build_debt_report(context)
    for employee in report.employees_with_debts:
        print(f"{employee.name}\t{ledger.format_money(employee.balance)}")
    print(f"Gesamtschulden\t{ledger.format_money(report.total_debt)}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.employee_id is not None:
        products = core_logic.visible_products(context, args.employee_id)
    else:
        products = core_logic.list_products(context)
    for product in products:
        print(
            f"{product.product_id}\t{product.product_name}\t{ledger.format_money(product.unit_price)}"
            f"\t{product.stock}\t{product.category}"
        )
    return 0


def run_stats_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print today's counters after applying the daily reset."""
    core_logic.run_daily_reset(context)
    stats = core_logic.get_daily_stats(context)
    print(f"Datum\t{stats.stats_date.isoformat() if stats.stats_date else '-'}")
    print(f"Mittagessen\t{stats.lunch}")
    print(f"Brötchen\t{stats.rolls}")
    print(f"Eier\t{stats.eggs}")
    print(f"Kaffee\t{stats.coffee}")
    print(f"Mittagessen für\t{', '.join(stats.lunch_employees) or '-'}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print ledger entries, newest first."""
    entries = ledger.sort_for_display(core_logic.list_transactions(context, employee_id=args.employee_id))
    if args.limit is not None:
        entries = entries[: args.limit]
    for entry in entries:
        print(
            f"{entry.timestamp_iso}\t{entry.entry_kind}\t{entry.employee_name}\t"
            f"{entry.quantity}x {entry.product_name}\t{ledger.format_money(entry.price)}"
        )
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in core_logic.low_stock_products(context, threshold=args.threshold):
        print(f"{product.product_id}\t{product.product_name}\t{product.stock}")
    return 0


def run_export_csv(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = reporting.export_csv(
        args.output,
        core_logic.list_employees(context),
        core_logic.list_transactions(context),
        exported_at=datetime.now(UTC).astimezone(),
        debts_only=args.debts_only,
    )
    print(f"CSV written to {path}")
    return 0


def run_export_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = core_logic.export_backup(context, args.output)
    print(f"Backup written to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.BusinessRuleViolation, ValueError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, reporting.ReportDeliveryError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
