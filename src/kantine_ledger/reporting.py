"""Debt report rendering, CSV export and email delivery.

Everything here consumes a :class:`~kantine_ledger.ledger.DebtReport` or a
ledger snapshot; nothing writes to the workbook.
"""

from __future__ import annotations

import csv
import json
import smtplib
import ssl
from datetime import date, datetime
from decimal import Decimal
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from pathlib import Path
from typing import Iterable, Optional, Sequence, TextIO

from . import core_logic, ledger, log
from .data_manager import EmployeeRow, MailSettings, TransactionRow


CSV_HEADER = [
    "Typ",
    "Mitarbeiter ID",
    "Mitarbeiter Name",
    "Produkt",
    "Menge",
    "Einzelpreis",
    "Gesamtpreis",
    "Datum",
    "Aktuelles Guthaben",
]
UNKNOWN_EMPLOYEE = "Unbekannt"
GERMAN_DATE = "%d.%m.%Y"
GERMAN_DATETIME = "%d.%m.%Y, %H:%M:%S"


class ReportDeliveryError(Exception):
    """Raised when the debt report email cannot be handed to the SMTP server."""


def _money(amount: Decimal) -> str:
    return ledger.format_money(amount)


def _display_datetime(timestamp_iso: str) -> str:
    if not timestamp_iso:
        return ""
    try:
        moment = datetime.fromisoformat(timestamp_iso)
    except ValueError:
        return timestamp_iso
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime(GERMAN_DATETIME)


def report_subject(report: ledger.DebtReport, canteen_name: str = "Kantine") -> str:
    return f"{canteen_name} Schulden-Report - {report.as_of.strftime(GERMAN_DATE)}"


def render_debt_report_html(
    report: ledger.DebtReport,
    *,
    payment_recipient: Optional[str] = None,
    canteen_name: str = "Kantine",
) -> str:
    """Render the debt report as a self-contained HTML email body.

    Names are HTML-escaped. Amounts are rounded to cents here and nowhere
    earlier.
    """

    rows = "".join(
        "<tr>"
        f'<td style="padding: 8px; border-bottom: 1px solid #ddd;">{escape(employee.name)}</td>'
        '<td style="padding: 8px; border-bottom: 1px solid #ddd; text-align: right; color: #dc2626;">'
        f"{_money(employee.balance)} €</td>"
        "</tr>"
        for employee in report.employees_with_debts
    )
    payment_note = ""
    if payment_recipient:
        payment_note = (
            '<div style="margin-top: 20px; padding: 15px; background: #e0f2fe;">'
            "<h4>Zahlungshinweis</h4>"
            "<p>Bitte überweisen Sie Ihre Schulden an:<br>"
            f"<strong>PayPal: {escape(payment_recipient)}</strong></p>"
            "</div>"
        )
    title = escape(f"{canteen_name} Schulden-Report")
    return (
        "<!DOCTYPE html>"
        '<html><head><meta charset="utf-8">'
        f"<title>{title}</title></head>"
        '<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h1>{title}</h1>"
        f"<p>Automatischer Report vom {report.as_of.strftime(GERMAN_DATE)}</p>"
        "<h2>Zusammenfassung</h2>"
        f"<p><strong>Gesamtschulden: {_money(report.total_debt)} €</strong></p>"
        f"<p>Anzahl Mitarbeiter mit Schulden: {len(report.employees_with_debts)}</p>"
        '<table style="width: 100%; border-collapse: collapse;">'
        "<thead><tr><th>Mitarbeiter</th><th>Schulden</th></tr></thead>"
        f"<tbody>{rows}</tbody>"
        "</table>"
        f"{payment_note}"
        "<p>Automatisch generiert vom Kantine-Verwaltungssystem</p>"
        "</body></html>"
    )


def write_transactions_csv(
    handle: TextIO,
    employees: Sequence[EmployeeRow],
    transactions: Sequence[TransactionRow],
    *,
    exported_at: datetime,
    debts_only: bool = False,
) -> int:
    """Write the ledger export in three sections.

    1. One row per entry, carrying the unit price, the total, the local date
       and the employee's **final** balance.
    2. ``ZUSAMMENFASSUNG``: one balance row per employee.
    3. The total of the listed balances and the export timestamp.

    With ``debts_only`` only employees with a positive balance and their
    entries are written, exactly the set of :func:`ledger.build_debt_report`.

    Args:
        handle (TextIO): Open text stream; pass ``newline=""`` when opening
            files.
        employees (Sequence[EmployeeRow]): Roster snapshot.
        transactions (Sequence[TransactionRow]): Ledger snapshot in log order.
        exported_at (datetime): Timestamp written into the footer.
        debts_only (bool): Restrict the export to employees in debt.

    Returns:
        int: Number of transaction rows written.
    """

    if debts_only:
        report = ledger.build_debt_report(employees, transactions, as_of=exported_at)
        balances = report.employees_with_debts
        entries = report.transactions
    else:
        balances = ledger.compute_balances(employees, transactions)
        entries = list(transactions)

    by_id = {employee.employee_id: employee for employee in balances}
    writer = csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        employee = by_id.get(entry.employee_id)
        writer.writerow(
            [
                "Transaktion",
                entry.employee_id,
                entry.employee_name or (employee.name if employee else UNKNOWN_EMPLOYEE),
                entry.product_name,
                entry.quantity,
                _money(ledger.unit_price_of(entry)),
                _money(entry.price),
                _display_datetime(entry.timestamp_iso),
                _money(employee.balance if employee else ledger.ZERO),
            ]
        )

    writer.writerow([])
    writer.writerow(["ZUSAMMENFASSUNG"])
    writer.writerow(["Mitarbeiter", "Aktuelles Guthaben"])
    for employee in balances:
        writer.writerow([employee.name, _money(employee.balance)])

    total = sum((employee.balance for employee in balances), ledger.ZERO)
    writer.writerow([])
    writer.writerow(["Gesamtschuld", _money(total)])
    writer.writerow(["Export Datum", exported_at.strftime(GERMAN_DATETIME)])

    log.info("Wrote CSV export with %d entries (debts_only=%s)", len(entries), debts_only)
    return len(entries)


def export_csv(
    destination: Path,
    employees: Sequence[EmployeeRow],
    transactions: Sequence[TransactionRow],
    *,
    exported_at: datetime,
    debts_only: bool = False,
) -> Path:
    """Write :func:`write_transactions_csv` output to ``destination``."""

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8", newline="") as handle:
        write_transactions_csv(
            handle,
            employees,
            transactions,
            exported_at=exported_at,
            debts_only=debts_only,
        )
    return destination


def csv_backup_filename(day: date) -> str:
    return f"kantine-daten-{day.isoformat()}.csv"


def write_daily_csv_backup(context: core_logic.RuntimeContext, *, now: datetime) -> Path:
    """Export the full ledger to ``<OutputDir>/kantine-daten-YYYY-MM-DD.csv``.

    Raises:
        ReportDeliveryError: If no report directory is configured or the file
            cannot be written.
    """

    report_dir = context.settings.report_dir
    if report_dir is None:
        raise ReportDeliveryError("No report directory configured ([Report] OutputDir)")
    destination = Path(report_dir) / csv_backup_filename(now.date())
    try:
        path = export_csv(
            destination,
            core_logic.list_employees(context),
            core_logic.list_transactions(context),
            exported_at=now,
        )
    except OSError as exc:
        raise ReportDeliveryError(f"Could not write CSV backup '{destination}': {exc}") from exc
    log.info("Daily CSV backup written to '%s'", path)
    return path


def snapshot_filename(as_of: datetime) -> str:
    """``schulden-report-YYYY-MM-DD-<epoch millis>.json``."""

    millis = int(as_of.timestamp() * 1000)
    return f"schulden-report-{as_of.strftime('%Y-%m-%d')}-{millis}.json"


def _entry_payload(entry: TransactionRow) -> dict:
    return {
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


def save_report_snapshot(report: ledger.DebtReport, report_dir: Path) -> Optional[Path]:
    """Archive the report as JSON.

    A failed write is logged and yields ``None``; delivering the email matters
    more than the archive copy.
    """

    payload = {
        "date": report.as_of.isoformat(),
        "totalDebt": str(report.total_debt),
        "employeesWithDebts": [
            {"id": employee.employee_id, "name": employee.name, "balance": str(employee.balance)}
            for employee in report.employees_with_debts
        ],
        "transactions": [_entry_payload(entry) for entry in report.transactions],
    }
    try:
        report_dir = Path(report_dir).expanduser()
        report_dir.mkdir(parents=True, exist_ok=True)
        target = report_dir / snapshot_filename(report.as_of)
        target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as exc:
        log.error("Unable to save report snapshot in '%s': %s", report_dir, exc)
        return None

    log.info("Saved report snapshot '%s'", target)
    return target


def build_report_message(
    report: ledger.DebtReport,
    *,
    sender: str,
    recipient: str,
    canteen_name: str = "Kantine",
    attachments: Iterable[Path] = (),
) -> MIMEMultipart:
    msg = MIMEMultipart()
    msg["From"] = sender
    msg["To"] = recipient
    msg["Subject"] = report_subject(report, canteen_name)
    msg.attach(
        MIMEText(
            render_debt_report_html(report, payment_recipient=recipient, canteen_name=canteen_name),
            "html",
            "utf-8",
        )
    )
    for path in attachments:
        path = Path(path)
        part = MIMEBase("application", "octet-stream")
        part.set_payload(path.read_bytes())
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", f"attachment; filename={path.name}")
        msg.attach(part)
    return msg


def send_debt_report(
    report: ledger.DebtReport,
    mail: MailSettings,
    recipient: str,
    *,
    canteen_name: str = "Kantine",
    attachments: Iterable[Path] = (),
) -> None:
    """Send the debt report through SMTP.

    Raises:
        ReportDeliveryError: If connecting, authenticating or sending fails.
    """

    msg = build_report_message(
        report,
        sender=mail.sender,
        recipient=recipient,
        canteen_name=canteen_name,
        attachments=attachments,
    )
    try:
        with smtplib.SMTP(mail.host, mail.port) as server:
            if mail.use_tls:
                server.starttls(context=ssl.create_default_context())
            if mail.username:
                server.login(mail.username, mail.password or "")
            server.sendmail(mail.sender, recipient, msg.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        log.error("Failed to send debt report to '%s': %s", recipient, exc)
        raise ReportDeliveryError(f"Failed to send debt report: {exc}") from exc

    log.info(
        "Sent debt report to '%s' (%d debtors, total=%s)",
        recipient,
        len(report.employees_with_debts),
        _money(report.total_debt),
    )


def deliver_debt_report(
    context: core_logic.RuntimeContext,
    *,
    now: Optional[datetime] = None,
    csv_attachment: bool = False,
) -> ledger.DebtReport:
    """Build, archive and email the debt report for a runtime context.

    The JSON snapshot is written to ``[Report] OutputDir`` first; the email
    is sent even when that fails.

    Args:
        context (core_logic.RuntimeContext): Loaded runtime context.
        now (datetime | None): Report timestamp, defaults to the current time.
        csv_attachment (bool): Attach the debts-only CSV export.

    Returns:
        ledger.DebtReport: The report that was sent.

    Raises:
        ReportDeliveryError: If mail delivery is not configured or fails.
    """

    settings = context.settings
    if settings.mail is None or not settings.report_recipient:
        raise ReportDeliveryError("Mail delivery is not configured ([Mail] and [Report] Recipient)")

    report = core_logic.build_debt_report(context, now=now)
    snapshot = None
    if settings.report_dir is not None:
        snapshot = save_report_snapshot(report, settings.report_dir)

    attachments = []
    if csv_attachment and snapshot is not None:
        attachments.append(
            export_csv(
                snapshot.with_suffix(".csv"),
                core_logic.list_employees(context),
                core_logic.list_transactions(context),
                exported_at=report.as_of,
                debts_only=True,
            )
        )

    send_debt_report(
        report,
        settings.mail,
        settings.report_recipient,
        canteen_name=settings.canteen_name,
        attachments=attachments,
    )
    return report
