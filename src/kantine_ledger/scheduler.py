"""In-process polling scheduler for the daily ledger chores.

``tick(now)`` does one round of work and is what the tests drive; ``start``
and ``stop`` wrap it in a background thread that wakes every
``CheckIntervalMinutes``. Each tick:

- starts a fresh day of counters when the date changed,
- runs the hour-gated reset once the reset hour is reached,
- sends the debt report once per day after ``ReportHour``,
- writes the dated CSV backup once per day,
- persists the workbook.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Optional

from . import core_logic, log, reporting


@dataclass(frozen=True)
class TickResult:
    """What one scheduler round did."""

    daily_reset: bool = False
    hour_gated_reset: bool = False
    report_sent: bool = False
    csv_backup: bool = False


class LedgerScheduler:
    """Run resets and the daily report against one runtime context.

    The workbook is owned by the scheduler thread while it runs; do not mutate
    the same context from another thread in the meantime.
    """

    def __init__(
        self,
        context: core_logic.RuntimeContext,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        send_reports: bool = True,
        interval_seconds: Optional[float] = None,
    ):
        self._context = context
        self._clock = clock or (lambda: datetime.now(UTC))
        self._send_reports = send_reports
        if interval_seconds is None:
            interval_seconds = context.settings.check_interval_minutes * 60
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Run one round of chores and persist the workbook."""

        moment = (now or self._clock()).astimezone()
        daily = core_logic.run_daily_reset(self._context, today=moment.date())
        gated = core_logic.run_hour_gated_reset(self._context, now=moment)
        sent = self._send_report_if_due(moment)
        backup = self._write_csv_backup_if_due(moment)
        core_logic.persist_context(self._context)
        result = TickResult(
            daily_reset=daily,
            hour_gated_reset=gated,
            report_sent=sent,
            csv_backup=backup,
        )
        log.debug("Scheduler tick at %s: %s", moment.isoformat(), result)
        return result

    def report_due(self, moment: datetime) -> bool:
        if not self._send_reports:
            return False
        if moment.hour < self._context.settings.report_hour:
            return False
        return core_logic.get_last_report_date(self._context) != moment.date()

    def _send_report_if_due(self, moment: datetime) -> bool:
        if not self.report_due(moment):
            return False
        try:
            reporting.deliver_debt_report(self._context, now=moment)
        except reporting.ReportDeliveryError as exc:
            # marker stays unset, the next tick tries again
            log.error("Scheduled debt report failed: %s", exc)
            return False
        core_logic.mark_report_sent(self._context, moment.date())
        return True

    def csv_backup_due(self, moment: datetime) -> bool:
        if not self._context.settings.daily_csv_backup:
            return False
        return core_logic.get_last_csv_backup_date(self._context) != moment.date()

    def _write_csv_backup_if_due(self, moment: datetime) -> bool:
        if not self.csv_backup_due(moment):
            return False
        try:
            reporting.write_daily_csv_backup(self._context, now=moment)
        except reporting.ReportDeliveryError as exc:
            log.error("Scheduled CSV backup failed: %s", exc)
            return False
        core_logic.mark_csv_backup_written(self._context, moment.date())
        return True

    def start(self) -> None:
        """Start the polling loop in a daemon thread; a running loop is left alone."""

        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="kantine-scheduler",
            daemon=True,
        )
        self._thread.start()
        log.info("Scheduler started (interval=%ss)", self._interval)

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop to stop and wait up to ``timeout`` seconds for it."""

        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        log.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_forever(self) -> None:
        """Run the loop in the calling thread until interrupted."""

        log.info("Scheduler running in foreground (interval=%ss)", self._interval)
        try:
            self._run_loop()
        except KeyboardInterrupt:
            log.info("Scheduler interrupted")
        finally:
            self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                log.exception("Scheduler tick failed")
            self._stop_event.wait(timeout=self._interval)
