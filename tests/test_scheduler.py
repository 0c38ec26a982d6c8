"""Tests for the polling scheduler that drives resets and the daily report."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from unittest.mock import Mock

import pytest

from kantine_ledger import core_logic, reporting
from kantine_ledger.scheduler import LedgerScheduler, TickResult


@pytest.fixture
def chores(monkeypatch):
    """Replace the core operations a tick calls with mocks."""

    mocks = {
        "run_daily_reset": Mock(return_value=False),
        "run_hour_gated_reset": Mock(return_value=False),
        "get_last_report_date": Mock(return_value=None),
        "mark_report_sent": Mock(),
        "get_last_csv_backup_date": Mock(return_value=None),
        "mark_csv_backup_written": Mock(),
        "persist_context": Mock(),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(core_logic, name, mock)
    deliver = Mock()
    monkeypatch.setattr(reporting, "deliver_debt_report", deliver)
    mocks["deliver_debt_report"] = deliver
    backup = Mock()
    monkeypatch.setattr(reporting, "write_daily_csv_backup", backup)
    mocks["write_daily_csv_backup"] = backup
    return Mock(**mocks)


def test_interval_defaults_to_check_interval_minutes(context):
    scheduler = LedgerScheduler(context)
    assert scheduler._interval == 30 * 60


def test_tick_before_report_hour_runs_resets_only(context, chores):
    chores.run_daily_reset.return_value = True
    scheduler = LedgerScheduler(context)

    result = scheduler.tick(datetime(2024, 1, 2, 7, 0))

    assert result == TickResult(daily_reset=True, hour_gated_reset=False, report_sent=False, csv_backup=True)
    assert chores.run_daily_reset.call_args.kwargs["today"] == date(2024, 1, 2)
    assert chores.run_hour_gated_reset.call_args.kwargs["now"].hour == 7
    chores.deliver_debt_report.assert_not_called()
    chores.persist_context.assert_called_once_with(context)


def test_tick_sends_report_once_per_day(context, chores):
    scheduler = LedgerScheduler(context)

    result = scheduler.tick(datetime(2024, 1, 2, 9, 0))

    assert result.report_sent is True
    chores.deliver_debt_report.assert_called_once()
    chores.mark_report_sent.assert_called_once_with(context, date(2024, 1, 2))


def test_report_not_due_when_already_sent_today(context, chores):
    chores.get_last_report_date.return_value = date(2024, 1, 2)
    scheduler = LedgerScheduler(context)

    result = scheduler.tick(datetime(2024, 1, 2, 15, 0))

    assert result.report_sent is False
    chores.deliver_debt_report.assert_not_called()


def test_failed_report_leaves_marker_for_retry(context, chores):
    chores.deliver_debt_report.side_effect = reporting.ReportDeliveryError("smtp down")
    scheduler = LedgerScheduler(context)

    result = scheduler.tick(datetime(2024, 1, 2, 9, 0))

    assert result.report_sent is False
    chores.mark_report_sent.assert_not_called()
    chores.persist_context.assert_called_once_with(context)


def test_report_disabled_never_sends(context, chores):
    scheduler = LedgerScheduler(context, send_reports=False)

    assert scheduler.report_due(datetime(2024, 1, 2, 12, 0).astimezone()) is False
    scheduler.tick(datetime(2024, 1, 2, 12, 0))
    chores.deliver_debt_report.assert_not_called()


def test_tick_uses_clock_when_no_moment_given(context, chores):
    scheduler = LedgerScheduler(context, clock=lambda: datetime(2024, 3, 4, 6, 0), send_reports=False)

    scheduler.tick()

    assert chores.run_daily_reset.call_args.kwargs["today"] == date(2024, 3, 4)


def test_start_and_stop_background_loop(context, chores):
    scheduler = LedgerScheduler(context, clock=lambda: datetime(2024, 1, 2, 6, 0), interval_seconds=0.01)

    scheduler.start()
    assert scheduler.is_running
    scheduler.stop(timeout=5)

    assert not scheduler.is_running
    assert chores.run_daily_reset.called


def test_loop_survives_failing_tick(context, chores):
    scheduler = LedgerScheduler(context, clock=lambda: datetime(2024, 1, 2, 6, 0), interval_seconds=0)
    calls = []

    def _failing(*_args, **_kwargs):
        calls.append(1)
        if len(calls) >= 2:
            scheduler._stop_event.set()
        raise RuntimeError("workbook locked")

    chores.run_daily_reset.side_effect = _failing

    scheduler._run_loop()

    assert len(calls) == 2
    chores.persist_context.assert_not_called()


def test_tick_writes_csv_backup_once_per_day(context, chores):
    scheduler = LedgerScheduler(context, send_reports=False)

    result = scheduler.tick(datetime(2024, 1, 2, 6, 0))

    assert result.csv_backup is True
    assert chores.write_daily_csv_backup.call_args.kwargs["now"].date() == date(2024, 1, 2)
    chores.mark_csv_backup_written.assert_called_once_with(context, date(2024, 1, 2))

    chores.get_last_csv_backup_date.return_value = date(2024, 1, 2)
    assert scheduler.tick(datetime(2024, 1, 2, 12, 0)).csv_backup is False
    chores.write_daily_csv_backup.assert_called_once()


def test_failed_csv_backup_is_retried_next_tick(context, chores):
    chores.write_daily_csv_backup.side_effect = reporting.ReportDeliveryError("disk full")
    scheduler = LedgerScheduler(context, send_reports=False)

    result = scheduler.tick(datetime(2024, 1, 2, 6, 0))

    assert result.csv_backup is False
    chores.mark_csv_backup_written.assert_not_called()
    assert scheduler.csv_backup_due(datetime(2024, 1, 2, 7, 0)) is True


def test_csv_backup_disabled_in_settings(context, chores):
    context = replace(context, settings=replace(context.settings, daily_csv_backup=False))
    scheduler = LedgerScheduler(context, send_reports=False)

    assert scheduler.tick(datetime(2024, 1, 2, 6, 0)).csv_backup is False
    chores.write_daily_csv_backup.assert_not_called()
