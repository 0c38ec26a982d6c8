"""Daily item counters and their two reset rules.

The counters are a statistic only: resetting them never touches balances.
``check_daily_reset`` starts a fresh day whenever the observed date differs
from the stored one. The hour-gated reset zeroes lunch, rolls and coffee once
the configured local hour has been reached, tracked by a separate
``LastStatsReset`` marker. Purging same-day ledger entries is a separate,
opt-in step (:func:`purge_same_day_entries`).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, tzinfo
from typing import Iterable, List, Optional, Sequence

from . import log
from .constants import DailyCounter, PURGEABLE_PRODUCT_NAMES
from .data_manager import DailyStatsRow, TransactionRow


_FIELD_BY_COUNTER = {
    DailyCounter.LUNCH: "lunch",
    DailyCounter.ROLLS: "rolls",
    DailyCounter.EGGS: "eggs",
    DailyCounter.COFFEE: "coffee",
}

HOUR_GATED_COUNTERS = (DailyCounter.LUNCH, DailyCounter.ROLLS, DailyCounter.COFFEE)


def classify_product(product_name: str) -> Optional[DailyCounter]:
    """Map a product name onto at most one daily counter.

    Checked in priority order: lunch, rolls, eggs, coffee.
    """

    name = product_name.strip().casefold()
    if name == "mittagessen":
        return DailyCounter.LUNCH
    if "brötchen" in name:
        return DailyCounter.ROLLS
    if name == "ei" or "eier" in name:
        return DailyCounter.EGGS
    if "kaffee" in name:
        return DailyCounter.COFFEE
    return None


def increment_daily_counter(stats: DailyStatsRow, product_name: str, quantity: int) -> DailyStatsRow:
    """Add ``quantity`` to the counter matching ``product_name``.

    Names matching no counter return ``stats`` unchanged. Negative quantities
    (corrections) lower the counter.
    """

    counter = classify_product(product_name)
    if counter is None:
        return stats
    attr = _FIELD_BY_COUNTER[counter]
    return replace(stats, **{attr: getattr(stats, attr) + quantity})


def record_lunch_employee(stats: DailyStatsRow, employee_name: str) -> DailyStatsRow:
    """Add a name to today's lunch list once."""

    if employee_name in stats.lunch_employees:
        return stats
    return replace(stats, lunch_employees=stats.lunch_employees + (employee_name,))


def check_daily_reset(stats: DailyStatsRow, today: date) -> tuple[DailyStatsRow, bool]:
    """Start a fresh day if ``today`` differs from the stored date.

    Returns:
        tuple[DailyStatsRow, bool]: The (possibly new) stats and whether a
            reset happened. The same-day call is a no-op.
    """

    if stats.stats_date == today:
        return stats, False
    log.info("Daily counters reset for %s (previous date %s)", today, stats.stats_date)
    return DailyStatsRow(stats_date=today), True


def is_hour_gated_reset_due(now: datetime, last_reset: Optional[date], reset_hour: int) -> bool:
    """True once ``now`` reached ``reset_hour`` and no reset ran today."""

    return now.hour >= reset_hour and last_reset != now.date()


def apply_hour_gated_reset(stats: DailyStatsRow) -> DailyStatsRow:
    """Zero the lunch, rolls and coffee counters; eggs stay untouched."""

    return replace(stats, **{_FIELD_BY_COUNTER[counter]: 0 for counter in HOUR_GATED_COUNTERS})


def entry_local_date(entry: TransactionRow, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Calendar date of an entry in ``tz`` (local time when ``None``)."""

    if not entry.timestamp_iso:
        return None
    moment = datetime.fromisoformat(entry.timestamp_iso)
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz).date()


def purge_same_day_entries(
    transactions: Sequence[TransactionRow],
    today: date,
    *,
    product_names: Iterable[str] = PURGEABLE_PRODUCT_NAMES,
    tz: Optional[tzinfo] = None,
) -> List[TransactionRow]:
    """Drop today's entries for the given product names, keeping log order.

    This rewrites history and is only used when explicitly enabled.
    """

    targets = set(product_names)
    kept = [
        entry
        for entry in transactions
        if not (entry.product_name in targets and entry_local_date(entry, tz) == today)
    ]
    removed = len(transactions) - len(kept)
    if removed:
        log.warning("Purged %d same-day ledger entries for %s", removed, ", ".join(sorted(targets)))
    return kept
