"""Read-only aggregates over the manual count history."""

import calendar
from datetime import datetime, timedelta
from typing import Iterable

from .sebha_typing import CountStats, CounterCollection, HistoryEntry


def one_month_before(moment: datetime) -> datetime:
    """Same day-of-month one month earlier, clamped to the month's last day."""
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def daily_total(history: Iterable[HistoryEntry], now: datetime | None = None) -> int:
    now = now or datetime.now()
    return sum(e.delta for e in history if e.timestamp.date() == now.date())


def weekly_total(history: Iterable[HistoryEntry], now: datetime | None = None) -> int:
    now = now or datetime.now()
    since = now - timedelta(days=7)
    return sum(e.delta for e in history if e.timestamp >= since)


def monthly_total(history: Iterable[HistoryEntry], now: datetime | None = None) -> int:
    now = now or datetime.now()
    since = one_month_before(now)
    return sum(e.delta for e in history if e.timestamp >= since)


def summarize(
    collection: CounterCollection,
    history: list[HistoryEntry],
    now: datetime | None = None,
) -> CountStats:
    now = now or datetime.now()
    total = sum(c.count for c in collection.counters)
    return CountStats(
        today=daily_total(history, now),
        this_week=weekly_total(history, now),
        this_month=monthly_total(history, now),
        total=total,
        average_per_counter=total // max(len(collection), 1),
    )
