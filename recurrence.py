import calendar
from datetime import MAXYEAR, date, datetime
from typing import Iterator, Optional, Sequence
from zoneinfo import ZoneInfo

from config import get_settings
from ledger import LedgerEntry
from models import RecurringRule


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def occurrence_in_month(day_of_month: int, year: int, month: int) -> date:
    """Date a nominal day-of-month lands on, snapped to the month's last day."""
    return date(year, month, min(day_of_month, days_in_month(year, month)))


def iter_month_starts(start: date, end: date) -> Iterator[date]:
    current = start.replace(day=1)
    while current <= end:
        yield current
        if current.month == 12 and current.year == MAXYEAR:
            return
        if current.month == 12:
            current = date(current.year + 1, 1, 1)
        else:
            current = date(current.year, current.month + 1, 1)


def materialize_recurring(
    rules: Sequence[RecurringRule],
    start: Optional[date],
    end: Optional[date],
    today: Optional[date] = None,
) -> list[LedgerEntry]:
    """Expand active monthly rules into dated ledger entries.

    Without both bounds only the occurrence in today's month is produced;
    an open-ended view never grows past one entry per rule.
    """
    active = [rule for rule in rules if rule.is_active]
    if not active:
        return []

    if start is None or end is None:
        today = today or local_today()
        return [
            LedgerEntry.from_rule(
                rule, occurrence_in_month(rule.day_of_month, today.year, today.month)
            )
            for rule in active
        ]

    entries: list[LedgerEntry] = []
    for month_start in iter_month_starts(start, end):
        for rule in active:
            on_date = occurrence_in_month(
                rule.day_of_month, month_start.year, month_start.month
            )
            if start <= on_date <= end:
                entries.append(LedgerEntry.from_rule(rule, on_date))
    return entries
