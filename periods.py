import calendar
from dataclasses import dataclass, replace
from datetime import MAXYEAR, MINYEAR, date, timedelta
from enum import Enum
from typing import Optional


class FilterKind(str, Enum):
    month = "month"
    year = "year"
    preset = "preset"
    range = "range"
    all = "all"


class PresetKind(str, Enum):
    last_30_days = "30days"
    last_90_days = "90days"
    last_180_days = "180days"


PRESET_DAYS: dict[PresetKind, int] = {
    PresetKind.last_30_days: 30,
    PresetKind.last_90_days: 90,
    PresetKind.last_180_days: 180,
}


@dataclass(frozen=True)
class DateFilter:
    kind: FilterKind
    year: Optional[int] = None
    month: Optional[int] = None
    preset: Optional[PresetKind] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(frozen=True)
class DateRange:
    start: Optional[date]
    end: Optional[date]

    @property
    def bounded(self) -> bool:
        return self.start is not None and self.end is not None


UNBOUNDED = DateRange(None, None)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _valid_year(year: Optional[int]) -> bool:
    return year is not None and MINYEAR <= year <= MAXYEAR


def resolve_range(date_filter: DateFilter) -> DateRange:
    """Turn a filter into inclusive start/end dates.

    Month and year filters missing their year (or carrying an impossible
    year or month) fall back to an unbounded range instead of failing.
    Preset and range filters pass their stored bounds through untouched.
    """
    kind = date_filter.kind
    if kind == FilterKind.month:
        year, month = date_filter.year, date_filter.month
        if not _valid_year(year) or not month or not 1 <= month <= 12:
            return UNBOUNDED
        return DateRange(date(year, month, 1), month_end(year, month))
    if kind == FilterKind.year:
        if not _valid_year(date_filter.year):
            return UNBOUNDED
        return DateRange(date(date_filter.year, 1, 1), date(date_filter.year, 12, 31))
    if kind in (FilterKind.preset, FilterKind.range):
        return DateRange(date_filter.start_date, date_filter.end_date)
    return UNBOUNDED


def month_filter(year: int, month: int) -> DateFilter:
    return DateFilter(FilterKind.month, year=year, month=month)


def year_filter(year: int) -> DateFilter:
    return DateFilter(FilterKind.year, year=year)


def all_filter() -> DateFilter:
    return DateFilter(FilterKind.all)


def range_filter(start: date, end: date) -> DateFilter:
    if start > end:
        raise ValueError("Start date must be before end date")
    return DateFilter(FilterKind.range, start_date=start, end_date=end)


def preset_filter(preset: PresetKind, today: date) -> DateFilter:
    start = today - timedelta(days=PRESET_DAYS[preset])
    return DateFilter(FilterKind.preset, preset=preset, start_date=start, end_date=today)


def default_filter(kind: FilterKind, today: date) -> DateFilter:
    if kind == FilterKind.month:
        return month_filter(today.year, today.month)
    if kind == FilterKind.year:
        return year_filter(today.year)
    if kind == FilterKind.preset:
        return preset_filter(PresetKind.last_30_days, today)
    if kind == FilterKind.range:
        return range_filter(today - timedelta(days=30), today)
    return all_filter()


def shift_filter(date_filter: DateFilter, step: int) -> DateFilter:
    """Move a month or year filter by ``step`` months or years."""
    if date_filter.kind == FilterKind.month and date_filter.year and date_filter.month:
        total = date_filter.year * 12 + (date_filter.month - 1) + step
        return replace(date_filter, year=total // 12, month=total % 12 + 1)
    if date_filter.kind == FilterKind.year and date_filter.year:
        return replace(date_filter, year=date_filter.year + step)
    return date_filter


def describe_filter(date_filter: DateFilter) -> str:
    kind = date_filter.kind
    if kind == FilterKind.month:
        if not resolve_range(date_filter).bounded:
            return ""
        return f"{date_filter.year}-{date_filter.month:02d}"
    if kind == FilterKind.year:
        return str(date_filter.year) if resolve_range(date_filter).bounded else ""
    if kind == FilterKind.preset:
        if date_filter.preset is None:
            return ""
        return f"Last {PRESET_DAYS[date_filter.preset]} days"
    if kind == FilterKind.range:
        if date_filter.start_date and date_filter.end_date:
            start = date_filter.start_date.strftime("%Y.%m.%d")
            end = date_filter.end_date.strftime("%Y.%m.%d")
            return f"{start} ~ {end}"
        return ""
    return "All time"


def filter_from_params(
    kind: Optional[str],
    *,
    year: Optional[str] = None,
    month: Optional[str] = None,
    preset: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    step: Optional[str] = None,
    today: date,
) -> DateFilter:
    """Build a filter from query-string values.

    Values a kind needs but the caller left out come from ``default_filter``.
    ``step`` moves a month or year filter backwards or forwards.
    """
    kind = kind or FilterKind.month.value
    try:
        filter_kind = FilterKind(kind)
    except ValueError as exc:
        raise ValueError(f"Unknown filter '{kind}'") from exc

    default = default_filter(filter_kind, today)
    if filter_kind == FilterKind.month:
        date_filter = DateFilter(
            FilterKind.month,
            year=_int_or_none(year) or default.year,
            month=_int_or_none(month) or default.month,
        )
    elif filter_kind == FilterKind.year:
        date_filter = DateFilter(FilterKind.year, year=_int_or_none(year) or default.year)
    elif filter_kind == FilterKind.preset:
        if not preset:
            return default
        try:
            preset_kind = PresetKind(preset)
        except ValueError as exc:
            raise ValueError(f"Unknown preset '{preset}'") from exc
        return preset_filter(preset_kind, today)
    elif filter_kind == FilterKind.range:
        if not start and not end:
            return default
        if not start or not end:
            raise ValueError("Range filter requires start and end dates")
        return range_filter(date.fromisoformat(start), date.fromisoformat(end))
    else:
        return default

    if step:
        try:
            date_filter = shift_filter(date_filter, int(step))
        except ValueError as exc:
            raise ValueError(f"Invalid step '{step}'") from exc
    return date_filter


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None
