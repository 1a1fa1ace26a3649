from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

YEAR = "year"
MONTH = "month"
DATE_RANGE = "date"
PERIOD_MODES = (YEAR, MONTH, DATE_RANGE)

MONTH_LABELS = [
    ("01", "Gennaio"), ("02", "Febbraio"), ("03", "Marzo"),
    ("04", "Aprile"), ("05", "Maggio"), ("06", "Giugno"),
    ("07", "Luglio"), ("08", "Agosto"), ("09", "Settembre"),
    ("10", "Ottobre"), ("11", "Novembre"), ("12", "Dicembre"),
]


@dataclass(frozen=True)
class Period:
    """Closed date interval [start, end]; callers keep end >= start."""

    mode: str
    start: date
    end: date

    @property
    def year(self) -> int:
        return self.start.year


def _parse_year(value: Union[str, int, None]) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _parse_month(value: Union[str, int, None]) -> Optional[int]:
    m = _parse_year(value)
    if m is None or not 1 <= m <= 12:
        return None
    return m


def last_day_of_month(year: int, month: Union[str, int]) -> date:
    m = int(month)
    return date(int(year), m, calendar.monthrange(int(year), m)[1])


def shift_years(d: date, years: int) -> date:
    # Feb 29 lands on Feb 28 in non-leap years
    target = d.year + years
    day = min(d.day, calendar.monthrange(target, d.month)[1])
    return date(target, d.month, day)


def resolve_period(
    shop: Optional[str],
    mode: str,
    year: Union[str, int, None],
    month: Union[str, int, None] = None,
    date_start: Optional[date] = None,
    date_end: Optional[date] = None,
) -> Optional[Period]:
    """Turn the period filters into a closed interval, or None when nothing can be fetched."""
    if not shop or not str(shop).strip():
        return None

    if mode == YEAR:
        y = _parse_year(year)
        if y is None:
            return None
        return Period(YEAR, date(y, 1, 1), date(y, 12, 31))

    if mode == MONTH:
        y = _parse_year(year)
        m = _parse_month(month)
        if y is None or m is None:
            return None
        return Period(MONTH, date(y, m, 1), last_day_of_month(y, m))

    if mode == DATE_RANGE:
        if date_start is None or date_end is None:
            return None
        return Period(DATE_RANGE, date_start, date_end)

    return None


def is_in_progress(period: Period, today: date) -> bool:
    if period.mode == YEAR:
        return period.start.year == today.year
    if period.mode == MONTH:
        return (period.start.year, period.start.month) == (today.year, today.month)
    return period.start <= today <= period.end


def previous_period(period: Optional[Period], today: date) -> Optional[Period]:
    """Same span one year earlier; an in-progress period compares up to the same day last year."""
    if period is None:
        return None
    prev_start = shift_years(period.start, -1)
    prev_end = shift_years(period.end, -1)
    if is_in_progress(period, today):
        prev_end = min(prev_end, shift_years(today, -1))
    return Period(period.mode, prev_start, prev_end)


def month_label(month: Union[str, int]) -> str:
    m = _parse_month(month)
    if m is None:
        return str(month)
    return MONTH_LABELS[m - 1][1]
