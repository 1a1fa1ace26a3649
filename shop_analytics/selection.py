"""Dashboard filter state.

Every filter dimension is a small state machine:

    UNINITIALIZED --options_loaded--> DEFAULTED --toggle/set--> USER_CONTROLLED
          ^                                                          |
          +------------------------ reset (shop change) -------------+

The first non-empty option set applies the default policy. Later option sets
only prune the current selection, so a user's choice is never overwritten by
a fresh default.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .periods import DATE_RANGE, MONTH, PERIOD_MODES, YEAR, Period, resolve_period

logger = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
DEFAULTED = "defaulted"
USER_CONTROLLED = "user_controlled"

BAR = "bar"
TREND = "trend"
CHART_MODES = (BAR, TREND)


def select_all(options: Sequence[Any]) -> List[Any]:
    return list(options)


def select_first(options: Sequence[Any]) -> List[Any]:
    return list(options[:1])


def select_last(options: Sequence[Any]) -> List[Any]:
    return list(options[-1:])


class FilterSelection:
    def __init__(self, default: Callable[[Sequence[Any]], List[Any]] = select_all, single: bool = False):
        self.default = default
        self.single = single
        self.state = UNINITIALIZED
        self.options: List[Any] = []
        self.selected: List[Any] = []

    def __repr__(self) -> str:
        return f"FilterSelection(state={self.state!r}, selected={self.selected!r})"

    @property
    def value(self) -> Optional[Any]:
        return self.selected[0] if self.selected else None

    @property
    def user_controlled(self) -> bool:
        return self.state == USER_CONTROLLED

    @property
    def all_selected(self) -> bool:
        return bool(self.options) and set(self.selected) == set(self.options)

    def _in_option_order(self, values: Iterable[Any]) -> List[Any]:
        wanted = set(values)
        return [o for o in self.options if o in wanted]

    def options_loaded(self, options: Iterable[Any]) -> List[Any]:
        self.options = list(dict.fromkeys(options))
        if self.state == UNINITIALIZED:
            if self.options:
                self.selected = self.default(self.options)
                self.state = DEFAULTED
            return self.selected

        kept = self._in_option_order(self.selected)
        if not kept:
            kept = self.default(self.options) if self.single else list(self.options)
        self.selected = kept
        return self.selected

    def toggle(self, value: Any) -> List[Any]:
        if self.single:
            return self.set([value])
        if value in self.selected:
            remaining = [v for v in self.selected if v != value]
        else:
            remaining = self.selected + [value]
        self.selected = self._in_option_order(remaining)
        self.state = USER_CONTROLLED
        return self.selected

    def set(self, values: Iterable[Any]) -> List[Any]:
        chosen = self._in_option_order(values)
        self.selected = chosen[:1] if self.single else chosen
        self.state = USER_CONTROLLED
        return self.selected

    def reset(self) -> None:
        self.state = UNINITIALIZED
        self.options = []
        self.selected = []


class SelectionState:
    """Everything the user picked on the dashboard, for one session."""

    def __init__(self):
        self.shop: Optional[str] = None
        self.period_mode = YEAR
        self.period_year = FilterSelection(select_first, single=True)
        self.period_month = FilterSelection(select_last, single=True)
        self.date_start: Optional[date] = None
        self.date_end: Optional[date] = None
        self.chart_mode = BAR
        self.chart_years = FilterSelection(select_first)
        self.chart_countries = FilterSelection(select_all)
        self.chart_sources = FilterSelection(select_all)

    def _filters(self) -> List[FilterSelection]:
        return [self.period_year, self.period_month, self.chart_years, self.chart_countries, self.chart_sources]

    def select_shop(self, shop: Optional[str]) -> bool:
        if shop == self.shop:
            return False
        logger.info("Shop changed from %r to %r, resetting filters", self.shop, shop)
        self.shop = shop
        for f in self._filters():
            f.reset()
        self.date_start = None
        self.date_end = None
        return True

    def set_period_mode(self, mode: str) -> None:
        if mode not in PERIOD_MODES:
            raise ValueError(f"Unknown period mode: {mode!r}")
        self.period_mode = mode

    def set_chart_mode(self, mode: str) -> None:
        if mode not in CHART_MODES:
            raise ValueError(f"Unknown chart mode: {mode!r}")
        self.chart_mode = mode

    def set_date_range(self, start: Optional[date], end: Optional[date]) -> None:
        self.date_start = start
        self.date_end = end

    def period(self) -> Optional[Period]:
        month = self.period_month.value if self.period_mode == MONTH else None
        year = self.period_year.value if self.period_mode != DATE_RANGE else None
        return resolve_period(self.shop, self.period_mode, year, month, self.date_start, self.date_end)

    def chart_year_list(self) -> List[int]:
        return sorted(self.chart_years.selected, reverse=True)

    def explicit_countries(self) -> Optional[List[str]]:
        """The user's country pick, or None when every country is in play."""
        c = self.chart_countries
        if c.user_controlled and c.selected and not c.all_selected:
            return list(c.selected)
        return None
