"""Per-session orchestration: which remote fetches run for the current filters."""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import date
from functools import partial
from typing import List, Optional

import pandas as pd

from .auth import AuthSession
from .backend import OrdersBackend
from .charts import (
    BarMonth,
    TrendSeries,
    bar_y_max,
    build_bar_data,
    build_trend_series,
    chart_options,
    chart_rows_from_orders,
    empty_chart_rows,
    filter_chart_rows,
    trend_y_max,
)
from .fetchers import (
    FAILED,
    READY,
    AvailablePeriods,
    RemoteResource,
    dashboard_frame,
    fetch_orders_for_years,
    load_available_periods,
    load_chart_aggregate,
    load_dashboard_aggregate,
    load_kpis,
    load_order_kpis,
    load_order_statuses,
    load_profile,
    orders_frame,
)
from .kpis import NO_DELTAS, KpiDeltas, Kpis, is_earliest_period, kpi_deltas
from .periods import Period, previous_period
from .selection import BAR, SelectionState
from .shops import Profile, ShopPreferenceStore
from .statuses import OrderStatusMap

logger = logging.getLogger(__name__)


@dataclass
class KpiView:
    period: Optional[Period] = None
    previous: Optional[Period] = None
    current: Optional[Kpis] = None
    deltas: KpiDeltas = NO_DELTAS
    earliest: bool = True


@dataclass
class ChartView:
    mode: str = BAR
    years: List[int] = field(default_factory=list)
    bar_data: List[BarMonth] = field(default_factory=list)
    trend_series: List[TrendSeries] = field(default_factory=list)
    y_max: float = 0

    @property
    def empty(self) -> bool:
        return self.y_max == 0


class DashboardSession:
    """State and fetches behind one signed-in dashboard tab."""

    def __init__(self, backend: OrdersBackend, executor: Executor, prefs: ShopPreferenceStore, data_source: str = "aggregate"):
        self.backend = backend
        self.executor = executor
        self.prefs = prefs
        self.data_source = data_source
        self.auth = AuthSession(backend)
        self.selection = SelectionState()

        def resource(loader, empty=lambda: None, name=None):
            return RemoteResource(partial(loader, backend), executor, empty=empty, name=name)

        self.profile = resource(load_profile, name="profile")
        self.statuses = resource(load_order_statuses, empty=OrderStatusMap, name="order_statuses")
        self.periods = resource(load_available_periods, empty=AvailablePeriods, name="available_periods")
        kpi_loader = load_order_kpis if data_source == "orders" else load_kpis
        self.kpis = resource(kpi_loader, name="kpis")
        self.previous_kpis = resource(kpi_loader, name="previous_kpis")
        self.breakdown = resource(load_dashboard_aggregate, empty=lambda: dashboard_frame([]), name="dashboard_aggregate")
        self.chart_rows = resource(load_chart_aggregate, empty=empty_chart_rows, name="chart_aggregate")
        self.chart_orders = resource(fetch_orders_for_years, empty=lambda: orders_frame([]), name="chart_orders")

    @property
    def uses_orders(self) -> bool:
        return self.data_source == "orders"

    def resources(self) -> List[RemoteResource]:
        return [
            self.profile,
            self.statuses,
            self.periods,
            self.kpis,
            self.previous_kpis,
            self.breakdown,
            self.chart_rows,
            self.chart_orders,
        ]

    def errors(self) -> List[str]:
        seen = []
        for r in self.resources():
            if r.status == FAILED and r.error and r.error not in seen:
                seen.append(r.error)
        return seen

    # ---------------- auth / profile ----------------
    def sign_out(self) -> None:
        self.auth.sign_out()
        for r in self.resources():
            r.reset()
        self.selection = SelectionState()

    def sync_profile(self) -> Optional[Profile]:
        uid = self.auth.user_id
        self.profile.request((uid,) if uid else None).wait()
        profile: Optional[Profile] = self.profile.data
        if profile is None or not uid:
            self.selection.select_shop(None)
            return profile
        if self.selection.shop not in profile.enabled_shops:
            self.selection.select_shop(self.prefs.restore(uid, profile.enabled_shops))
        return profile

    def choose_shop(self, shop: Optional[str]) -> None:
        if self.selection.select_shop(shop) and shop and self.auth.user_id:
            self.prefs.set(self.auth.user_id, shop)

    # ---------------- periods ----------------
    def sync_periods(self) -> AvailablePeriods:
        shop = self.selection.shop
        self.periods.request((shop,) if shop else None).wait()
        available: AvailablePeriods = self.periods.data
        sel = self.selection
        sel.period_year.options_loaded(available.years)
        year = sel.period_year.value
        months = [value for value, _ in available.months_for_year(year)] if year is not None else []
        sel.period_month.options_loaded(months)
        sel.chart_years.options_loaded(available.years)
        return available

    # ---------------- kpis ----------------
    def _status_map(self) -> OrderStatusMap:
        self.statuses.request(()).wait()
        return self.statuses.data

    def sync_kpis(self, today: date) -> KpiView:
        shop = self.selection.shop
        period = self.selection.period()
        earliest = is_earliest_period(period, self.periods.data.years)
        prev = None if earliest else previous_period(period, today)

        extra = (self._status_map(),) if self.uses_orders and period else ()
        self.kpis.request((shop, period.start, period.end) + extra if period else None)
        self.previous_kpis.request((shop, prev.start, prev.end) + extra if prev else None)
        self.breakdown.request((shop, period.start, period.end) if period else None)
        for r in (self.kpis, self.previous_kpis, self.breakdown):
            r.wait()

        current = self.kpis.data if self.kpis.status == READY else None
        previous = self.previous_kpis.data if self.previous_kpis.status == READY else None
        return KpiView(
            period=period,
            previous=prev,
            current=current,
            deltas=kpi_deltas(current, previous, earliest),
            earliest=earliest,
        )

    def breakdown_frame(self) -> pd.DataFrame:
        return self.breakdown.data

    # ---------------- chart ----------------
    def _chart_source_rows(self, shop: Optional[str], years: List[int]) -> pd.DataFrame:
        params = (shop, tuple(years)) if shop and years else None
        if self.uses_orders:
            statuses = self._status_map() if params else None
            self.chart_orders.request(params).wait()
            if self.chart_orders.status != READY:
                return empty_chart_rows()
            return chart_rows_from_orders(self.chart_orders.data, statuses.is_completed)
        self.chart_rows.request(params).wait()
        return self.chart_rows.data

    def sync_chart(self) -> ChartView:
        sel = self.selection
        years = sel.chart_year_list()
        rows = self._chart_source_rows(sel.shop, years)

        countries, sources = chart_options(filter_chart_rows(rows, years))
        sel.chart_countries.options_loaded(countries)
        sel.chart_sources.options_loaded(sources)

        explicit = sel.explicit_countries()
        by_source = filter_chart_rows(rows, years, sources=sel.chart_sources.selected)
        view = ChartView(mode=sel.chart_mode, years=years)
        if sel.chart_mode == BAR:
            view.bar_data = build_bar_data(by_source, years, explicit)
            view.y_max = bar_y_max(view.bar_data)
        else:
            view.trend_series = build_trend_series(filter_chart_rows(by_source, countries=explicit), years)
            view.y_max = trend_y_max(view.trend_series)
        return view
