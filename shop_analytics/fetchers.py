"""Request/response units for the remote aggregates.

Each `RemoteResource` owns one kind of fetch. Loaders run on a thread pool;
results travel back through an inbox and are applied on the caller's thread
by `poll()` / `wait()`, and only when they belong to the latest request.
"""

from __future__ import annotations

import logging
import queue
from concurrent import futures
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .backend import BackendError, OrdersBackend
from .kpis import Kpis, kpis_from_orders, kpis_from_row
from .periods import MONTH_LABELS
from .shops import Profile, filter_orders_by_shop, shop_pattern
from .statuses import OrderStatusMap

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

IDLE = "idle"
LOADING = "loading"
READY = "ready"
FAILED = "failed"

ORDER_FIELDS = {
    "id": "id",
    "data_ordine": "order_date",
    "stato_ordine": "status",
    "totale_tasse_escluse": "revenue_net",
    "conversione_euro": "revenue_eur",
    "id_cliente": "customer_id",
    "shop": "shop",
    "stato": "country",
    "gestione": "source",
}
DASHBOARD_FIELDS = {
    "paese": "country",
    "sorgente": "source",
    "fatturato": "revenue",
    "ordini": "orders",
    "top_meteo": "top_weather",
}
CHART_FIELDS = {
    "year": "year",
    "month": "month",
    "paese": "country",
    "sorgente": "source",
    "fatturato": "revenue",
}
UNKNOWN_LABEL = "N/D"


class RemoteResource:
    """One fetch slot: idle, loading, ready (data) or failed (error message)."""

    def __init__(self, loader: Callable[..., Any], executor: Executor, empty: Callable[[], Any] = lambda: None, name: Optional[str] = None):
        self.loader = loader
        self.executor = executor
        self.empty = empty
        self.name = name or getattr(loader, "__name__", "resource")
        self.generation = 0
        self.params: Optional[Tuple] = None
        self.status = IDLE
        self.data = empty()
        self.error: Optional[str] = None
        self._future: Optional[futures.Future] = None
        self._applied: Optional[futures.Future] = None
        self._inbox: "queue.SimpleQueue[Tuple[int, futures.Future]]" = queue.SimpleQueue()

    @property
    def loading(self) -> bool:
        return self.status == LOADING

    def reset(self) -> None:
        self.generation += 1
        self.params = None
        self.status = IDLE
        self.data = self.empty()
        self.error = None
        self._future = None

    def request(self, params: Optional[Tuple]) -> "RemoteResource":
        """Start a fetch for `params`; None means there is nothing to fetch."""
        if params is None:
            if self.status != IDLE:
                self.reset()
            return self
        if params == self.params and self.status in (LOADING, READY, FAILED):
            return self

        self.generation += 1
        generation = self.generation
        self.params = params
        self.status = LOADING
        self.error = None
        logger.debug("%s: fetching %r (generation %d)", self.name, params, generation)

        future = self.executor.submit(self.loader, *params)
        self._future = future
        future.add_done_callback(lambda f: self._inbox.put((generation, f)))
        return self

    def poll(self) -> "RemoteResource":
        while True:
            try:
                generation, future = self._inbox.get_nowait()
            except queue.Empty:
                return self
            self._settle(generation, future)

    def wait(self, timeout: Optional[float] = None) -> "RemoteResource":
        if self._future is not None:
            futures.wait([self._future], timeout=timeout)
        # the done callback may still be queuing the result
        if self._future is not None and self._future.done():
            self._settle(self.generation, self._future)
        return self.poll()

    def _settle(self, generation: int, future: futures.Future) -> None:
        if future is self._applied:
            return
        if generation != self.generation or future is not self._future:
            logger.debug("%s: discarding stale result (generation %d)", self.name, generation)
            return
        self._future = None
        self._applied = future
        try:
            result = future.result()
        except BackendError as exc:
            logger.warning("%s failed for %r: %s", self.name, self.params, exc.message)
            self.status = FAILED
            self.error = exc.message
            self.data = self.empty()
            return
        except Exception as exc:
            logger.exception("%s: unexpected error for %r", self.name, self.params)
            self.status = FAILED
            self.error = str(exc) or exc.__class__.__name__
            self.data = self.empty()
            return
        self.status = READY
        self.data = result


def make_executor(workers: int = 4) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch")


# ---------------- frames ----------------
def _frame(rows: Iterable[Dict[str, Any]], fields: Dict[str, str]) -> pd.DataFrame:
    df = pd.DataFrame(list(rows or []))
    for src in fields:
        if src not in df.columns:
            df[src] = pd.NA
    return df[list(fields)].rename(columns=fields)


def orders_frame(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    df = _frame(rows, ORDER_FIELDS)
    df["order_date"] = pd.to_datetime(df["order_date"], errors="coerce")
    for col in ("revenue_net", "revenue_eur"):
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0).astype(float)
    df["customer_id"] = pd.to_numeric(df["customer_id"], errors="coerce")
    return df


def dashboard_frame(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    df = _frame(rows, DASHBOARD_FIELDS)
    df["country"] = df["country"].fillna(UNKNOWN_LABEL).astype(str)
    df["source"] = df["source"].fillna(UNKNOWN_LABEL).astype(str)
    df["revenue"] = pd.to_numeric(df["revenue"], errors="coerce").fillna(0.0).astype(float)
    df["orders"] = pd.to_numeric(df["orders"], errors="coerce").fillna(0).astype(int)
    return df.sort_values("revenue", ascending=False).reset_index(drop=True)


def chart_frame(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    df = _frame(rows, CHART_FIELDS)
    for col in ("year", "month"):
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0).astype(int)
    df["country"] = df["country"].fillna(UNKNOWN_LABEL).astype(str)
    df["source"] = df["source"].fillna(UNKNOWN_LABEL).astype(str)
    df["revenue"] = pd.to_numeric(df["revenue"], errors="coerce").fillna(0.0).astype(float)
    return df[df["month"].between(1, 12)].reset_index(drop=True)


@dataclass
class AvailablePeriods:
    rows: List[Tuple[int, int]] = field(default_factory=list)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "AvailablePeriods":
        out = []
        for row in rows or []:
            try:
                out.append((int(row["year"]), int(row["month"])))
            except (KeyError, TypeError, ValueError):
                continue
        return cls(out)

    @property
    def years(self) -> List[int]:
        return sorted({y for y, _ in self.rows}, reverse=True)

    def months_for_year(self, year: int) -> List[Tuple[str, str]]:
        months = {m for y, m in self.rows if y == year}
        return [(value, label) for value, label in MONTH_LABELS if int(value) in months]


# ---------------- loaders ----------------
def load_available_periods(backend: OrdersBackend, shop: str) -> AvailablePeriods:
    return AvailablePeriods.from_rows(backend.get_available_periods(shop))


def load_kpis(backend: OrdersBackend, shop: str, start: date, end: date) -> Kpis:
    return kpis_from_row(backend.get_kpis_for_period(shop, start, end))


def load_dashboard_aggregate(backend: OrdersBackend, shop: str, start: date, end: date) -> pd.DataFrame:
    return dashboard_frame(backend.get_dashboard_aggregate(shop, start, end))


def load_chart_aggregate(backend: OrdersBackend, shop: str, years: Sequence[int]) -> pd.DataFrame:
    return chart_frame(backend.get_revenue_chart_aggregate(shop, list(years)))


def load_profile(backend: OrdersBackend, user_id: str) -> Optional[Profile]:
    return Profile.from_row(backend.get_user_profile(user_id))


def load_order_statuses(backend: OrdersBackend) -> OrderStatusMap:
    return OrderStatusMap.from_rows(backend.list_order_statuses())


def fetch_orders_between(backend: OrdersBackend, shop: str, start: date, end: date, page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    """Read every order page for [start, end]; a short page ends the scan."""
    pattern = shop_pattern(shop)
    rows: List[Dict[str, Any]] = []
    offset = 0
    while True:
        batch = backend.list_orders(pattern, start, end, offset, page_size)
        rows.extend(batch)
        if len(batch) < page_size:
            break
        offset += page_size
    logger.debug("Fetched %d orders for %s between %s and %s", len(rows), shop, start, end)
    return rows


def fetch_orders_for_year(backend: OrdersBackend, shop: str, year: int, page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    return fetch_orders_between(backend, shop, date(year, 1, 1), date(year, 12, 31), page_size)


def fetch_orders_for_years(backend: OrdersBackend, shop: str, years: Sequence[int], page_size: int = PAGE_SIZE) -> pd.DataFrame:
    """One paginated fetch per year, merged and narrowed to the exact shop."""
    years = list(years)
    if not years:
        return orders_frame([])
    with ThreadPoolExecutor(max_workers=min(len(years), 4)) as pool:
        chunks = list(pool.map(lambda y: fetch_orders_for_year(backend, shop, y, page_size), years))
    merged = [row for chunk in chunks for row in chunk]
    return filter_orders_by_shop(orders_frame(merged), shop)


def load_order_kpis(backend: OrdersBackend, shop: str, start: date, end: date, statuses: OrderStatusMap) -> Kpis:
    """KPIs computed from the raw orders of the period instead of the RPC."""
    orders = filter_orders_by_shop(orders_frame(fetch_orders_between(backend, shop, start, end)), shop)
    return kpis_from_orders(orders, statuses.is_completed)
