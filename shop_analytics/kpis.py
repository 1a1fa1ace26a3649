from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

import numpy as np
import pandas as pd

from .periods import Period


@dataclass(frozen=True)
class Kpis:
    revenue: float = 0.0
    order_count: int = 0
    avg_ticket: float = 0.0
    distinct_customers: int = 0


@dataclass(frozen=True)
class KpiDeltas:
    revenue: Optional[float] = None
    order_count: Optional[float] = None
    avg_ticket: Optional[float] = None
    distinct_customers: Optional[float] = None


NO_DELTAS = KpiDeltas()


def to_number(value: Any) -> float:
    """Coerce a remote numeric to float; None, junk and NaN become 0."""
    try:
        out = float(value)
    except (TypeError, ValueError):
        return 0.0
    if np.isnan(out) or np.isinf(out):
        return 0.0
    return out


def avg_ticket(revenue: float, order_count: int) -> float:
    return revenue / order_count if order_count > 0 else 0.0


def make_kpis(revenue: float, order_count: int, distinct_customers: int) -> Kpis:
    return Kpis(
        revenue=float(revenue),
        order_count=int(order_count),
        avg_ticket=float(avg_ticket(revenue, order_count)),
        distinct_customers=int(distinct_customers),
    )


def kpis_from_row(row: Optional[Dict[str, Any]]) -> Kpis:
    """KPIs from the get_kpis_periodo RPC row; a missing row means an empty period."""
    if not row:
        return Kpis()
    volume = int(to_number(row.get("volume_ordini")))
    revenue = to_number(row.get("fatturato"))
    customers = int(to_number(row.get("clienti_distinti")))
    return make_kpis(revenue, volume, customers)


def kpis_from_orders(orders: pd.DataFrame, is_completed: Callable[[Optional[str]], bool]) -> Kpis:
    """KPIs computed client side from raw orders, counting completed orders only."""
    if orders.empty:
        return Kpis()
    done = orders[orders["status"].map(is_completed)]
    revenue = pd.to_numeric(done["revenue_net"], errors="coerce").fillna(0).sum()
    customers = done["customer_id"].dropna().nunique()
    return make_kpis(float(revenue), len(done), int(customers))


def pct_delta(curr: Optional[float], prev: Optional[float]) -> Optional[float]:
    if curr is None or prev is None or prev == 0:
        return None
    if isinstance(prev, float) and np.isnan(prev):
        return None
    return (curr - prev) / prev * 100


def is_earliest_period(period: Optional[Period], available_years: Iterable[int]) -> bool:
    """True when nothing older than `period` can exist for the shop."""
    years = [int(y) for y in available_years]
    if period is None or not years:
        return True
    return period.year <= min(years)


def kpi_deltas(current: Optional[Kpis], previous: Optional[Kpis], earliest: bool) -> KpiDeltas:
    if earliest or current is None or previous is None:
        return NO_DELTAS
    return KpiDeltas(
        revenue=pct_delta(current.revenue, previous.revenue),
        order_count=pct_delta(current.order_count, previous.order_count),
        avg_ticket=pct_delta(current.avg_ticket, previous.avg_ticket),
        distinct_customers=pct_delta(current.distinct_customers, previous.distinct_customers),
    )
