from __future__ import annotations

import math
import unicodedata
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from .fetchers import UNKNOWN_LABEL
from .formatting import fmt_axis_euro

MONTHS_SHORT = ["Gen", "Feb", "Mar", "Apr", "Mag", "Giu", "Lug", "Ago", "Set", "Ott", "Nov", "Dic"]
PALETTE = ["#0EA5E9", "#6366F1", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#EC4899", "#14B8A6"]
OTHER_KEY = "Other"
OTHER_COLOR = "#94A3B8"
MAX_STACKS = 6
GRID_STEPS = 4

CHART_COLUMNS = ["year", "month", "country", "source", "revenue"]


@dataclass(frozen=True)
class Stack:
    key: str
    value: float
    color: str


@dataclass(frozen=True)
class Bar:
    year: int
    stacks: Tuple[Stack, ...]

    @property
    def total(self) -> float:
        return float(sum(s.value for s in self.stacks))


@dataclass(frozen=True)
class BarMonth:
    month_index: int  # 0..11
    bars: Tuple[Bar, ...]


@dataclass(frozen=True)
class TrendSeries:
    label: str
    color: str
    values: Tuple[float, ...]


def label_sort_key(label: str) -> Tuple[str, str]:
    """Alphabetical key that ignores case and accents ("Élan" sorts with "elan")."""
    stripped = "".join(c for c in unicodedata.normalize("NFKD", label) if not unicodedata.combining(c))
    return stripped.casefold(), label


def palette_color(index: int) -> str:
    return PALETTE[index % len(PALETTE)]


def empty_chart_rows() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "year": pd.Series(dtype="int64"),
            "month": pd.Series(dtype="int64"),
            "country": pd.Series(dtype="object"),
            "source": pd.Series(dtype="object"),
            "revenue": pd.Series(dtype="float64"),
        }
    )


def filter_chart_rows(
    rows: pd.DataFrame,
    years: Optional[Iterable[int]] = None,
    countries: Optional[Iterable[str]] = None,
    sources: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """Narrow aggregate rows to the chart selection; an empty selection filters nothing."""
    df = rows
    if years is not None:
        df = df[df["year"].isin(list(years))]
    countries = list(countries or [])
    if countries:
        df = df[df["country"].isin(countries)]
    sources = list(sources or [])
    if sources:
        df = df[df["source"].isin(sources)]
    return df


def chart_options(rows: pd.DataFrame) -> Tuple[List[str], List[str]]:
    if rows.empty:
        return [], []
    countries = sorted(rows["country"].dropna().astype(str).unique().tolist(), key=label_sort_key)
    sources = sorted(rows["source"].dropna().astype(str).unique().tolist(), key=label_sort_key)
    return countries, sources


def chart_rows_from_orders(orders: pd.DataFrame, is_completed: Callable[[Optional[str]], bool]) -> pd.DataFrame:
    """Aggregate raw (completed) orders into year/month/country/source revenue rows."""
    if orders.empty:
        return empty_chart_rows()
    done = orders[orders["status"].map(is_completed) & orders["order_date"].notna()].copy()
    if done.empty:
        return empty_chart_rows()
    done["year"] = done["order_date"].dt.year.astype(int)
    done["month"] = done["order_date"].dt.month.astype(int)
    done["country"] = done["country"].fillna(UNKNOWN_LABEL).astype(str)
    done["source"] = done["source"].fillna(UNKNOWN_LABEL).astype(str)
    return (
        done.groupby(["year", "month", "country", "source"], as_index=False)["revenue_eur"]
        .sum()
        .rename(columns={"revenue_eur": "revenue"})[CHART_COLUMNS]
    )


def build_trend_series(rows: pd.DataFrame, years: Sequence[int]) -> List[TrendSeries]:
    """One 12-month revenue line per year, zero-filled."""
    series = []
    for i, year in enumerate(years):
        values = np.zeros(12)
        scope = rows[rows["year"] == year]
        if not scope.empty:
            monthly = scope.groupby("month")["revenue"].sum()
            for month, revenue in monthly.items():
                if 1 <= int(month) <= 12:
                    values[int(month) - 1] += float(revenue)
        series.append(TrendSeries(label=f"Year {year}", color=palette_color(i), values=tuple(float(v) for v in values)))
    return series


def _ranked_countries(df: pd.DataFrame) -> List[str]:
    totals = df.groupby("country")["revenue"].sum()
    return [k for k, _ in sorted(totals.items(), key=lambda kv: (-kv[1], label_sort_key(kv[0])))]


def build_bar_data(
    rows: pd.DataFrame,
    years: Sequence[int],
    explicit_countries: Optional[Iterable[str]] = None,
    max_stacks: int = MAX_STACKS,
) -> List[BarMonth]:
    """Stacked bars per month and year, one segment per country.

    With an explicit country selection every selected country gets its own
    segment and the rest is dropped. Otherwise the `max_stacks` biggest
    countries are kept and the remainder is summed into "Other".
    """
    years = list(years)
    df = rows[rows["year"].isin(years)]
    explicit = sorted(set(explicit_countries or []), key=label_sort_key)

    if explicit:
        df = df[df["country"].isin(explicit)].copy()
        ranked = _ranked_countries(df)
        ranked += [c for c in explicit if c not in ranked]
        df["key"] = df["country"]
        keys = explicit
    else:
        df = df.copy()
        ranked = _ranked_countries(df)
        top = ranked[:max_stacks]
        df["key"] = df["country"].where(df["country"].isin(top), OTHER_KEY)
        keys = list(top)
        if len(ranked) > max_stacks:
            keys.append(OTHER_KEY)
        ranked = top

    colors: Dict[str, str] = {k: palette_color(i) for i, k in enumerate(ranked)}
    colors[OTHER_KEY] = OTHER_COLOR
    ordered = sorted(keys, key=label_sort_key)

    sums: Dict[Tuple[int, int, str], float] = {}
    if not df.empty:
        grouped = df.groupby(["month", "year", "key"])["revenue"].sum()
        sums = {(int(m), int(y), str(k)): float(v) for (m, y, k), v in grouped.items()}

    out = []
    for month in range(1, 13):
        bars = tuple(
            Bar(year, tuple(Stack(k, sums.get((month, year, k), 0.0), colors[k]) for k in ordered))
            for year in years
        )
        out.append(BarMonth(month - 1, bars))
    return out


def nice_max(value: float) -> float:
    """Round up to 1, 2 or 5 times a power of ten (1234 -> 2000, 67 -> 100)."""
    if value is None or value <= 0 or not math.isfinite(value):
        return 0
    exp = math.floor(math.log10(value))
    base = 10 ** exp
    scaled = value / base
    if scaled <= 1:
        rounded = 1
    elif scaled <= 2:
        rounded = 2
    elif scaled <= 5:
        rounded = 5
    else:
        rounded = 10
    return rounded * base


def y_ticks(y_max: float, steps: int = GRID_STEPS) -> List[float]:
    if y_max == 0:
        return [0]
    return [y_max / steps * i for i in range(steps + 1)]


def bar_y_max(bar_data: Sequence[BarMonth]) -> float:
    return nice_max(max([0.0] + [b.total for m in bar_data for b in m.bars]))


def trend_y_max(series: Sequence[TrendSeries]) -> float:
    return nice_max(max([0.0] + [v for s in series for v in s.values]))


# ---------------- figures ----------------
def _apply_axis(fig: go.Figure, y_max: float, height: int) -> go.Figure:
    ticks = y_ticks(y_max)
    fig.update_yaxes(
        range=[0, y_max or 1],
        tickvals=ticks,
        ticktext=[fmt_axis_euro(t) for t in ticks],
        gridcolor="#EEF2F7",
        zeroline=True,
        zerolinecolor="#E2E8F0",
    )
    fig.update_layout(
        height=height,
        margin=dict(l=10, r=10, t=30, b=10),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="left", x=0),
        plot_bgcolor="white",
    )
    return fig


def bar_figure(bar_data: Sequence[BarMonth], height: int = 380) -> go.Figure:
    fig = go.Figure()
    if not bar_data or not bar_data[0].bars:
        return _apply_axis(fig, 0, height)

    x_months = [MONTHS_SHORT[m.month_index] for m in bar_data for _ in m.bars]
    x_years = [str(b.year) for m in bar_data for b in m.bars]
    first = bar_data[0].bars[0].stacks
    for pos, stack in enumerate(first):
        values = [b.stacks[pos].value for m in bar_data for b in m.bars]
        fig.add_trace(
            go.Bar(
                name=stack.key,
                x=[x_months, x_years],
                y=values,
                marker_color=stack.color,
                opacity=0.95,
                hovertemplate="%{x}<br>" + stack.key + ": €%{y:,.2f}<extra></extra>",
            )
        )
    fig.update_layout(barmode="stack")
    return _apply_axis(fig, bar_y_max(bar_data), height)


def trend_figure(series: Sequence[TrendSeries], today: Optional[date] = None, height: int = 380) -> go.Figure:
    fig = go.Figure()
    for s in series:
        fig.add_trace(
            go.Scatter(
                name=s.label,
                x=MONTHS_SHORT,
                y=list(s.values),
                mode="lines+markers",
                line=dict(color=s.color, width=3.2),
                hovertemplate="%{x}<br>" + s.label + ": €%{y:,.2f}<extra></extra>",
            )
        )
    today = today or date.today()
    # mark where the running year currently stands
    if any(str(today.year) in s.label for s in series):
        fig.add_vline(x=today.month - 1, line_dash="dash", line_color=OTHER_COLOR, line_width=1.5, opacity=0.6)
    return _apply_axis(fig, trend_y_max(series), height)
