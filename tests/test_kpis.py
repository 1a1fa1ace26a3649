from datetime import date

import pandas as pd
import pytest

from shop_analytics.kpis import (
    NO_DELTAS,
    Kpis,
    is_earliest_period,
    kpi_deltas,
    kpis_from_orders,
    kpis_from_row,
    make_kpis,
    pct_delta,
    to_number,
)
from shop_analytics.periods import DATE_RANGE, YEAR, Period, resolve_period
from shop_analytics.statuses import OrderStatusMap


def test_row_to_kpis():
    k = kpis_from_row({"volume_ordini": 4, "fatturato": "1000.5", "clienti_distinti": 3})
    assert k.order_count == 4
    assert k.revenue == pytest.approx(1000.5)
    assert k.avg_ticket == pytest.approx(250.125)
    assert k.distinct_customers == 3


def test_missing_row_is_empty_period():
    assert kpis_from_row(None) == Kpis()
    assert kpis_from_row({}) == Kpis()


def test_junk_numbers_become_zero():
    k = kpis_from_row({"volume_ordini": None, "fatturato": "n/a", "clienti_distinti": float("nan")})
    assert k == Kpis()
    assert to_number(float("inf")) == 0.0


def test_avg_ticket_with_no_orders_is_zero():
    assert make_kpis(500.0, 0, 0).avg_ticket == 0.0


@pytest.mark.parametrize(
    "curr, prev, expected",
    [
        (150, 100, 50.0),
        (50, 100, -50.0),
        (100, 100, 0.0),
        (10, 0, None),
        (10, None, None),
        (None, 10, None),
        (10, float("nan"), None),
    ],
)
def test_pct_delta(curr, prev, expected):
    if expected is None:
        assert pct_delta(curr, prev) is None
    else:
        assert pct_delta(curr, prev) == pytest.approx(expected)


@pytest.mark.parametrize(
    "year, earliest",
    [(2023, True), (2024, False), (2025, False), (2022, True)],
)
def test_earliest_period(year, earliest):
    assert is_earliest_period(resolve_period("A", YEAR, year), [2023, 2024, 2025]) is earliest


def test_earliest_without_years_or_period():
    assert is_earliest_period(resolve_period("A", YEAR, 2025), [])
    assert is_earliest_period(None, [2024])


def test_date_range_uses_start_year():
    p = Period(DATE_RANGE, date(2024, 12, 1), date(2025, 1, 31))
    assert not is_earliest_period(p, [2023, 2024])
    assert is_earliest_period(p, [2024, 2025])


def test_deltas_suppressed_for_earliest_period():
    curr = make_kpis(200.0, 2, 2)
    prev = make_kpis(100.0, 1, 1)
    assert kpi_deltas(curr, prev, earliest=True) == NO_DELTAS


def test_deltas_against_previous():
    curr = make_kpis(300.0, 3, 2)
    prev = make_kpis(200.0, 4, 0)
    d = kpi_deltas(curr, prev, earliest=False)
    assert d.revenue == pytest.approx(50.0)
    assert d.order_count == pytest.approx(-25.0)
    assert d.avg_ticket == pytest.approx(100.0)
    assert d.distinct_customers is None


def test_deltas_need_both_sides():
    assert kpi_deltas(make_kpis(1, 1, 1), None, earliest=False) == NO_DELTAS


def test_kpis_from_orders_counts_completed_only(status_rows):
    statuses = OrderStatusMap.from_rows(status_rows)
    orders = pd.DataFrame(
        {
            "status": ["Spedito", "consegnato ", "Annullato", None, "Spedito"],
            "revenue_net": [100.0, 50.0, 999.0, 10.0, 30.0],
            "customer_id": [1, 2, 3, 4, 1],
        }
    )
    k = kpis_from_orders(orders, statuses.is_completed)
    assert k.order_count == 3
    assert k.revenue == pytest.approx(180.0)
    assert k.distinct_customers == 2
    assert k.avg_ticket == pytest.approx(60.0)


def test_kpis_from_no_orders():
    assert kpis_from_orders(pd.DataFrame(), lambda s: True) == Kpis()
