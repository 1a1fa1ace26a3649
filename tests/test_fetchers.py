import logging
from datetime import date

from conftest import FakeBackend, order
from shop_analytics.backend import BackendError
from shop_analytics.fetchers import (
    FAILED,
    IDLE,
    LOADING,
    READY,
    AvailablePeriods,
    RemoteResource,
    chart_frame,
    dashboard_frame,
    fetch_orders_between,
    fetch_orders_for_years,
    load_order_kpis,
    orders_frame,
)
from shop_analytics.statuses import OrderStatusMap


def echo(key):
    return key


def test_starts_idle_with_empty_data(manual_executor):
    r = RemoteResource(echo, manual_executor, empty=list)
    assert (r.status, r.data, r.error) == (IDLE, [], None)


def test_ready_after_completion(manual_executor):
    r = RemoteResource(echo, manual_executor)
    r.request(("a",))
    assert r.status == LOADING
    manual_executor.run(0)
    r.poll()
    assert (r.status, r.data) == (READY, "a")


def test_late_result_of_superseded_request_is_discarded(manual_executor):
    r = RemoteResource(echo, manual_executor)
    r.request(("old",))
    r.request(("new",))
    manual_executor.run(1)
    r.poll()
    assert r.data == "new"
    manual_executor.run(0)
    r.poll()
    assert (r.status, r.data) == (READY, "new")


def test_early_result_of_superseded_request_is_discarded(manual_executor):
    r = RemoteResource(echo, manual_executor)
    r.request(("old",))
    r.request(("new",))
    manual_executor.run(0)
    r.poll()
    assert r.status == LOADING
    assert r.data is None
    manual_executor.run(1)
    r.poll()
    assert r.data == "new"


def test_same_params_do_not_refetch(manual_executor):
    r = RemoteResource(echo, manual_executor)
    r.request(("a",))
    r.request(("a",))
    assert len(manual_executor.jobs) == 1
    manual_executor.run(0)
    r.poll()
    r.request(("a",))
    assert len(manual_executor.jobs) == 1


def test_failed_request_is_not_retried_with_same_params(manual_executor):
    def boom(key):
        raise BackendError("timeout")

    r = RemoteResource(boom, manual_executor)
    r.request(("a",))
    manual_executor.run(0)
    r.poll()
    assert r.status == FAILED
    r.request(("a",))
    assert len(manual_executor.jobs) == 1
    assert r.status == FAILED
    r.request(("b",))
    assert len(manual_executor.jobs) == 2
    assert r.status == LOADING


def test_none_params_reset_and_drop_in_flight(manual_executor):
    r = RemoteResource(echo, manual_executor, empty=list)
    r.request(("a",))
    r.request(None)
    assert (r.status, r.data) == (IDLE, [])
    manual_executor.run(0)
    r.poll()
    assert (r.status, r.data) == (IDLE, [])


def test_backend_error_marks_failed(manual_executor):
    def boom(key):
        raise BackendError("permission denied for table ordini")

    r = RemoteResource(boom, manual_executor, empty=list)
    r.request(("a",))
    manual_executor.run(0)
    r.poll()
    assert (r.status, r.error, r.data) == (FAILED, "permission denied for table ordini", [])


def test_unexpected_error_is_recorded_as_failure(manual_executor, caplog):
    def broken(key):
        raise ValueError("bad row")

    r = RemoteResource(broken, manual_executor, empty=list, name="broken")
    r.request(("a",))
    manual_executor.run(0)
    r.poll()
    assert (r.status, r.error, r.data) == (FAILED, "bad row", [])
    assert "broken: unexpected error" in caplog.text


def test_wait_on_thread_pool(executor):
    r = RemoteResource(lambda x, y: x + y, executor)
    r.request((1, 2)).wait(timeout=5)
    assert (r.status, r.data) == (READY, 3)


def test_wait_does_not_report_applied_result_as_stale(manual_executor, caplog):
    caplog.set_level(logging.DEBUG, logger="shop_analytics.fetchers")
    r = RemoteResource(echo, manual_executor)
    r.request(("a",))
    manual_executor.run(0)
    r.wait()
    r.poll()
    assert (r.status, r.data) == (READY, "a")
    assert "stale" not in caplog.text


def test_pagination_reads_until_short_page():
    backend = FakeBackend(orders=[order("2025-01-%02d" % (i % 28 + 1), oid=i) for i in range(25)])
    rows = fetch_orders_between(backend, "Alpha", date(2025, 1, 1), date(2025, 1, 31), page_size=10)
    assert len(rows) == 25
    assert [c[3] for c in backend.calls_to("list_orders")] == [0, 10, 20]


def test_pagination_with_exact_multiple_reads_one_empty_page():
    backend = FakeBackend(orders=[order("2025-01-02", oid=i) for i in range(20)])
    rows = fetch_orders_between(backend, "Alpha", date(2025, 1, 1), date(2025, 1, 31), page_size=10)
    assert len(rows) == 20
    assert len(backend.calls_to("list_orders")) == 3


def test_orders_for_years_merge_and_exact_shop():
    backend = FakeBackend(
        orders=[
            order("2024-05-01", shop="My_Shop", oid=1),
            order("2025-02-01", shop=" my_shop ", oid=2),
            order("2025-02-01", shop="My_Shop Outlet", oid=3),
            order("2025-02-01", shop="MyXShop", oid=4),
            order("2023-02-01", shop="My_Shop", oid=5),
        ]
    )
    df = fetch_orders_for_years(backend, "My_Shop", [2025, 2024], page_size=2)
    assert sorted(df["id"].tolist()) == [1, 2]
    patterns = {c[0] for c in backend.calls_to("list_orders")}
    assert patterns == {"%My\\_Shop%"}


def test_orders_for_no_years():
    assert fetch_orders_for_years(FakeBackend(), "Alpha", []).empty


def test_load_order_kpis(status_rows):
    backend = FakeBackend(
        orders=[
            order("2025-03-01", net=100, customer=1, oid=1),
            order("2025-03-02", net=50, customer=2, oid=2),
            order("2025-03-03", net=70, customer=2, status="Annullato", oid=3),
            order("2025-04-01", net=999, customer=3, oid=4),
        ]
    )
    k = load_order_kpis(backend, "Alpha", date(2025, 3, 1), date(2025, 3, 31), OrderStatusMap.from_rows(status_rows))
    assert (k.order_count, k.revenue, k.distinct_customers) == (2, 150.0, 2)


def test_orders_frame_coerces_types():
    df = orders_frame([order("2025-03-01", net="12.5"), order("not a date", net=None)])
    assert df["revenue_net"].tolist() == [12.5, 0.0]
    assert df["order_date"].isna().tolist() == [False, True]
    assert list(orders_frame([]).columns) == ["id", "order_date", "status", "revenue_net", "revenue_eur", "customer_id", "shop", "country", "source"]


def test_dashboard_frame_sorted_by_revenue():
    df = dashboard_frame(
        [
            {"paese": "Italia", "sorgente": "Web", "fatturato": "10", "ordini": 1, "top_meteo": "Sole"},
            {"paese": None, "sorgente": "Amazon", "fatturato": 30, "ordini": None},
        ]
    )
    assert df["country"].tolist() == ["N/D", "Italia"]
    assert df["orders"].tolist() == [0, 1]


def test_chart_frame_drops_invalid_months():
    df = chart_frame(
        [
            {"year": 2025, "month": 1, "paese": "Italia", "sorgente": "Web", "fatturato": 5},
            {"year": 2025, "month": 13, "paese": "Italia", "sorgente": "Web", "fatturato": 5},
            {"year": "2025", "month": "2", "paese": "Italia", "sorgente": None, "fatturato": "7.5"},
        ]
    )
    assert df["month"].tolist() == [1, 2]
    assert df["source"].tolist() == ["Web", "N/D"]
    assert df["revenue"].sum() == 12.5


def test_available_periods():
    periods = AvailablePeriods.from_rows(
        [{"year": 2024, "month": 3}, {"year": 2025, "month": 1}, {"year": "2024", "month": "11"}, {"year": None, "month": 1}]
    )
    assert periods.years == [2025, 2024]
    assert periods.months_for_year(2024) == [("03", "Marzo"), ("11", "Novembre")]
    assert periods.months_for_year(2023) == []


def test_substring_match_is_refined_to_exact_shop():
    backend = FakeBackend(
        orders=[
            order("2025-05-01", shop=" myshop", oid=1),
            order("2025-05-01", shop="MyShop2", oid=2),
        ]
    )
    df = fetch_orders_for_years(backend, "MyShop ", [2025])
    assert df["id"].tolist() == [1]
