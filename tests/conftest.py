import re
from concurrent.futures import Future, ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from shop_analytics.backend import AuthError, BackendError


def like_to_regex(pattern):
    """ILIKE semantics: % and _ are wildcards unless backslash-escaped."""
    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "%":
            out.append(".*")
        elif c == "_":
            out.append(".")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


def order(day, shop="Alpha", status="Spedito", net=100.0, eur=None, customer=1, country="Italia", source="Web", oid=None):
    return {
        "id": oid,
        "data_ordine": day,
        "stato_ordine": status,
        "totale_tasse_escluse": net,
        "conversione_euro": net if eur is None else eur,
        "id_cliente": customer,
        "shop": shop,
        "stato": country,
        "gestione": source,
    }


class FakeBackend:
    """In-memory stand-in for OrdersBackend with the same method surface."""

    def __init__(self, periods=None, kpis=None, dashboard=None, chart=None, orders=None, profile=None, statuses=None, password="secret"):
        self.periods = periods or {}
        self.kpis = kpis or {}
        self.dashboard = dashboard or []
        self.chart = chart or {}
        self.orders = orders or []
        self.profile = profile
        self.statuses = statuses or []
        self.password = password
        self.fail = {}
        self.calls = []
        self.session = None
        self.auth_callbacks = []
        self.signed_out = False

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise BackendError(self.fail[name])

    def calls_to(self, name):
        return [c[1:] for c in self.calls if c[0] == name]

    def get_available_periods(self, shop):
        self._call("get_available_periods", shop)
        return [{"year": y, "month": m} for y, m in self.periods.get(shop, [])]

    def get_kpis_for_period(self, shop, start, end):
        self._call("get_kpis_for_period", shop, start, end)
        return self.kpis.get((shop, start, end))

    def get_dashboard_aggregate(self, shop, start, end):
        self._call("get_dashboard_aggregate", shop, start, end)
        return list(self.dashboard)

    def get_revenue_chart_aggregate(self, shop, years):
        self._call("get_revenue_chart_aggregate", shop, list(years))
        return [r for r in self.chart.get(shop, []) if r["year"] in years]

    def list_orders(self, shop_pattern, start, end, offset, page_size):
        self._call("list_orders", shop_pattern, start, end, offset, page_size)
        rx = like_to_regex(shop_pattern)
        rows = [
            r for r in self.orders
            if rx.match(r["shop"] or "") and start.isoformat() <= r["data_ordine"][:10] <= end.isoformat()
        ]
        return rows[offset:offset + page_size]

    def get_user_profile(self, user_id):
        self._call("get_user_profile", user_id)
        return self.profile

    def list_order_statuses(self):
        self._call("list_order_statuses")
        return list(self.statuses)

    def sign_in(self, email, password):
        self.calls.append(("sign_in", email))
        if password != self.password:
            raise AuthError("Invalid login credentials")
        user = SimpleNamespace(id="user-1", email=email)
        self.session = SimpleNamespace(user=user, access_token="token")
        return SimpleNamespace(user=user, session=self.session)

    def sign_out(self):
        self._call("sign_out")
        self.signed_out = True
        self.session = None

    def get_session(self):
        self._call("get_session")
        return self.session

    def on_auth_state_change(self, callback):
        self.auth_callbacks.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.auth_callbacks.remove(callback))

    def emit(self, event, session):
        for cb in list(self.auth_callbacks):
            cb(event, session)


class ManualExecutor:
    """Executor whose jobs run only when the test says so, in any order."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run(self, index):
        future, fn, args, kwargs = self.jobs[index]
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def manual_executor():
    return ManualExecutor()


STATUS_ROWS = [
    {"id": 1, "label_stati": "Concluso", "nomi_stati": ["Spedito", "Consegnato"]},
    {"id": 2, "label_stati": "Annullato", "nomi_stati": ["Annullato", "Rimborsato"]},
    {"id": 3, "label_stati": "In lavorazione", "nomi_stati": ["In attesa"]},
]


@pytest.fixture
def status_rows():
    return [dict(r) for r in STATUS_ROWS]
