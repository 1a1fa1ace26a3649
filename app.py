import io
import logging
from datetime import date

import streamlit as st

from shop_analytics.backend import OrdersBackend
from shop_analytics.charts import bar_figure, trend_figure
from shop_analytics.config import load_settings
from shop_analytics.dashboard import ChartView, DashboardSession, KpiView
from shop_analytics.fetchers import make_executor
from shop_analytics.formatting import CURRENCY, fmt_delta, fmt_euro, fmt_int
from shop_analytics.kpis import Kpis
from shop_analytics.periods import DATE_RANGE, MONTH, YEAR, month_label
from shop_analytics.selection import BAR, TREND
from shop_analytics.shops import ShopPreferenceStore

st.set_page_config(
    page_title="Analisi performance",
    page_icon="📊",
    layout="wide",
)

logger = logging.getLogger("shop_analytics.app")

PERIOD_MODE_LABELS = {YEAR: "Anno", MONTH: "Mese", DATE_RANGE: "Data"}
CHART_MODE_LABELS = {BAR: "Barre", TREND: "Trend"}


@st.cache_resource(show_spinner=False)
def get_settings():
    try:
        secrets = dict(st.secrets)
    except FileNotFoundError:
        secrets = {}
    settings = load_settings(secrets)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Settings loaded (data source: %s)", settings.data_source)
    return settings


@st.cache_resource(show_spinner=False)
def get_executor(workers: int):
    return make_executor(workers)


def get_dashboard(settings) -> DashboardSession:
    """One backend client and dashboard state per browser session."""
    if "dashboard" not in st.session_state:
        dash = DashboardSession(
            backend=OrdersBackend.from_settings(settings),
            executor=get_executor(settings.fetch_workers),
            prefs=ShopPreferenceStore(settings.prefs_path),
            data_source=settings.data_source,
        )
        dash.auth.start()
        st.session_state["dashboard"] = dash
    return st.session_state["dashboard"]


def login_page(dash: DashboardSession):
    st.title("Accedi alla dashboard")
    st.caption("Usa le credenziali del tuo account per vedere gli ordini dei tuoi shop.")
    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Accedi")
    if submitted:
        with st.spinner("Accesso in corso..."):
            error = dash.auth.sign_in(email, password)
        if error:
            st.error(error)
        else:
            st.rerun()
    st.stop()


def shop_selector(dash: DashboardSession, profile):
    sel = dash.selection
    if profile.name:
        st.sidebar.markdown(f"**{profile.name}**")
    if profile.logo_url:
        st.sidebar.image(profile.logo_url, width=120)
    if not profile.has_multiple_shops:
        st.sidebar.caption(f"Shop: {sel.shop or '—'}")
        return
    shops = profile.enabled_shops
    index = shops.index(sel.shop) if sel.shop in shops else 0
    shop = st.sidebar.selectbox("Shop", shops, index=index)
    if shop != sel.shop:
        dash.choose_shop(shop)
        st.rerun()


def period_filters(dash: DashboardSession):
    sel = dash.selection
    st.sidebar.header("Periodo")

    modes = list(PERIOD_MODE_LABELS)
    mode = st.sidebar.radio(
        "Modalità",
        modes,
        index=modes.index(sel.period_mode),
        format_func=PERIOD_MODE_LABELS.get,
        horizontal=True,
    )
    sel.set_period_mode(mode)

    if mode in (YEAR, MONTH):
        years = sel.period_year.options
        if not years:
            st.sidebar.info("Nessun anno disponibile per questo shop.")
            return
        year = st.sidebar.selectbox("Anno", years, index=years.index(sel.period_year.value))
        if year != sel.period_year.value:
            sel.period_year.set([year])
            dash.sync_periods()

    if mode == MONTH:
        months = sel.period_month.options
        if not months:
            st.sidebar.info("Nessun mese disponibile per l'anno scelto.")
            return
        month = st.sidebar.selectbox(
            "Mese",
            months,
            index=months.index(sel.period_month.value),
            format_func=month_label,
        )
        if month != sel.period_month.value:
            sel.period_month.set([month])

    if mode == DATE_RANGE:
        picked = st.sidebar.date_input("Intervallo", value=(sel.date_start or date.today().replace(day=1), sel.date_end or date.today()))
        if isinstance(picked, tuple) and len(picked) == 2:
            sel.set_date_range(picked[0], picked[1])
        else:
            sel.set_date_range(None, None)


def kpi_block(view: KpiView):
    cur = view.current or Kpis()
    d = view.deltas
    cards = [
        ("Fatturato", fmt_euro(cur.revenue), d.revenue),
        ("Volume ordini", fmt_int(cur.order_count), d.order_count),
        ("Ticket medio", fmt_euro(cur.avg_ticket), d.avg_ticket),
        ("Clienti ricorrenti", fmt_int(cur.distinct_customers), d.distinct_customers),
    ]
    cols = st.columns(len(cards))
    for col, (label, value, delta) in zip(cols, cards):
        col.metric(
            label,
            value,
            f"{fmt_delta(delta)} vs prec.",
            delta_color="normal" if delta is not None else "off",
        )
    if view.earliest:
        st.caption("Nessun periodo precedente disponibile per il confronto.")
    elif view.previous is not None:
        st.caption(f"Confronto con {view.previous.start:%d/%m/%Y} – {view.previous.end:%d/%m/%Y}.")


def chart_controls(dash: DashboardSession):
    sel = dash.selection
    modes = list(CHART_MODE_LABELS)
    c1, c2 = st.columns([1, 3])
    mode = c1.radio(
        "Vista",
        modes,
        index=modes.index(sel.chart_mode),
        format_func=CHART_MODE_LABELS.get,
        horizontal=True,
    )
    sel.set_chart_mode(mode)
    years = c2.multiselect("Anni a confronto", sel.chart_years.options, default=sel.chart_years.selected)
    if set(years) != set(sel.chart_years.selected):
        sel.chart_years.set(years)


def chart_filters(dash: DashboardSession):
    sel = dash.selection
    c1, c2 = st.columns(2)
    countries = c1.multiselect("Paesi", sel.chart_countries.options, default=sel.chart_countries.selected)
    sources = c2.multiselect("Sorgenti", sel.chart_sources.options, default=sel.chart_sources.selected)
    changed = False
    if set(countries) != set(sel.chart_countries.selected):
        sel.chart_countries.set(countries)
        changed = True
    if set(sources) != set(sel.chart_sources.selected):
        sel.chart_sources.set(sources)
        changed = True
    if changed:
        st.rerun()


def render_chart(view: ChartView):
    if not view.years:
        st.info("Seleziona almeno un anno per vedere il grafico.")
        return
    if view.mode == BAR:
        fig = bar_figure(view.bar_data)
    else:
        fig = trend_figure(view.trend_series, today=date.today())
    st.plotly_chart(fig, use_container_width=True)
    if view.empty:
        st.info("Nessun fatturato per i filtri correnti.")


# ---------------- UI ----------------
settings = get_settings()
if not settings.has_backend:
    st.error("Backend non configurato: imposta SUPABASE_URL e SUPABASE_ANON_KEY (secrets o .env).")
    st.stop()

dash = get_dashboard(settings)

if not dash.auth.signed_in:
    login_page(dash)

if st.sidebar.button("Esci"):
    dash.sign_out()
    st.rerun()

with st.spinner("Caricamento profilo..."):
    profile = dash.sync_profile()
if profile is None:
    for msg in dash.errors():
        st.error(msg)
    st.warning("Profilo non trovato: nessuno shop abilitato per questo utente.")
    st.stop()
if not profile.enabled_shops:
    st.warning("Nessuno shop abilitato per questo utente.")
    st.stop()

shop_selector(dash, profile)

with st.spinner("Caricamento periodi..."):
    dash.sync_periods()
period_filters(dash)

st.title("Analisi performance")
st.caption(f"Shop selezionato: {dash.selection.shop or '—'}")

with st.spinner("Caricamento KPI..."):
    kpi_view = dash.sync_kpis(date.today())

st.markdown("### KPI del periodo")
if kpi_view.period is None:
    st.info("Seleziona un periodo valido per vedere i KPI.")
kpi_block(kpi_view)

st.divider()

st.markdown("## Andamento fatturato")
st.caption("Confronto anni e nazioni")
chart_controls(dash)
with st.spinner("Caricamento grafico..."):
    chart_view = dash.sync_chart()
chart_filters(dash)
render_chart(chart_view)

for msg in dash.errors():
    st.error(msg)

st.divider()

# ---------------- Breakdown table + export ----------------
st.markdown("## Dettaglio per paese e sorgente")
breakdown = dash.breakdown_frame()
if breakdown.empty:
    st.info("Nessun dato per il periodo selezionato.")
else:
    st.dataframe(
        breakdown.rename(
            columns={
                "country": "Paese",
                "source": "Sorgente",
                "revenue": "Fatturato",
                "orders": "Ordini",
                "top_weather": "Meteo prevalente",
            }
        ),
        use_container_width=True,
        hide_index=True,
        column_config={
            "Fatturato": st.column_config.NumberColumn(format=f"%.2f {CURRENCY}"),
            "Ordini": st.column_config.NumberColumn(format="%d"),
        },
    )

    buf = io.StringIO()
    breakdown.to_csv(buf, index=False)
    st.download_button(
        "Scarica il dettaglio in CSV",
        data=buf.getvalue(),
        file_name=f"dettaglio_{dash.selection.shop or 'shop'}.csv",
        mime="text/csv",
    )
