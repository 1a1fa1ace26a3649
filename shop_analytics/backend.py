"""Remote data contract for the dashboard, backed by a Supabase project.

Aggregation, date filtering and row-level security all happen server side
(RPC functions and RLS policies). This module only shapes the requests and
turns failures into `BackendError` / `AuthError`.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from supabase import Client, create_client

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, data_ordine, stato_ordine, conversione_euro, totale_tasse_escluse, "
    "id_cliente, shop, stato, gestione"
)
PROFILE_COLUMNS = "id, shops_abilitati, nome, logo_url"
STATUS_COLUMNS = "id, label_stati, nomi_stati"


class BackendError(Exception):
    """A remote call failed (network, PostgREST or RPC error)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(BackendError):
    """Sign-in was rejected."""


def _message(exc: Exception) -> str:
    msg = getattr(exc, "message", None)
    return str(msg) if msg else str(exc) or exc.__class__.__name__


def _data(response: Any) -> Any:
    # maybe_single() returns None instead of a response on some client versions
    if response is None:
        return None
    return getattr(response, "data", None)


class OrdersBackend:
    """Typed wrapper around one explicitly constructed Supabase client."""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "OrdersBackend":
        return cls(create_client(settings.supabase_url, settings.supabase_anon_key))

    def _rpc(self, name: str, params: Dict[str, Any]) -> Any:
        try:
            return _data(self.client.rpc(name, params).execute())
        except Exception as exc:
            logger.warning("RPC %s failed: %s", name, exc)
            raise BackendError(_message(exc)) from exc

    # ---------------- aggregates ----------------
    def get_available_periods(self, shop: str) -> List[Dict[str, Any]]:
        return self._rpc("get_available_periods", {"p_shop": shop}) or []

    def get_kpis_for_period(self, shop: str, start: date, end: date) -> Optional[Dict[str, Any]]:
        data = self._rpc(
            "get_kpis_periodo",
            {"p_shop": shop, "p_data_inizio": start.isoformat(), "p_data_fine": end.isoformat()},
        )
        if isinstance(data, list):
            return data[0] if data else None
        return data

    def get_dashboard_aggregate(self, shop: str, start: date, end: date) -> List[Dict[str, Any]]:
        return self._rpc(
            "get_dashboard_agg",
            {"p_shop": shop, "p_data_inizio": start.isoformat(), "p_data_fine": end.isoformat()},
        ) or []

    def get_revenue_chart_aggregate(self, shop: str, years: Sequence[int]) -> List[Dict[str, Any]]:
        return self._rpc("get_fatturato_chart_agg", {"p_shop": shop, "p_years": list(years)}) or []

    # ---------------- tables ----------------
    def list_orders(self, shop_pattern: str, start: date, end: date, offset: int, page_size: int) -> List[Dict[str, Any]]:
        try:
            response = (
                self.client.table("ordini")
                .select(ORDER_COLUMNS)
                .ilike("shop", shop_pattern)
                .gte("data_ordine", start.isoformat())
                .lte("data_ordine", end.isoformat())
                .range(offset, offset + page_size - 1)
                .execute()
            )
        except Exception as exc:
            logger.warning("Order page at offset %d failed: %s", offset, exc)
            raise BackendError(_message(exc)) from exc
        return _data(response) or []

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = (
                self.client.table("profili")
                .select(PROFILE_COLUMNS)
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as exc:
            raise BackendError(_message(exc)) from exc
        return _data(response)

    def list_order_statuses(self) -> List[Dict[str, Any]]:
        try:
            response = self.client.table("stati_ordini").select(STATUS_COLUMNS).execute()
        except Exception as exc:
            raise BackendError(_message(exc)) from exc
        return _data(response) or []

    # ---------------- auth ----------------
    def sign_in(self, email: str, password: str):
        try:
            return self.client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as exc:
            raise AuthError(_message(exc)) from exc

    def sign_out(self) -> None:
        try:
            self.client.auth.sign_out()
        except Exception as exc:
            raise BackendError(_message(exc)) from exc

    def get_session(self):
        try:
            return self.client.auth.get_session()
        except Exception as exc:
            raise BackendError(_message(exc)) from exc

    def on_auth_state_change(self, callback: Callable[[str, Any], None]):
        return self.client.auth.on_auth_state_change(callback)
