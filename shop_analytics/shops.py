from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "piano-selected-shop"


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards so the value matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def shop_pattern(shop: str) -> str:
    return "%" + escape_like(shop.strip()) + "%"


def normalize_shop(shop: Optional[str]) -> str:
    return str(shop).strip().lower() if shop is not None else ""


def shop_matches(row_shop: Optional[str], selected_shop: Optional[str]) -> bool:
    if row_shop is None or selected_shop is None:
        return False
    return normalize_shop(row_shop) == normalize_shop(selected_shop)


def filter_orders_by_shop(orders: pd.DataFrame, shop: Optional[str]) -> pd.DataFrame:
    if not shop:
        return orders
    if orders.empty or "shop" not in orders.columns:
        return orders.iloc[0:0]
    mask = orders["shop"].map(lambda s: shop_matches(s, shop) if isinstance(s, str) else False)
    return orders[mask].reset_index(drop=True)


@dataclass
class Profile:
    id: str
    enabled_shops: List[str] = field(default_factory=list)
    name: Optional[str] = None
    logo_url: Optional[str] = None

    @property
    def has_multiple_shops(self) -> bool:
        return len(self.enabled_shops) > 1

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> Optional["Profile"]:
        if not row:
            return None
        raw = row.get("shops_abilitati") or []
        if isinstance(raw, str):
            raw = [raw]
        shops = [s for s in raw if isinstance(s, str) and s.strip()]
        return cls(
            id=str(row.get("id") or ""),
            enabled_shops=shops,
            name=row.get("nome"),
            logo_url=row.get("logo_url"),
        )


def resolve_initial_shop(enabled_shops: Sequence[str], stored: Optional[str]) -> Optional[str]:
    if not enabled_shops:
        return None
    if stored in enabled_shops:
        return stored
    return enabled_shops[0]


class ShopPreferenceStore:
    """Remembers the last selected shop per user in a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"{STORAGE_KEY_PREFIX}-{user_id}"

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            state = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable shop preferences %s: %s", self.path, exc)
            return {}
        return state if isinstance(state, dict) else {}

    def get(self, user_id: str) -> Optional[str]:
        value = self._load().get(self.key_for(user_id))
        return value if isinstance(value, str) else None

    def set(self, user_id: str, shop: str) -> None:
        state = self._load()
        state[self.key_for(user_id)] = shop
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not save shop preference to %s: %s", self.path, exc)

    def restore(self, user_id: str, enabled_shops: Sequence[str]) -> Optional[str]:
        return resolve_initial_shop(enabled_shops, self.get(user_id))
