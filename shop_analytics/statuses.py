from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .kpis import to_number

COMPLETED_LABEL = "Concluso"


@dataclass(frozen=True)
class OrderStatus:
    id: int
    label: str
    names: tuple


class OrderStatusMap:
    """Maps raw order states (e.g. "Spedito") to their reporting label (e.g. "Concluso")."""

    def __init__(self, statuses: Iterable[OrderStatus] = ()):
        self.statuses: List[OrderStatus] = list(statuses)
        self._by_name: Dict[str, str] = {}
        for status in self.statuses:
            for name in status.names:
                # first row wins when a name is listed twice
                self._by_name.setdefault(name.strip().lower(), status.label)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "OrderStatusMap":
        statuses = []
        for row in rows or []:
            names = tuple(n for n in (row.get("nomi_stati") or []) if isinstance(n, str))
            statuses.append(OrderStatus(int(to_number(row.get("id"))), str(row.get("label_stati") or ""), names))
        return cls(statuses)

    def label_for(self, status: Optional[str]) -> Optional[str]:
        if not isinstance(status, str) or not status.strip():
            return None
        return self._by_name.get(status.strip().lower())

    def is_completed(self, status: Optional[str]) -> bool:
        return self.label_for(status) == COMPLETED_LABEL

    def __len__(self) -> int:
        return len(self.statuses)
