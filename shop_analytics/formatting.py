from typing import Optional

import numpy as np

CURRENCY = "€"
MISSING = "–"


def _is_missing(x) -> bool:
    return x is None or (isinstance(x, float) and np.isnan(x))


def _it_separators(text: str) -> str:
    # 1,234.56 -> 1.234,56
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def fmt_euro(x: Optional[float]) -> str:
    if _is_missing(x):
        return MISSING
    return f"{_it_separators(f'{x:,.2f}')} {CURRENCY}"


def fmt_int(x: Optional[float]) -> str:
    if _is_missing(x):
        return MISSING
    return _it_separators(f"{int(x):,}")


def fmt_delta(x: Optional[float]) -> str:
    if _is_missing(x):
        return MISSING
    return _it_separators(f"{x:+.1f}") + "%"


def fmt_axis_euro(x: float) -> str:
    if x == 0:
        return f"{CURRENCY}0"
    if abs(x) < 1000:
        return f"{CURRENCY}{x:,.0f}"
    return f"{CURRENCY}{round(x / 1000)}k"
