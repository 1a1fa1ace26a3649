from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PREFS_PATH = Path.home() / ".shop_analytics" / "selected_shop.json"
DATA_SOURCES = ("aggregate", "orders")


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_anon_key: str
    prefs_path: Path = DEFAULT_PREFS_PATH
    fetch_workers: int = 4
    log_level: str = "INFO"
    data_source: str = "aggregate"

    @property
    def has_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


def _int_or_default(value: Optional[str], default: int) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def load_settings(overrides: Optional[Mapping[str, object]] = None, env_file: Optional[Path] = None) -> Settings:
    """Read settings from the environment (and .env), with `overrides` winning.

    `overrides` is typically `st.secrets`, so keys match the environment names.
    """
    load_dotenv(dotenv_path=env_file, override=False)
    overrides = overrides or {}

    def get(key: str, default: str = "") -> str:
        if key in overrides and overrides[key] is not None:
            return str(overrides[key]).strip()
        return os.getenv(key, default).strip()

    data_source = get("DATA_SOURCE", "aggregate").lower()
    if data_source not in DATA_SOURCES:
        logger.warning("Unknown DATA_SOURCE %r, using 'aggregate'", data_source)
        data_source = "aggregate"

    prefs = get("SHOP_PREFS_PATH")
    settings = Settings(
        supabase_url=get("SUPABASE_URL").rstrip("/"),
        supabase_anon_key=get("SUPABASE_ANON_KEY"),
        prefs_path=Path(prefs).expanduser() if prefs else DEFAULT_PREFS_PATH,
        fetch_workers=_int_or_default(get("FETCH_WORKERS", "4"), 4),
        log_level=get("LOG_LEVEL", "INFO").upper() or "INFO",
        data_source=data_source,
    )
    if not settings.has_backend:
        logger.warning("SUPABASE_URL or SUPABASE_ANON_KEY is not set; remote calls will fail")
    return settings
