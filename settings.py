"""
Centralized configuration for the order import service.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


LOG_LEVEL: str = (os.getenv("LOG_LEVEL") or "INFO").upper()

# Upload limits
MAX_UPLOAD_MB: int = _env_int("MAX_UPLOAD_MB", 20)

# Caps for the per-order error list and the per-row warning list in import results
IMPORT_ERROR_LIMIT: int = _env_int("IMPORT_ERROR_LIMIT", 100)
IMPORT_WARNING_LIMIT: int = _env_int("IMPORT_WARNING_LIMIT", 100)

# Off by default: unresolved orders are reported, not assigned to a new shop
IMPORT_CREATE_MISSING_SHOPS: bool = _env_bool("IMPORT_CREATE_MISSING_SHOPS", False)

DEFAULT_SHOP_CURRENCY: str = os.getenv("DEFAULT_SHOP_CURRENCY") or "EUR"

INIT_DB_ON_STARTUP: bool = _env_bool("INIT_DB_ON_STARTUP", False)

CORS_ORIGINS: tuple[str, ...] = tuple(
    origin.strip()
    for origin in (os.getenv("CORS_ORIGINS") or "http://localhost:3000").split(",")
    if origin.strip()
)


def sanitize_shop_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw shop IDs (strip whitespace); empty values become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text
