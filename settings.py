from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DEVICE_ENV = "ARANET4_DEVICE"
_DB_PATH_ENV = "ARANET4_DB_PATH"
_HOST_ENV = "ARANET4_HOST"
_PORT_ENV = "ARANET4_PORT"
_CONNECT_TIMEOUT_ENV = "ARANET4_CONNECT_TIMEOUT"
_FETCH_TIMEOUT_ENV = "ARANET4_FETCH_TIMEOUT"
_RETRIES_ENV = "ARANET4_REFRESH_RETRIES"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    device_address: str
    db_path: Optional[str]
    host: str
    port: int
    connect_timeout: float
    fetch_timeout: float
    refresh_retries: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        device_address=_read_str_env(_DEVICE_ENV, "F5:6C:BE:D5:61:47"),
        db_path=_read_optional_env(_DB_PATH_ENV, "./aranet4.db"),
        host=_read_str_env(_HOST_ENV, "0.0.0.0"),
        port=_read_positive_int(_PORT_ENV, 8080),
        connect_timeout=_read_positive_float(_CONNECT_TIMEOUT_ENV, 30.0),
        fetch_timeout=_read_positive_float(_FETCH_TIMEOUT_ENV, 30.0),
        refresh_retries=_read_positive_int(_RETRIES_ENV, 3),
        log_level=_read_log_level("INFO"),
    )
