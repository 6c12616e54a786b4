from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("ALR_DB_PATH", "alr.db")
    log_level: str = os.getenv("ALR_LOG_LEVEL", "INFO")

    # Platform API
    api_url: str = os.getenv("ALR_API_URL", "http://localhost:9022")
    api_token: str | None = os.getenv("ALR_API_TOKEN")
    verify_tls: bool = _env_bool("ALR_VERIFY_TLS", True)
    http_timeout_s: int = _env_int("ALR_HTTP_TIMEOUT_S", 30)

    # Reconciliation pacing
    default_timeout_s: int = _env_int("ALR_DEFAULT_TIMEOUT_S", 60)
    poll_interval_s: float = _env_float("ALR_POLL_INTERVAL_S", 2.0)
    drain_pause_s: float = _env_float("ALR_DRAIN_PAUSE_S", 5.0)
    restage_settle_s: float = _env_float("ALR_RESTAGE_SETTLE_S", 5.0)

    # Blue-green
    venerable_suffix: str = os.getenv("ALR_VENERABLE_SUFFIX", "-venerable")


settings = Settings()
