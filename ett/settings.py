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


@dataclass(frozen=True)
class Settings:
    # AWS
    region: str = os.getenv("ETT_REGION", "us-east-1")
    table: str = os.getenv("ETT_TABLE", "traefik")
    cluster: str = os.getenv("ETT_CLUSTER", "default")

    # Optimistic locking against the routing table
    max_tries: int = _env_int("ETT_MAX_TRIES", 10)
    retry_backoff_ms: int = _env_int("ETT_RETRY_BACKOFF_MS", 100)

    # Sweeps
    slow_sync_ms: int = _env_int("ETT_SLOW_SYNC_MS", 1000)
    # 0 disables the background sync loop.
    sync_interval_s: int = _env_int("ETT_SYNC_INTERVAL_S", 0)

    # Process
    debug: bool = _env_bool("ETT_DEBUG", False)
    host: str = os.getenv("ETT_HOST", "0.0.0.0")
    port: int = _env_int("ETT_PORT", 8000)


settings = Settings()
