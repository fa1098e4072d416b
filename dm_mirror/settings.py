from __future__ import annotations

import os


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


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


DEFAULT_SYMBOL = "ETHUSDT"
DEFAULT_DEPTH = 10

BINANCE_REST_BASE_URL = os.getenv("BINANCE_REST_BASE_URL", "https://api.binance.com")
BINANCE_WS_BASE_URL = os.getenv("BINANCE_WS_BASE_URL", "wss://stream.binance.com:9443")

# Snapshot
SNAPSHOT_TIMEOUT_S = _env_float("SNAPSHOT_TIMEOUT_S", 10.0)
# 0 -> request as many levels as are displayed
SNAPSHOT_DEPTH = _env_int("SNAPSHOT_DEPTH", 0)
SNAPSHOT_RETRY_MAX = _env_int("SNAPSHOT_RETRY_MAX", 1)
SNAPSHOT_RETRY_BACKOFF_S = _env_float("SNAPSHOT_RETRY_BACKOFF_S", 0.5)
SNAPSHOT_RETRY_BACKOFF_MAX_S = _env_float("SNAPSHOT_RETRY_BACKOFF_MAX_S", 5.0)

# Engine
THROTTLE_INTERVAL_MS = _env_int("THROTTLE_INTERVAL_MS", 10_000)
MAX_BUFFER_SIZE = _env_int("MAX_BUFFER_SIZE", 200_000)
MAX_BOOTSTRAP_ATTEMPTS = _env_int("MAX_BOOTSTRAP_ATTEMPTS", 3)
HEARTBEAT_SEC = _env_float("HEARTBEAT_SEC", 30.0)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "")

# WS keepalive/reconnect
WS_PING_INTERVAL_S = _env_int("WS_PING_INTERVAL_S", 20)
WS_PING_TIMEOUT_S = _env_int("WS_PING_TIMEOUT_S", 60)
WS_RECONNECT_BACKOFF_S = _env_float("WS_RECONNECT_BACKOFF_S", 1.0)
WS_RECONNECT_BACKOFF_MAX_S = _env_float("WS_RECONNECT_BACKOFF_MAX_S", 30.0)
WS_MAX_SESSION_S = _env_float("WS_MAX_SESSION_S", float(23 * 3600 + 50 * 60))

# TLS verification should remain enabled by default.
INSECURE_TLS = _env_bool("INSECURE_TLS", False)
