"""tokendash configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Forced session log (CLI --path); used when a stream request names no path
SESSION_PATH = os.getenv("TOKENDASH_SESSION_PATH") or None

# Live updates
DEBOUNCE_MS = _env_int("TOKENDASH_DEBOUNCE_MS", 150)
WATCH_STEP_MS = _env_int("TOKENDASH_WATCH_STEP_MS", 50)
KEEPALIVE_SECONDS = _env_float("TOKENDASH_KEEPALIVE_SECONDS", 20.0)
OBSERVER_QUEUE_SIZE = _env_int("TOKENDASH_OBSERVER_QUEUE_SIZE", 64)

# Observability
OTEL_ENABLED = _env_bool("TOKENDASH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("TOKENDASH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("TOKENDASH_OTEL_SERVICE_NAME", "tokendash")
PROM_PORT = _env_int("TOKENDASH_PROM_PORT", 0)

# Server settings
HOST = os.getenv("TOKENDASH_HOST", "127.0.0.1")
PORT = _env_int("TOKENDASH_PORT", 4000)

# CORS
FRONTEND_ORIGIN = os.getenv("TOKENDASH_FRONTEND_ORIGIN", "http://localhost:3000")
