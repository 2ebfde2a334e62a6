import os
from typing import Any, Callable, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": "sqlite:///onceread.db",
    "host": "0.0.0.0",
    "port": 8080,
    "requests_rate_limit": 100,
    "ip_rate_limit_seconds": 30.0,
    "rate_limit_tick_seconds": 5.0,
    "sweep_interval_seconds": 3600,
    "data_size_limit": 128 * 1024,
    "max_views": 100,
    "max_ttl_days": 30,
    "consume_rate_limit": "30 per minute",
    "rate_limit_enabled": True,
    "scheduler_enabled": True,
    "log_level": "INFO",
    "log_file": None,
}

# setting key -> (environment variable, parser)
_ENV_VARS = {
    "database_url": ("DATABASE_URL", str),
    "host": ("HOST", str),
    "port": ("PORT", int),
    "requests_rate_limit": ("REQUESTS_RATE_LIMIT", int),
    "ip_rate_limit_seconds": ("IP_RATE_LIMIT_TIME", float),
    "rate_limit_tick_seconds": ("RATE_LIMIT_TICK", float),
    "sweep_interval_seconds": ("SWEEP_INTERVAL", int),
    "data_size_limit": ("DATA_SIZE_LIMIT", int),
    "max_views": ("MAX_VIEWS", int),
    "max_ttl_days": ("MAX_TTL_DAYS", int),
    "consume_rate_limit": ("CONSUME_RATE_LIMIT", str),
    "rate_limit_enabled": ("RATELIMIT_ENABLED", "bool"),
    "scheduler_enabled": ("SCHEDULER_ENABLED", "bool"),
    "log_level": ("LOG_LEVEL", str),
    "log_file": ("LOG_FILE", str),
}

_POSITIVE = (
    "port",
    "requests_rate_limit",
    "ip_rate_limit_seconds",
    "rate_limit_tick_seconds",
    "sweep_interval_seconds",
    "data_size_limit",
    "max_views",
    "max_ttl_days",
)


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parser(kind) -> Callable[[str], Any]:
    return _parse_bool if kind == "bool" else kind


def load_settings() -> Dict[str, Any]:
    """Read settings from the environment, falling back to DEFAULT_CONFIG."""
    settings = DEFAULT_CONFIG.copy()
    for key, (env_var, kind) in _ENV_VARS.items():
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        try:
            settings[key] = _parser(kind)(raw)
        except ValueError as exc:
            raise RuntimeError(f"{env_var} has an invalid value") from exc
    for key in _POSITIVE:
        if settings[key] <= 0:
            raise RuntimeError(f"{key} must be positive")
    return settings
