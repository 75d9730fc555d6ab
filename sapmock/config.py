"""
Settings

All knobs come from environment variables, read once at app creation.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    api_prefix: str = "/api"
    data_path: str = "./data"
    config_file: str = "./config/systems.json"
    enable_extensions: bool = True
    max_requests: int = 1000
    timeout_delay_ms: int = 0
    observer_timeout_ms: int = 5000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_prefix=os.getenv("SAPMOCK_API_PREFIX", "/api"),
            data_path=os.getenv("SAPMOCK_DATA_PATH", "./data"),
            config_file=os.getenv("SAPMOCK_CONFIG_FILE", "./config/systems.json"),
            enable_extensions=_env_bool("SAPMOCK_ENABLE_EXTENSIONS", True),
            max_requests=max(1, _env_int("SAPMOCK_MAX_REQUESTS", 1000)),
            timeout_delay_ms=max(0, _env_int("SAPMOCK_TIMEOUT_DELAY_MS", 0)),
            observer_timeout_ms=max(1, _env_int("SAPMOCK_OBSERVER_TIMEOUT_MS", 5000)),
            log_level=os.getenv("SAPMOCK_LOG_LEVEL", "INFO").upper(),
        )
