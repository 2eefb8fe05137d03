from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so type casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: str) -> int:
    raw = _getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _getenv_float(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _getenv_bool(name: str, default: str) -> bool:
    raw = _getenv(name, default).lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be true|false (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    host: str
    port: int
    dbs_config_file: str
    queries_file: str | None
    api_key: str | None
    db_pool_size: int
    db_pool_timeout: float
    scrape_rate_limit: int
    scrape_rate_window: float

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def auth_enabled(self) -> bool:
        return self.api_key is not None


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getenv_int("PORT", "9187")
    db_pool_size = _getenv_int("DB_POOL_SIZE", "5")
    db_pool_timeout = _getenv_float("DB_POOL_TIMEOUT", "5")
    scrape_rate_limit = _getenv_int("SCRAPE_RATE_LIMIT", "2")
    scrape_rate_window = _getenv_float("SCRAPE_RATE_WINDOW", "5")

    if db_pool_size < 1:
        raise ValueError(f"DB_POOL_SIZE must be at least 1 (got {db_pool_size})")
    if db_pool_timeout <= 0:
        raise ValueError(
            f"DB_POOL_TIMEOUT must be positive (got {db_pool_timeout})"
        )
    if scrape_rate_limit < 1 or scrape_rate_window <= 0:
        raise ValueError(
            "SCRAPE_RATE_LIMIT and SCRAPE_RATE_WINDOW must be positive"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", "false"),
        host=_getenv("HOST", "0.0.0.0"),
        port=port,
        dbs_config_file=_getenv("DBS_CONFIG_FILE", "databases.json"),
        queries_file=_getenv("QUERIES_FILE", "") or None,
        api_key=_getenv("EXPORTER_API_KEY", "") or None,
        db_pool_size=db_pool_size,
        db_pool_timeout=db_pool_timeout,
        scrape_rate_limit=scrape_rate_limit,
        scrape_rate_window=scrape_rate_window,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
