from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_float(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    # External stores.  None means "use the in-memory implementation".
    ledger_url: str | None = None
    ledger_api_key: str | None = None
    ledger_confirm_timeout_seconds: float = 120.0
    archive_url: str | None = None
    archive_api_key: str | None = None
    archive_gateway_url: str = "http://localhost:8080/ipfs"
    verify_base_url: str = "http://localhost:5173"
    lease_ttl_seconds: float = 300.0
    external_timeout_seconds: float = 30.0

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    lease_ttl = _getenv_float("LEASE_TTL_SECONDS", "300")
    confirm_timeout = _getenv_float("LEDGER_CONFIRM_TIMEOUT_SECONDS", "120")
    external_timeout = _getenv_float("EXTERNAL_TIMEOUT_SECONDS", "30")

    # The lease must outlive a full ledger confirmation, or a slow commit
    # would let a second issuer in.
    if lease_ttl <= confirm_timeout:
        raise ValueError(
            "LEASE_TTL_SECONDS must exceed LEDGER_CONFIRM_TIMEOUT_SECONDS "
            f"(got {lease_ttl} <= {confirm_timeout})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        ledger_url=_getenv("LEDGER_URL", "").rstrip("/") or None,
        ledger_api_key=_getenv("LEDGER_API_KEY", "") or None,
        ledger_confirm_timeout_seconds=confirm_timeout,
        archive_url=_getenv("ARCHIVE_URL", "").rstrip("/") or None,
        archive_api_key=_getenv("ARCHIVE_API_KEY", "") or None,
        archive_gateway_url=_getenv(
            "ARCHIVE_GATEWAY_URL", "http://localhost:8080/ipfs"
        ).rstrip("/"),
        verify_base_url=_getenv("VERIFY_BASE_URL", "http://localhost:5173").rstrip(
            "/"
        ),
        lease_ttl_seconds=lease_ttl,
        external_timeout_seconds=external_timeout,
    )


SETTINGS = load_settings()
