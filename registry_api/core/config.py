from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

API_VERSION = "1.0.0"

# The service cannot authenticate callers or sign ledger transactions
# without these, so there is no sensible default.
REQUIRED_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SOLANA_PAYER_SECRET",
)


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _require(name: str) -> str:
    value = _getenv(name, "")
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    host: str
    cors_origin: str
    forwarded_allow_ips: str
    supabase_url: str
    supabase_service_role_key: str = field(repr=False)
    solana_payer_secret: str = field(repr=False)
    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_cluster: str = "devnet"
    database_url: str | None = field(default=None, repr=False)
    redis_url: str | None = field(default=None, repr=False)

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
    port_raw = _getenv("PORT", "3001")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    supabase_url, service_role_key, payer_secret = (
        _require(name) for name in REQUIRED_VARS
    )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        host=_getenv("HOST", "localhost"),
        cors_origin=_getenv("CORS_ORIGIN", "http://localhost:3000"),
        forwarded_allow_ips=_getenv("FORWARDED_ALLOW_IPS", "127.0.0.1"),
        supabase_url=supabase_url.rstrip("/"),
        supabase_service_role_key=service_role_key,
        solana_payer_secret=payer_secret,
        solana_rpc_url=_getenv("SOLANA_RPC_URL", "https://api.devnet.solana.com"),
        solana_cluster=_getenv("SOLANA_CLUSTER", "devnet"),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
    )


SETTINGS = load_settings()
