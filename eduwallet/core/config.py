from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("true", "1", "yes")
_FALSY = ("false", "0", "no")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    ledger_url: str | None
    register_address: str | None
    ledger_timeout_seconds: float
    redis_url: str | None
    ipfs_api_url: str | None
    ipfs_gateway: str
    session_ttl_minutes: int

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
    def uses_ledger_rpc(self) -> bool:
        return self.ledger_url is not None


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")
    timeout_raw = _getenv("LEDGER_TIMEOUT_SECONDS", "120")
    session_ttl_raw = _getenv("SESSION_TTL_MINUTES", "30")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in _TRUTHY + _FALSY:
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        ledger_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"LEDGER_TIMEOUT_SECONDS must be a number (got {timeout_raw!r})"
        ) from None
    if ledger_timeout <= 0:
        raise ValueError(
            f"LEDGER_TIMEOUT_SECONDS must be positive (got {timeout_raw!r})"
        )

    try:
        session_ttl = int(session_ttl_raw)
    except ValueError:
        raise ValueError(
            f"SESSION_TTL_MINUTES must be an integer (got {session_ttl_raw!r})"
        ) from None
    if session_ttl <= 0:
        raise ValueError(
            f"SESSION_TTL_MINUTES must be positive (got {session_ttl_raw!r})"
        )

    ledger_url = _getenv("LEDGER_URL", "") or None
    register_address = _getenv("REGISTER_ADDRESS", "") or None
    if ledger_url and not register_address:
        # A JSON-RPC endpoint alone can't locate the holder registry.
        raise ValueError("REGISTER_ADDRESS is required when LEDGER_URL is set")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in _TRUTHY,
        port=port,
        ledger_url=ledger_url,
        register_address=register_address,
        ledger_timeout_seconds=ledger_timeout,
        redis_url=_getenv("REDIS_URL", "") or None,
        ipfs_api_url=_getenv("IPFS_API_URL", "") or None,
        ipfs_gateway=_getenv("IPFS_GATEWAY", "https://ipfs.io/ipfs/"),
        session_ttl_minutes=session_ttl,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
