from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Payment Channel Reconciliation Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # ─────────── LEDGER RPC ───────────
    ledger_network: str = "testnet"
    ledger_rpc_url: str = "https://xahau-test.net"
    ledger_timeout_seconds: float = 20.0

    # ─────────── CHANNEL DEFAULTS ───────────
    default_max_daily_hours: float = 8.0  # also used for ledger imports


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
