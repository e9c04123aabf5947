from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Subscription Chain Sync"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── RPC / CONTRACT ───────────
    rpc_url: str = "https://soroban-testnet.stellar.org"
    contract_address: str = ""  # required by the poller, checked at construction
    rpc_timeout_s: float = 10.0

    # ─────────── EVENT SYNC ───────────
    sync_enabled: bool = True
    poll_interval_ms: int = 5000
    poll_max_backoff_ms: int = 60000
    reorg_depth: int = 10

    # ─────────── RENEWAL LOCKS ───────────
    renewal_lock_ttl_ms: int = 30000
    lock_sweep_interval_s: int = 300  # every 5 minutes


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
