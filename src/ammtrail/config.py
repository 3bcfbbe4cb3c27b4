"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeSettings(BaseSettings):
    """Remote ledger node connection settings."""

    model_config = SettingsConfigDict(env_prefix="NODE_")

    # Tried in order for both pool discovery and history fetches
    endpoints: list[str] = [
        "wss://xrplcluster.com",
        "wss://s1.ripple.com:443",
        "wss://s2.ripple.com:51233",
    ]
    max_connections: int = Field(default=3, ge=1)  # total across all endpoints
    grant_delay: float = 0.05  # seconds before a queued request gets a freed slot
    open_timeout: float = 10.0
    close_timeout: float = 0.5  # bound on the close handshake after a failed request
    discovery_timeout: float = 4.0  # per amm_info query

    @field_validator("endpoints")
    @classmethod
    def endpoints_are_websocket_urls(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one endpoint is required")
        for url in value:
            if not url.startswith(("ws://", "wss://")):
                raise ValueError(f"endpoint must be a ws:// or wss:// URL: {url}")
        return value


class FetchSettings(BaseSettings):
    """Paginated account history fetch configuration."""

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    page_size: int = 100
    max_pages: int = 10  # per endpoint per session
    page_timeout: float = 15.0
    page_delay: float = 0.1  # rate limit courtesy between pages


class CacheSettings(BaseSettings):
    """Local cache limits and storage location.

    TTLs are in seconds, sizes in bytes of the serialized JSON entry.
    All fields configurable via CACHE_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    db_path: str = "data/cache.db"

    raw_ttl: int = 6 * 3600
    processed_ttl: int = 30 * 60
    aggregate_ttl: int = 24 * 3600

    raw_max_bytes: int = 1024 * 1024
    processed_max_bytes: int = 512 * 1024
    aggregate_max_bytes: int = 512 * 1024

    raw_max_records: int = 1000
    processed_max_records: int = 500
    aggregate_max_records: int = 100

    # Global ceilings enforced by the periodic sweep
    max_entries: int = 50
    max_total_bytes: int = 5 * 1024 * 1024
    storage_quota_bytes: int = 5 * 1024 * 1024

    aggressive_cleanup_age: int = 6 * 3600  # entries older than this go first on quota errors
    sweep_interval: int = 300


class QuoteSettings(BaseSettings):
    """Trading fee haircuts applied by the reverse quote computations.

    The three rates are kept as separate named profiles; they are not derived
    from one another.
    """

    model_config = SettingsConfigDict(env_prefix="QUOTE_")

    single_swap_fee: Decimal = Field(default=Decimal("0.03"), ge=0, lt=1)  # 3%
    position_run_fee: Decimal = Field(default=Decimal("0.023"), ge=0, lt=1)  # 2.3%
    latest_swap_fee: Decimal = Field(default=Decimal("0.01"), ge=0, lt=1)  # 1%


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" for machine-readable output
    node: NodeSettings = NodeSettings()
    fetch: FetchSettings = FetchSettings()
    cache: CacheSettings = CacheSettings()
    quote: QuoteSettings = QuoteSettings()
    api: ApiSettings = ApiSettings()
