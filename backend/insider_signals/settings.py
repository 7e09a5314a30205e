from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INSIDER_SIGNALS_", extra="ignore")

    db_url: str = "sqlite:///./insider_signals.db"

    # Logging (loguru)
    log_level: str = "INFO"
    log_format: str = "text"  # text|json
    log_file: str = ""

    # Cluster buys
    cluster_lookback_days: int = 7
    cluster_window_days: int = 3
    cluster_rescore_tolerance: float = 0.0
    cluster_notify_min_strength: int = 75
    cluster_retention_days: int = 30

    # Important trades
    important_lookback_days: int = 7
    important_min_score: int = 30
    important_retention_days: int = 30

    # First buys
    first_buy_recent_days: int = 30
    first_buy_lookback_days: int = 365
    first_buy_retention_days: int = 90

    # Shared: +/- days used for the per-trade cluster size lookup
    trade_cluster_window_days: int = 3

    # Historical metrics
    metrics_lookback_days: int = 90
    metrics_no_sell_ratio: float = 999.0

    # Batching: outer batch of candidates, inner ceiling of statements per flush
    batch_size: int = 50
    max_statements_per_batch: int = 100

    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"


settings = Settings()
