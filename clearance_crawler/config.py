"""Application configuration using Pydantic settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    headless: bool = True
    locale: str = "fr-CA"

    # Listing
    site_root: str = "https://www.canadiantire.ca"
    base_url: str = "https://www.canadiantire.ca/fr/promotions/liquidation.html"
    pagination_mode: str = "url"  # "url" or "click"
    max_pages: int = 120

    # Stores & sharding
    stores_path: str = "data/canadian_tire_stores.json"
    output_base: str = "outputs/canadiantire"
    store_concurrency: int = 4
    max_stores_per_shard: int = 8
    shard_index: Optional[int] = None  # 1-based
    total_shards: Optional[int] = None

    # Deal constraints
    min_discount_percent: float = 50.0
    max_stock_qty: int = 10000

    # ==========================================================================
    # Navigation
    # ==========================================================================
    nav_attempts: int = 3
    nav_backoff_ms: int = 2000
    nav_timeout_ms: int = 120000
    network_idle_race_ms: int = 6000

    # ==========================================================================
    # Stability / placeholder detection
    # ==========================================================================
    stable_timeout_ms: int = 60000
    stable_retries: int = 2
    stable_retry_wait_ms: int = 2000
    real_cards_timeout_ms: int = 45000
    real_cards_poll_ms: int = 800
    min_real_cards: int = 5
    placeholder_max_cards: int = 2  # at or below this many containers with no real card
    placeholder_reload_cap: int = 1

    # ==========================================================================
    # Lazy content
    # ==========================================================================
    scroll_stable_rounds: int = 3
    scroll_max_seconds: float = 180.0
    scroll_wheel_px: int = 1600
    scroll_by_px: int = 1200
    load_more_max_clicks: int = 25
    load_more_stable_rounds: int = 3
    load_more_max_seconds: float = 300.0
    load_more_wait_ms: int = 1200
    load_more_real_cards_timeout_ms: int = 30000

    # ==========================================================================
    # Pagination
    # ==========================================================================
    empty_page_limit: int = 2
    click_retries: int = 3
    signature_change_timeout_ms: int = 25000

    # Debug capture
    capture_debug: bool = True
    debug_bundle_path: Optional[str] = None  # defaults to <store output dir>/debug

    # Optional JSON file overriding the card selector chains
    selector_config_path: Optional[str] = None

    # Metrics textfile written at the end of a run (node-exporter format)
    metrics_textfile: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
