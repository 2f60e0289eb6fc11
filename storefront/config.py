"""Storefront configuration."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the storefront backend.

    Every option has a localhost/default fallback so a bare checkout runs.
    """

    site_url: str = "http://localhost:3000"
    store_name: str = "ToolUp Store"
    currency: str = "NGN"
    base_shipping_fee: float = 3500.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # Outbound order webhook (inventory app)
    inventory_webhook_url: str = "http://localhost:3001/api/orders/receive-webhook"
    webhook_secret: str = "your-webhook-secret-key"
    webhook_timeout_seconds: float = 10.0

    # Notification dispatcher: empty URL = webhook channel skipped
    notification_webhook_url: str = ""
    notification_webhook_retries: int = 3

    # Realtime order updates
    websocket_url: str = "ws://localhost:3001"
    realtime_connect_timeout_seconds: float = 10.0
    sse_heartbeat_seconds: float = 30.0

    # Auth
    jwt_secret: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_ttl_days: int = 7
    cors_origins: list[str] = ["http://localhost:3000"]
    order_rate_limit: str = "20/minute"

    # Google Sheets persistence (empty sheet id = in-memory store)
    google_sheet_id: str = ""
    google_credentials_b64: str = ""

    # SMTP receipts (empty host = email disabled)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    # Bank transfer
    redis_url: str = "redis://localhost:6379/0"
    bank_account_number: str = ""
    bank_name: str = ""
    bank_account_name: str = ""
    bank_transfer_secret: str = ""
    # Seconds between expiry sweeps of stale transfers; 0 disables the sweep
    transfer_sweep_seconds: float = 300.0

    # Server-side re-validation of cart prices against the catalog
    validate_prices: bool = False

    model_config = {"env_prefix": "STOREFRONT_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
