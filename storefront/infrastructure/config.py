"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False
    cors_allow_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Database
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"
    database_create_tables: bool = False

    # Sessions
    session_secret: str = "dev-session-secret-change-in-production"
    session_cookie_name: str = "storefront_session"
    session_max_age_seconds: int = 60 * 60 * 24 * 7
    session_https_only: bool = False

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance: int = 300
    currency: str = "usd"

    # Airtable
    airtable_api_key: str = ""
    airtable_base_id: str = ""
    airtable_orders_table: str = "Orders"
    airtable_checkouts_table: str = "Checkouts"
    airtable_timeout: float = 10.0

    # Shipping (flat rate by unit count)
    shipping_flat_rate: Decimal = Decimal("15.00")
    shipping_bulk_rate: Decimal = Decimal("25.00")
    shipping_bulk_threshold: int = 5

    # Orders
    order_id_prefix: str = "TA"
    sink_write_attempts: int = 3
    sink_retry_delay_seconds: float = 0.5

    # Admin endpoints
    admin_api_key: str = "dev-admin-key-change-in-production"

    # Manual payment instructions
    bank_account_name: str = "Storefront LLC"
    bank_name: str = "First National Bank"
    bank_account_number: str = "XXXX-XXXX-XXXX-1234"
    bank_routing_number: str = "XXXXXXXXX"
    crypto_bitcoin_address: str = "bc1qxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
    crypto_ethereum_address: str = "0xXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX"

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
