"""
Configuration settings for the storefront checkout backend.
Loads from environment variables with validation.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "HANK Storefront"
    DEBUG: bool = False
    HOST: str = "http://localhost:5000"
    FRONTEND_URL: str = "http://localhost:3000"
    SECRET_KEY: str

    # Database
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379"

    # PayTR hosted payment page
    PAYTR_MERCHANT_ID: str = ""
    PAYTR_MERCHANT_KEY: str = ""
    PAYTR_MERCHANT_SALT: str = ""
    PAYTR_TEST_MODE: bool = False
    PAYTR_DEBUG_ON: bool = True
    PAYTR_TOKEN_URL: str = "https://www.paytr.com/odeme/api/get-token"
    PAYTR_IFRAME_URL: str = "https://www.paytr.com/odeme/guvenli"
    PAYTR_TIMEOUT_SECONDS: float = 20.0
    PAYMENT_TIMEOUT_LIMIT_MINUTES: int = 30

    # Checkout pricing
    CURRENCY: str = "TL"
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("2500.00")
    FLAT_SHIPPING_FEE: Decimal = Decimal("49.90")
    PENDING_PAYMENT_TTL_MINUTES: int = 60

    # Transactional email (Klaviyo events)
    KLAVIYO_API_KEY: str | None = None
    ADMIN_EMAIL: str | None = None

    # BizimHesap invoicing
    BIZIMHESAP_FIRM_ID: str | None = None
    BIZIMHESAP_API_URL: str = "https://bizimhesap.com/api/b2b/addinvoice"
    INVOICE_TAX_RATE: int = 20

    # Slack Alerting
    SLACK_WEBHOOK_URL: str | None = None
    SLACK_ALERTS_CHANNEL: str = "#storefront-alerts"

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        missing = [
            name for name in ("PAYTR_MERCHANT_ID", "PAYTR_MERCHANT_KEY", "PAYTR_MERCHANT_SALT")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} must be set in production. "
                "Callback verification is impossible without the PayTR credentials."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
