import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Request identity (HS256 bearer tokens issued by the auth frontend)
    AUTH_JWT_SECRET: Optional[str] = None

    # Provider A: Xendit invoices (callback token is compared verbatim)
    XENDIT_CALLBACK_TOKEN: Optional[str] = None

    # Provider B: PayPal orders (client-credentials OAuth)
    PAYPAL_CLIENT_ID: Optional[str] = None
    PAYPAL_SECRET: Optional[str] = None
    PAYPAL_API_BASE: str = "https://api-m.sandbox.paypal.com"
    PAYPAL_TIMEOUT_SECONDS: float = 10.0
    PAYPAL_TOKEN_REFRESH_MARGIN_SECONDS: int = 300

    # Pricing
    PREMIUM_PRICE_USD: float = 5.00
    PREMIUM_CURRENCY: str = "USD"

    # App URLs
    CLIENT_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"

    # Observability
    METRICS_ENABLED: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("cirkel")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "XENDIT_CALLBACK_TOKEN",
        "PAYPAL_CLIENT_ID",
        "PAYPAL_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
