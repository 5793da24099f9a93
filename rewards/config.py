from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App settings
    APP_NAME: str = "Referral Rewards API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SEED_DEMO_DATA: bool = True

    # CORS settings
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Reward settings
    PAYOUT_THRESHOLD: Decimal = Decimal("100")
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("0.30")
    DEFAULT_MY_COMMISSION_RATE: Decimal = Decimal("0.50")

    # Payout destination settings
    UPI_RATE_LIMIT_MAX_REQUESTS: int = 5
    UPI_RATE_LIMIT_WINDOW_SECONDS: int = 60
    KNOWN_UPI_PROVIDERS: List[str] = [
        "paytm", "googlepay", "phonepe", "ybl", "okaxis",
        "okhdfcbank", "okicici", "oksbi", "ibl", "axl",
    ]

    # Attribution settings
    ANONYMOUS_ID_COOKIE: str = "ref_anon_id"
    ANONYMOUS_ID_TTL_DAYS: int = 30

    # Listing settings
    ADMIN_CLICK_PAGE_SIZE: int = 50
    DASHBOARD_CLICK_LIMIT: int = 5
    ADMIN_PAYOUT_PAGE_SIZE: int = 50
    FEATURED_APPS_ANONYMOUS_LIMIT: int = 3
    FEATURED_APPS_SIGNED_IN_LIMIT: int = 7

    # Rule parser settings
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"


settings = Settings()
