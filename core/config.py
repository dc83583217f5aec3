# ==================================================================================
# core/config.py — FastAPI Configuration (Stripe + Redis jobs + SendGrid + Pydantic v2)
# ==================================================================================
from typing import Dict
import logging
import sys

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./teamflow.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: str | None = None  # Example: "TeamFlow <billing@teamflow.app>"

    # ------------------------
    # FRONTEND & BACKEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"
    API_PREFIX: str = "/api/v1"

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None

    STRIPE_PRICE_BASE_MONTHLY: str = "price_1SEmSa05AUDEDgY6wkvwSVsX"
    STRIPE_PRICE_BASE_QUARTERLY: str = "price_1SEmTH05AUDEDgY6dzBqZZk3"
    STRIPE_PRICE_BASE_HALFYEAR: str = "price_1SEmTo05AUDEDgY6sH8LUEOY"
    STRIPE_PRICE_BASE_YEARLY: str = "price_1SEmUO05AUDEDgY6TiucbNRo"
    STRIPE_PRICE_PRO_MONTHLY: str = "price_1SEmVC05AUDEDgY6xIRiY1M1"
    STRIPE_PRICE_PRO_QUARTERLY: str = "price_1SEmWp05AUDEDgY6apP6VY39"
    STRIPE_PRICE_PRO_HALFYEAR: str = "price_1SEmXZ05AUDEDgY69XM7EHoj"
    STRIPE_PRICE_PRO_YEARLY: str = "price_1SEmYu05AUDEDgY6NGcX3Md3"
    STRIPE_PRICE_ENTERPRISE_MONTHLY: str = "price_1SEmZM05AUDEDgY64cFquGZQ"
    STRIPE_PRICE_ENTERPRISE_QUARTERLY: str = "price_1SEmaD05AUDEDgY6DbsyaBxu"
    STRIPE_PRICE_ENTERPRISE_HALFYEAR: str = "price_1SEmay05AUDEDgY67WDQVzqW"
    STRIPE_PRICE_ENTERPRISE_YEARLY: str = "price_1SEmbn05AUDEDgY6fS6I4FT7"

    @property
    def STRIPE_PRICE_IDS(self) -> Dict[str, Dict[str, str]]:
        """Price ids keyed by plan then duration, e.g. ["PRO"]["YEARLY"]."""
        table: Dict[str, Dict[str, str]] = {}
        for plan in ("BASE", "PRO", "ENTERPRISE"):
            table[plan] = {
                duration: getattr(self, f"STRIPE_PRICE_{plan}_{duration}")
                for duration in ("MONTHLY", "QUARTERLY", "HALFYEAR", "YEARLY")
            }
        return table

    def billing_url(self, organization_id: int, outcome: str) -> str:
        """Checkout return url: outcome is 'success' or 'cancel'."""
        return f"{self.BACKEND_URL.rstrip('/')}{self.API_PREFIX}/organizations/{organization_id}/billing/{outcome}"

    # ------------------------
    # DELAYED JOB QUEUE CONFIG
    # ------------------------
    REDIS_URL: str = "redis://localhost:6379/0"  # Celery broker and result backend
    JOB_MAX_RETRIES: int = 3
    JOB_BACKOFF_SECONDS: int = 2  # retry countdown is this * 2**retries
    JOB_BACKOFF_MAX_SECONDS: int = 600
    # unacked jobs go back on the queue after this long (worker died mid-job)
    JOB_VISIBILITY_TIMEOUT_SECONDS: int = 86400

    # ------------------------
    # REMINDER / DUNNING CONFIG
    # ------------------------
    INVITATION_VALID_DAYS: int = 7
    TASK_REMINDER_LEAD_MINUTES: int = 5
    DUNNING_MAX_ATTEMPTS: int = 4

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production' | 'test'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    logger.info("✅ Environment variables loaded (environment=%s, debug=%s)", settings.ENVIRONMENT, settings.DEBUG)
except ValidationError as e:
    print("❌ Environment configuration error — missing or invalid settings!")
    print(e)
    sys.exit(1)
