# linkledger/core/config.py
"""
Process-wide configuration.

Values come from environment variables (or a .env file loaded with
python-dotenv). A few keys can also be overridden at runtime through the
`settings` table, see `services/settings_service.py`.
"""

import os
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

DATA_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "data")


def _default_database_url() -> str:
    database_file = os.path.join(DATA_DIR, "db", "linkledger.sqlite")
    os.makedirs(os.path.dirname(database_file), exist_ok=True)
    return f"sqlite:///{database_file}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "development"
    database_url: Optional[str] = None

    # --- Subscription periods ---
    billing_period_days: int = 30
    weekly_period_days: int = 7
    renewal_window_hours: int = 24
    # "3,2,1": days before expiry that trigger a reminder
    reminder_days: str = "3,2,1"

    # --- Renewal sweep ---
    sweep_interval_minutes: int = 60

    # --- Network commands ---
    network_max_attempts: int = 3
    network_backoff_base_seconds: float = 1.0
    network_backoff_max_seconds: float = 30.0
    network_timeout_seconds: float = 15.0
    network_workers: int = 4
    default_speed: str = "10Mbps"
    suspended_queue_limit: str = "1k/1k"

    # --- State machine ---
    transition_max_retries: int = 5

    # --- RADIUS management API ---
    radius_api_url: Optional[str] = None
    radius_api_token: Optional[str] = None

    # --- SMS provider ---
    sms_api_url: Optional[str] = None
    sms_api_key: Optional[str] = None
    sms_partner_id: Optional[str] = None
    sms_shortcode: Optional[str] = None
    sms_max_attempts: int = 2

    encryption_key: Optional[str] = None

    @property
    def reminder_day_set(self) -> List[int]:
        return [int(part) for part in self.reminder_days.split(",") if part.strip()]

    @property
    def resolved_database_url(self) -> str:
        return self.database_url or _default_database_url()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def period_days(self, subscription_type: Optional[str]) -> int:
        if subscription_type == "weekly":
            return self.weekly_period_days
        return self.billing_period_days


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Money is stored with two decimals everywhere
CENTS = Decimal("0.01")
