from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./hotel_loyalty.db"
    database_echo: bool = False

    # Internal API security
    loyalty_admin_api_key: str = ""
    loyalty_events_api_key: str = ""

    # Ledger mutation discipline
    loyalty_mutation_max_retries: int = 3
    loyalty_default_expiration_months: int = 12

    # Analytics
    loyalty_top_members_limit: int = 10
    loyalty_recent_members_limit: int = 5

    # Points expiration sweeper
    loyalty_expiration_sweeper_enabled: bool = False
    loyalty_expiration_interval_seconds: int = 60 * 60
    loyalty_expiration_batch_size: int = 200
    loyalty_expiration_trigger_label: str = "scheduler"
    # Comma separated; empty means one sweeper covering every hotel
    loyalty_expiration_hotel_ids: str = ""

    # Cron scheduler for loyalty jobs
    loyalty_job_scheduler_enabled: bool = False
    loyalty_job_schedule_path: str = "config/schedules.toml"

    # Email / notification settings
    loyalty_notifications_enabled: bool = True
    # Deliver event subscribers as background tasks instead of inside the request
    loyalty_events_background: bool = True
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None

    @property
    def expiration_hotel_ids(self) -> list[str]:
        return [item.strip() for item in self.loyalty_expiration_hotel_ids.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
