"""Configuration management using Pydantic Settings"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMMITMENTS_",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./commitments.db"

    # Service
    service_name: str = "commitments-engine"
    log_level: str = "INFO"

    # Commitment rules
    goal_max_length: int = 200
    min_deadline_lead_minutes: int = 60
    editing_lock_hours: int = 24
    allowed_currencies: List[str] = ["EUR", "USD", "CHF", "PLN", "CZK", "HUF"]

    # Grace expiry scanner
    grace_window_minutes: int = 60
    final_warning_lead_minutes: int = 15
    scanner_batch_size: int = 200

    # Reminder horizon builder
    horizon_days: int = 7
    horizon_max_events_per_commitment: int = 50
    horizon_batch_size: int = 200

    # Quiet-hours dispatcher
    default_quiet_start_hour: int = 22
    default_quiet_end_hour: int = 7
    max_quiet_deferrals: int = 3
    max_send_attempts: int = 3
    notification_channel: str = "console"
    dispatcher_batch_size: int = 200


settings = Settings()
