from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings

from backend.errors import ConfigurationError


class Settings(BaseSettings):
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = True
    log_level: str = "INFO"
    cors_origins: List[AnyHttpUrl] | List[str] = ["http://localhost:3000"]

    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_endpoint_url: str | None = None

    storage_backend: Literal["local", "dynamodb"] = "local"
    data_dir: str = str(Path(__file__).resolve().parents[1] / "data")
    meetings_table: str = "meetings"
    ledger_table: str = "meeting_email_notifications"
    cancellations_table: str = "meeting_cancellations"
    users_table: str = "users"
    meetings_state_index: str = "state-scheduled_time-index"
    cancellations_counterpart_index: str = "counterpart_id-index"

    # Shared secret the cron trigger sends in the x-api-key header
    system_api_key: str = ""

    mail_sender_address: str = ""
    mail_sender_name: str = "Meeting Reminders"
    mail_connect_timeout: int = 30
    mail_read_timeout: int = 60
    mail_max_attempts: int = 2

    reminder_lead_minutes: int = 10
    reminder_send_delay_ms: int = 100
    sweep_workers: int = 4
    # Must outlast the slowest delivery the mailer allows, retries included
    notification_lease_seconds: int = 300
    completion_grace_minutes: int = 120

    meeting_base_url: str = "http://localhost:3000"
    meeting_link_secret: str = ""
    meeting_link_ttl_hours: int = 24
    display_timezone: str = "UTC"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors(cls, value: str | list[str]) -> list[str] | list[AnyHttpUrl]:
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
            default_value = cls.model_fields["cors_origins"].default  # type: ignore[index]
            return items or default_value
        return value

    @field_validator("reminder_lead_minutes", "sweep_workers", "mail_max_attempts")
    @classmethod
    def positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def validate_required(self) -> None:
        """Raise ConfigurationError when the service cannot deliver reminders."""
        missing = [
            name.upper()
            for name in ("system_api_key", "mail_sender_address")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        if self.notification_lease_seconds <= self.max_delivery_seconds:
            raise ConfigurationError(
                f"NOTIFICATION_LEASE_SECONDS ({self.notification_lease_seconds}) must exceed the "
                f"longest mail delivery ({self.max_delivery_seconds}s)"
            )

    @property
    def max_delivery_seconds(self) -> int:
        return self.mail_max_attempts * (self.mail_connect_timeout + self.mail_read_timeout)

    class Config:
        env_file = str(Path(__file__).resolve().parents[1] / ".env")
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
