"""
Configuration management for the reminder engine.
"""
from typing import Optional, List, Dict
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from reminder_engine.constants import (
    MEDICATION_REMINDER_OFFSETS,
    APPOINTMENT_REMINDER_OFFSETS,
    SHIFT_REMINDER_OFFSETS,
    SCHEDULER_TICK_SECONDS,
    REFILL_CHECK_TIME,
    DEFAULT_WORKER_CONCURRENCY,
    WORKER_POLL_INTERVAL_SECONDS,
    JOB_VISIBILITY_TIMEOUT_SECONDS,
    WORKER_SHUTDOWN_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BACKOFF_MAX_MS,
    COMPLETED_JOB_RETENTION_HOURS,
    FAILED_JOB_RETENTION_HOURS,
    SCHEDULER_RUN_RETENTION_DAYS,
    DEAD_LETTER_RETENTION_DAYS,
)


class ReminderConfig(BaseModel):
    """When reminders fire."""
    tick_seconds: int = Field(SCHEDULER_TICK_SECONDS, ge=1, description="Scheduler tick interval in seconds")
    medication_offsets: List[int] = Field(
        default_factory=lambda: list(MEDICATION_REMINDER_OFFSETS),
        description="Minutes before a scheduled dose"
    )
    appointment_offsets: List[int] = Field(
        default_factory=lambda: list(APPOINTMENT_REMINDER_OFFSETS),
        description="Minutes before an appointment"
    )
    shift_offsets: List[int] = Field(
        default_factory=lambda: list(SHIFT_REMINDER_OFFSETS),
        description="Minutes before a caregiver shift"
    )
    refill_check_time: str = Field(REFILL_CHECK_TIME, description="Daily refill check time (HH:MM, default zone)")
    default_timezone: str = Field("UTC", description="Fallback IANA zone when neither user nor care recipient has one")


class RetryPolicy(BaseModel):
    """
    Exponential backoff policy for one job category.

    Attempt n (1-based) that fails transiently is retried after
    min(base_delay_ms * multiplier ** (n - 1), max_delay_ms).
    """
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1, le=20)
    base_delay_ms: int = Field(DEFAULT_BACKOFF_BASE_MS, ge=0)
    multiplier: float = Field(DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)
    max_delay_ms: int = Field(DEFAULT_BACKOFF_MAX_MS, ge=0)

    def delay_ms(self, attempt: int) -> int:
        """Backoff in milliseconds after the given failed attempt."""
        exponent = max(attempt - 1, 0)
        delay = self.base_delay_ms * (self.multiplier ** exponent)
        return int(min(delay, self.max_delay_ms))


class RetryConfig(BaseModel):
    """Retry policies keyed by job category ("medication", "notification", ...)."""
    default: RetryPolicy = Field(default_factory=RetryPolicy)
    categories: Dict[str, RetryPolicy] = Field(default_factory=dict)

    def policy_for(self, category: str) -> RetryPolicy:
        return self.categories.get(category, self.default)


class WorkerPoolConfig(BaseModel):
    """Worker pool sizing and queue polling."""
    concurrency: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_WORKER_CONCURRENCY))
    poll_interval_seconds: float = Field(WORKER_POLL_INTERVAL_SECONDS, gt=0)
    visibility_timeout_seconds: int = Field(JOB_VISIBILITY_TIMEOUT_SECONDS, ge=1)
    shutdown_timeout_seconds: float = Field(WORKER_SHUTDOWN_TIMEOUT_SECONDS, ge=0)

    def concurrency_for(self, category: str) -> int:
        return self.concurrency.get(category, 1)


class PushConfig(BaseModel):
    """Push gateway configuration."""
    enabled: bool = False
    gateway_url: str = ""  # https://push.example.com/send
    api_key: Optional[str] = None


class EmailConfig(BaseModel):
    """Email (SendGrid) configuration."""
    enabled: bool = False
    api_key: Optional[str] = None
    from_address: str = "reminders@example.com"
    from_name: str = "Care Reminders"
    api_url: str = "https://api.sendgrid.com/v3/mail/send"


class SmsConfig(BaseModel):
    """SMS (Twilio) configuration."""
    enabled: bool = False
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    api_base_url: str = "https://api.twilio.com/2010-04-01"


class AlertConfig(BaseModel):
    """Dead-letter alert webhook (Slack-compatible)."""
    enabled: bool = False
    webhook_url: Optional[str] = None
    channel: Optional[str] = None


class HistoryConfig(BaseModel):
    """Job history and audit retention."""
    completed_job_retention_hours: int = Field(COMPLETED_JOB_RETENTION_HOURS, ge=1)
    failed_job_retention_hours: int = Field(FAILED_JOB_RETENTION_HOURS, ge=1)
    scheduler_run_retention_days: int = Field(SCHEDULER_RUN_RETENTION_DAYS, ge=1)
    dead_letter_retention_days: int = Field(DEAD_LETTER_RETENTION_DAYS, ge=1)


class Settings(BaseSettings):
    """Application settings loaded from environment and .env file."""

    # Application
    app_name: str = "Reminder Engine"
    app_version: str = Field(default_factory=lambda: __import__('reminder_engine').__version__)
    debug: bool = False
    log_dir: Optional[str] = Field("./data/logs", description="Directory for the rotating log file (unset to disable)")

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Database
    database_url: str = Field(
        "sqlite+aiosqlite:///./data/reminders.db",
        description="Database connection URL"
    )

    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    workers: WorkerPoolConfig = Field(default_factory=WorkerPoolConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    sms: SmsConfig = Field(default_factory=SmsConfig)
    alert: AlertConfig = Field(default_factory=AlertConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        env_nested_delimiter = "__"


# Global settings instance
settings = Settings()
