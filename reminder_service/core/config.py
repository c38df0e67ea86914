from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REMINDER_",
        env_file=".env",
        extra="ignore",
    )

    PROJECT_NAME: str = "Reminder Service"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./reminders.db"

    # Scheduling
    SCAN_INTERVAL_MS: int = 30000
    SCAN_BATCH_SIZE: int = 500
    SCAN_MAX_WORKERS: int = 4

    # Queue transport (RabbitMQ via kombu, or memory:// in a single process)
    QUEUE_HOST: str = "127.0.0.1"
    QUEUE_PORT: int = 5672
    QUEUE_USER: str = "guest"
    QUEUE_PASSWORD: str = "guest"
    QUEUE_URL: Optional[str] = None
    QUEUE_NAME: str = "reminders.dispatch"
    QUEUE_EXCHANGE: str = "reminders"
    QUEUE_ROUTING_KEY: str = "dispatch"
    QUEUE_CONNECT_TIMEOUT: float = 5.0
    QUEUE_CONNECT_RETRIES: int = 3
    QUEUE_POLL_TIMEOUT: float = 1.0

    # Sender
    SENDER_CONCURRENCY: int = 1

    # Web push
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:admin@example.com"
    PUSH_TTL_SECONDS: int = 86400

    # API
    REQUIRE_API_KEY: bool = False
    API_KEYS: List[str] = []

    # Observability
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = False
    METRICS_PORT: int = 9100

    # --- Validators & Derived Settings ---
    @field_validator("SCAN_INTERVAL_MS", "SCAN_MAX_WORKERS", "SENDER_CONCURRENCY")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("QUEUE_URL", mode="before")
    @classmethod
    def blank_queue_url_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        if not self.QUEUE_URL:
            self.QUEUE_URL = (
                f"amqp://{quote_plus(self.QUEUE_USER)}:{quote_plus(self.QUEUE_PASSWORD)}"
                f"@{self.QUEUE_HOST}:{self.QUEUE_PORT}//"
            )
        return self

    @property
    def scan_interval_seconds(self) -> float:
        return self.SCAN_INTERVAL_MS / 1000.0


settings = Settings()
