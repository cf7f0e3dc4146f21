# meraki/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Local durable store ---
    LOCAL_DB_URL: str = "sqlite+aiosqlite:///./data/meraki.db"
    REDIS_URL: str | None = None  # when set, the local store lives in Redis instead
    REDIS_KEY_PREFIX: str = "meraki:"

    # --- Remote collaborator (optional) ---
    REMOTE_API_URL: str | None = None
    REMOTE_API_KEY: str | None = None
    REMOTE_READ_TIMEOUT: float = 8.0
    REMOTE_WRITE_TIMEOUT: float = 5.0
    NOTIFICATION_FETCH_TIMEOUT: float = 5.0
    NOTIFICATION_READ_TIMEOUT: float = 3.0

    # --- Sync outbox ---
    OUTBOX_BASE_DELAY: float = 2.0
    OUTBOX_MAX_DELAY: float = 300.0
    OUTBOX_MAX_ATTEMPTS: int = 8
    OUTBOX_IDLE_SECONDS: float = 60.0

    # --- Reminders / notifications ---
    BUSINESS_TIMEZONE: str = "America/Guatemala"
    REMINDER_MAX_SLEEP_SECONDS: float = 60.0
    NOTIFICATION_POLL_SECONDS: float = 30.0
    NOTIFICATION_CAPACITY: int = 50
    SEED_DEMO_DATA: bool = True
    BACKGROUND_TASKS_ENABLED: bool = True

    # --- Security ---
    API_KEY: str | None = None
    ADMIN_USER: str = "admin"
    ADMIN_PASS: str = "admin2025"

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    LOG_RESPONSES: bool = False
    MAX_LOG_LENGTH: int = 200
    SLOW_REQUEST_THRESHOLD: float = 2.0
    ERROR_AGGREGATION_THRESHOLD: int = 10

    ALLOWED_CORS_ORIGINS: str = "*"  # comma-separated list

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        return self.LOCAL_DB_URL.replace("+aiosqlite", "").replace("+asyncpg", "")

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_CORS_ORIGINS.split(",") if o.strip()]

    # Remote mode needs both an endpoint and a credential that looks real
    @property
    def remote_enabled(self) -> bool:
        key = self.REMOTE_API_KEY or ""
        return bool(self.REMOTE_API_URL) and len(key) > 10

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")


# Singleton
settings = Settings()
