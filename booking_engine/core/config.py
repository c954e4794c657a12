# booking_engine/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
import urllib.parse

class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # Full SQLAlchemy URL wins over the POSTGRES_* parts (tests use sqlite+aiosqlite)
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "booking"
    POSTGRES_USER: str = "booking"
    POSTGRES_PASSWORD: str = ""
    DB_ECHO: bool = False

    # --- Redis (holds, rate limits) ---
    REDIS_URL: str | None = None

    # --- Channel auth ---
    AUTOMATION_API_KEY: str | None = None
    VOICE_SIGNATURE_MAX_SKEW_SECONDS: int = 300

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    LOG_RESPONSES: bool = False
    MAX_LOG_LENGTH: int = 200
    SLOW_REQUEST_THRESHOLD: float = 2.0

    # --- Google Calendar (busy-time oracle + event sync) ---
    GOOGLE_CALENDAR_ENABLED: bool = False
    GOOGLE_SERVICE_ACCOUNT_JSON: str | None = None
    ORACLE_TIMEOUT_SECONDS: float = 3.0

    # --- Booking engine ---
    BOOKING_MAX_RETRIES: int = 3
    BOOKING_RETRY_BASE_DELAY: float = 0.05
    IDEMPOTENCY_WINDOW_HOURS: int = 72
    MAX_RANGE_DAYS: int = 60
    DEFAULT_PHONE_REGION: str = "NZ"

    # --- Holds ---
    HOLD_DEFAULT_MINUTES: int = 15
    HOLD_MIN_MINUTES: int = 5
    HOLD_MAX_MINUTES: int = 60
    MAX_HOLDS_PER_ORG: int = 200

    # --- Public channel throttling ---
    RATE_LIMIT_PER_MINUTE: int = 30

    ALLOWED_CORS_ORIGINS: str = "*"  # comma-separated list

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV.lower() in ("test", "testing")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("production", "prod")

# Singleton
settings = Settings()
