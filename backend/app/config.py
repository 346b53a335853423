from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "NetAvail Availability Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "*"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://netavail:netavail@db:5432/netavail"

    # Device inventory API
    INVENTORY_API_URL: str = "https://api.extremecloudiq.com"
    INVENTORY_TIMEOUT_SECONDS: float = 30.0
    INVENTORY_PAGE_LIMIT: int = 1000
    INVENTORY_SSL_VERIFY: bool = True

    # Polling
    POLLING_INTERVAL_SECONDS: int = 300
    FAST_POLLING_INTERVAL_SECONDS: int = 30
    FAST_POLL_RETRIES: int = 3
    FAST_POLL_BASE_DELAY_SECONDS: float = 1.0
    FAST_POLL_ATTEMPT_TIMEOUT_SECONDS: float = 10.0

    # Flapping detection
    FLAPPING_WINDOW_SECONDS: int = 300
    FLAPPING_THRESHOLD: int = 5

    # Planned downtime: zone used for time-of-day / day matching of recurring windows
    DOWNTIME_TIMEZONE: str = "UTC"

    # SLA
    DEFAULT_SLA_TARGET: float = 99.5

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
