from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration of the realtime service, read from the environment and `.env`."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
    ]

    # Access tokens are verified with the accounts service's key
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ALGORITHM: str = "HS256"

    # Database
    POSTGRES_HOST: str = "db"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "betting_social"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* pieces
    DATABASE_URL: str | None = None

    # Redis relay between worker processes; "disabled" keeps events in-process
    REDIS_URL: str = "redis://redis:6379/0"
    REALTIME_RELAY_CHANNEL: str = "realtime:events"

    # Typing rows are deleted this long after the last keystroke signal
    TYPING_TIMEOUT_SECONDS: float = 3.0
    # How long clients keep an in-app notification toast on screen
    NOTIFICATION_TOAST_MS: int = 5000

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str) and not value.startswith("["):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def is_hosted(self) -> bool:
        return self.ENVIRONMENT.lower() in ("production", "staging")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
