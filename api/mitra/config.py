"""Dashboard configuration from environment variables."""

from functools import lru_cache

from pydantic import ValidationError
from pydantic_settings import BaseSettings


class ConfigError(RuntimeError):
    """Raised at startup when required settings are missing or invalid."""


class Settings(BaseSettings):
    # Remote table store (PostgREST / Supabase). Both are required.
    SUPABASE_URL: str
    SUPABASE_KEY: str

    AGENTS_TABLE: str = "agents"
    JOBS_TABLE: str = "jobs"
    CUSTOMERS_TABLE: str = "customers"
    STORE_TIMEOUT_SEC: float = 10.0

    # Session state
    REDIS_URL: str = "redis://redis:6379/0"
    SESSION_TTL_SEC: int = 8 * 3600
    SESSION_COOKIE: str = "mitra_sid"
    COOKIE_SECURE: bool = False

    # Rendering
    BRAND_NAME: str = "mishTee Delivery Mitra"
    DEFAULT_MAP_LAT: float = 19.1364   # Andheri West, Mumbai
    DEFAULT_MAP_LNG: float = 72.8296

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigError(
            f"Invalid or missing configuration: {', '.join(missing)}. "
            "Set SUPABASE_URL and SUPABASE_KEY before starting the dashboard."
        ) from e


settings = get_settings()
