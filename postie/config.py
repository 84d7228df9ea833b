"""Runtime settings, read from POSTIE_* environment variables or a .env file."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PATH = Path.home() / ".postie" / "postie.db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POSTIE_", env_file=".env", extra="ignore")

    db_path: Path = DEFAULT_DB_PATH

    # HTTP client
    request_timeout: float = 30.0
    verify_ssl: bool = True
    follow_redirects: bool = True

    log_level: str = "WARNING"


@lru_cache
def get_settings() -> Settings:
    return Settings()
