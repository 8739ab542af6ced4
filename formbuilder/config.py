from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings, read from FORMBUILDER_* environment variables or .env."""

    REMOTE_TIMEOUT_SECONDS: float = 10.0
    REMOTE_MAX_WORKERS: int = 4
    DEFAULT_ACTOR_ID: str = "system"
    STRICT_ANSWER_TYPES: bool = False

    model_config = SettingsConfigDict(env_prefix="FORMBUILDER_", env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Instantiate settings once per process."""
    return Settings()
