"""Runtime configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scheduler and fetch engine settings.

    Every field can be overridden from the environment, e.g.
    ``IMPORTCTL_DEFAULT_IMPORT_DAYS=30``.
    """

    model_config = SettingsConfigDict(env_prefix="IMPORTCTL_", extra="ignore")

    default_import_days: int = Field(default=60, gt=0)
    default_import_months: int = Field(default=6, gt=0)
    default_forecast_years: int = Field(default=1, gt=0)
    max_import_threads: int = Field(default=5, gt=0)
    max_connect_tries: int = Field(default=5, gt=0)
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the settings loaded from the environment."""
    return Settings()
