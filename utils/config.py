from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from the environment and .env

    Field names map to upper-case variables: MONGO_URI, DATABASE_NAME,
    AUTH_HEADER, ENVIRONMENT, LOG_LEVEL, PAGE_SIZE, ENABLE_MAINTENANCE.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongo_uri: str = "mongodb://localhost:27017"
    database_name: str = "forum"
    auth_header: str = "X-Authorization"
    environment: str = "development"
    log_level: str = "INFO"
    page_size: int = Field(20, ge=1, le=100)
    enable_maintenance: bool = Field(False, description="Expose /db/reset and /db/resample outside production")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return the process settings, loaded once"""
    return Settings()
