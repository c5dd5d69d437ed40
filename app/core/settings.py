from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./experiments.db"

    # Bearer tokens accepted by the HTTP surface
    TOKENS: list[str] = Field(default_factory=list)

    # Optional JSON snapshot published at startup
    EXPERIMENTS_FILE: Optional[str] = None

    RECORD_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    RECORDER_MAX_WORKERS: int = Field(default=4, ge=1)

    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


config_settings = Settings()
