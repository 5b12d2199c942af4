from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIERLOADER_", env_file=".env", extra="ignore")

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Loader defaults
    default_namespace: str | None = None
    default_expire: int | None = Field(default=None, gt=0)
    local_cache: bool = True
    binary_payload: bool = False
    max_batch_size: int | None = Field(default=None, ge=1)

    # Observability
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
