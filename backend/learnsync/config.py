import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ortto_api_key: Optional[str] = Field(None, alias="ORTTO_API_KEY")
    ortto_api_base: str = Field("https://api.eu.ap3api.com/v1", alias="ORTTO_API_BASE")
    ortto_timeout_seconds: float = Field(15.0, alias="ORTTO_TIMEOUT_SECONDS")
    thinkific_api_key: Optional[str] = Field(None, alias="THINKIFIC_API_KEY")
    thinkific_subdomain: Optional[str] = Field(None, alias="THINKIFIC_SUBDOMAIN")
    thinkific_api_base: str = Field("https://api.thinkific.com/api/v2", alias="THINKIFIC_API_BASE")
    thinkific_webhook_secret: Optional[str] = Field(None, alias="THINKIFIC_WEBHOOK_SECRET")
    webhook_url: Optional[str] = Field(None, alias="WEBHOOK_URL")
    debug_endpoints: bool = Field(False, alias="LEARNSYNC_DEBUG_ENDPOINTS")
    debounce_seconds: float = Field(300.0, gt=0, alias="LEARNSYNC_DEBOUNCE_SECONDS")
    flush_on_shutdown: bool = Field(True, alias="LEARNSYNC_FLUSH_ON_SHUTDOWN")
    data_path: Optional[str] = Field(None, alias="LEARNSYNC_DATA_PATH")
    database_url: Optional[str] = Field(None, alias="LEARNSYNC_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LEARNSYNC_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LEARNSYNC_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LEARNSYNC_DATABASE_ECHO")
    persistence_mode: Literal["json", "database"] = Field(
        "json",
        alias="LEARNSYNC_PERSISTENCE_MODE",
    )

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid learnsync configuration: {exc}") from exc
