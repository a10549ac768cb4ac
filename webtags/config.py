from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    metrics_request_name: str = Field(default="http_server_requests", alias="METRICS_REQUEST_NAME")
    metrics_ignore_trailing_slash: bool = Field(default=True, alias="METRICS_IGNORE_TRAILING_SLASH")
    metrics_long_requests_enabled: bool = Field(default=True, alias="METRICS_LONG_REQUESTS_ENABLED")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
