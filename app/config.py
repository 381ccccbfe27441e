from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    service_name: str = Field(default="greeter-demo", alias="OTEL_SERVICE_NAME")
    service_version: str = Field(default="0.1.0", alias="SERVICE_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    otel_export_enabled: bool = Field(default=True, alias="OTEL_EXPORT_ENABLED")
    otlp_endpoint: str = Field(default="http://localhost:4318", alias="OTEL_EXPORTER_OTLP_ENDPOINT")
    otlp_headers: str = Field(default="", alias="OTEL_EXPORTER_OTLP_HEADERS")
    metric_export_interval_ms: int = Field(default=10_000, gt=0, alias="OTEL_METRIC_EXPORT_INTERVAL_MS")
    tracing_sampling_probability: float = Field(default=1.0, ge=0.0, le=1.0, alias="TRACING_SAMPLING_PROBABILITY")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["console", "json"] = Field(default="console", alias="LOG_FORMAT")

    database_url: str = Field(default="sqlite+pysqlite:///:memory:", alias="DATABASE_URL")

    greet_delay_ms: int = Field(default=50, ge=0, alias="GREET_DELAY_MS")
    slow_delay_ms: int = Field(default=500, ge=0, alias="SLOW_DELAY_MS")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")

    @property
    def otlp_base_url(self) -> str:
        return self.otlp_endpoint.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
