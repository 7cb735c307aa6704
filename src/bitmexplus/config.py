from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bitmexplus.adapters.bitmex.rest_client import select_base_url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bitmex_api_key: SecretStr | None = Field(default=None, alias="BITMEX_API_KEY")
    bitmex_api_secret: SecretStr | None = Field(default=None, alias="BITMEX_API_SECRET")
    bitmex_testnet: bool = Field(default=False, alias="BITMEX_TESTNET")
    bitmex_base_url: str | None = Field(default=None, alias="BITMEX_BASE_URL")

    rate_limit_poll_interval_ms: int = Field(default=250, alias="RATE_LIMIT_POLL_INTERVAL_MS")
    rate_limit_max_polls: int = Field(default=400, alias="RATE_LIMIT_MAX_POLLS")
    rate_limit_refill_interval_seconds: float = Field(
        default=1.0, alias="RATE_LIMIT_REFILL_INTERVAL_SECONDS"
    )
    rate_limit_window_seconds: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW_SECONDS")
    default_request_floor: int = Field(default=10, alias="DEFAULT_REQUEST_FLOOR")
    signature_ttl_seconds: int = Field(default=60, alias="SIGNATURE_TTL_SECONDS")
    request_timeout_seconds: float = Field(default=10.0, alias="REQUEST_TIMEOUT_SECONDS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    observability_enabled: bool = Field(default=False, alias="OBSERVABILITY_ENABLED")
    otel_service_name: str = Field(default="bitmexplus", alias="OTEL_SERVICE_NAME")
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )

    @field_validator("rate_limit_poll_interval_ms")
    def validate_poll_interval(cls, value: int) -> int:
        if value < 0:
            raise ValueError("RATE_LIMIT_POLL_INTERVAL_MS must be >= 0")
        return value

    @field_validator("rate_limit_max_polls")
    def validate_max_polls(cls, value: int) -> int:
        if value < 1:
            raise ValueError("RATE_LIMIT_MAX_POLLS must be >= 1")
        return value

    @field_validator("rate_limit_refill_interval_seconds", "rate_limit_window_seconds")
    def validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("rate limit intervals must be > 0")
        return value

    @field_validator("signature_ttl_seconds")
    def validate_signature_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SIGNATURE_TTL_SECONDS must be > 0")
        return value

    @field_validator("request_timeout_seconds")
    def validate_request_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REQUEST_TIMEOUT_SECONDS must be > 0")
        return value

    def has_credentials(self) -> bool:
        return bool(
            self.bitmex_api_key
            and self.bitmex_api_secret
            and self.bitmex_api_key.get_secret_value()
            and self.bitmex_api_secret.get_secret_value()
        )

    def resolved_base_url(self) -> str:
        if self.bitmex_base_url:
            return self.bitmex_base_url.rstrip("/")
        return select_base_url(testnet=self.bitmex_testnet)
