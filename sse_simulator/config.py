"""Configuration management for the SSE simulator."""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read from ``SSE_SIMULATOR_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SSE_SIMULATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("SSE_SIMULATOR_PORT", "PORT"))
    log_level: str = "info"

    # TLS
    use_https: bool = Field(
        default=False, validation_alias=AliasChoices("SSE_SIMULATOR_USE_HTTPS", "USE_HTTPS")
    )
    ssl_certfile: str = "/certs/cert1.pem"
    ssl_keyfile: str = "/certs/privkey1.pem"
    ssl_keyfile_password: Optional[str] = None

    # Stream engine
    idle_timeout: float = Field(default=300.0, gt=0)
    sweep_interval: float = Field(default=60.0, gt=0)
    default_interval_ms: int = Field(default=2000, ge=1)
    buffer_capacity: int = Field(default=2000, ge=1)
    chunk_buffer_capacity: int = Field(default=500, ge=1)
    large_payload_bytes: int = Field(default=1024 * 1024, ge=0)

    # Wire
    ping_interval: float = Field(default=15.0, ge=0)
    separator: str = "\n"

    @field_validator("separator")
    @classmethod
    def validate_separator(cls, v: str) -> str:
        if v not in ("\r\n", "\r", "\n"):
            raise ValueError(f"sep must be one of: \\r\\n, \\r, \\n, got: {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.lower()
        if v not in ("critical", "error", "warning", "info", "debug", "trace"):
            raise ValueError(f"unknown log level: {v}")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
