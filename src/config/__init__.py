"""Configuration management for the process runner API.

This module provides a single Settings class with flat, environment-driven
fields plus grouped read-only views for the individual subsystems.

Usage:
    from src.config import settings

    # Grouped access
    settings.api.api_port
    settings.sandbox.nsjail_binary

    # Flat access
    settings.api_port
    settings.sandbox_enabled
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .api import APIConfig
from .logging import LoggingConfig
from .sandbox import SandboxConfig


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)
    enable_docs: bool = Field(default=True)
    enable_cors: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=list)

    # Sandbox (nsjail) Configuration
    sandbox_enabled: bool = Field(
        default=False,
        description="Wrap every spawned executable in an nsjail sandbox",
    )
    nsjail_binary: str = Field(default="nsjail", description="Path to nsjail binary")
    sandbox_time_limit: int = Field(
        default=0,
        ge=0,
        le=86400,
        description="Wall-clock limit enforced by nsjail (seconds, 0 = unlimited)",
    )
    sandbox_network: bool = Field(
        default=False, description="Allow network access inside the sandbox"
    )
    sandbox_user_id: int = Field(default=65534, ge=0)
    sandbox_group_id: int = Field(default=65534, ge=0)
    sandbox_hostname: str = Field(default="sandbox")
    sandbox_rlimit_nofile: int = Field(default=256, ge=16)
    sandbox_rlimit_nproc: int = Field(default=256, ge=1)
    sandbox_rlimit_fsize_mb: int = Field(default=100, ge=1)

    # Run Configuration
    stderr_css_class: str = Field(
        default="stderr",
        description="CSS class of the span wrapping standard-error fragments",
    )
    kill_process_group: bool = Field(
        default=True,
        description="Signal the whole process group when a run is stopped",
    )

    # Output Channel Configuration
    channel_idle_timeout_minutes: int = Field(default=30, ge=1, le=1440)
    channel_cleanup_interval_minutes: int = Field(default=5, ge=1, le=60)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    enable_access_logs: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers are supported."""
        fmt = v.lower()
        if fmt not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return fmt

    @field_validator("stderr_css_class")
    @classmethod
    def validate_css_class(cls, v):
        """The class name is written verbatim into markup."""
        if not v or any(c in v for c in "<>'\" "):
            raise ValueError("stderr_css_class must be a plain class name")
        return v

    @property
    def api(self) -> APIConfig:
        """Access API configuration group."""
        return APIConfig(
            api_host=self.api_host,
            api_port=self.api_port,
            api_debug=self.api_debug,
            api_reload=self.api_reload,
            enable_docs=self.enable_docs,
            enable_cors=self.enable_cors,
            cors_origins=self.cors_origins,
        )

    @property
    def sandbox(self) -> SandboxConfig:
        """Access sandbox (nsjail) configuration group."""
        return SandboxConfig(
            sandbox_enabled=self.sandbox_enabled,
            nsjail_binary=self.nsjail_binary,
            sandbox_time_limit=self.sandbox_time_limit,
            sandbox_network=self.sandbox_network,
            sandbox_user_id=self.sandbox_user_id,
            sandbox_group_id=self.sandbox_group_id,
            sandbox_hostname=self.sandbox_hostname,
            sandbox_rlimit_nofile=self.sandbox_rlimit_nofile,
            sandbox_rlimit_nproc=self.sandbox_rlimit_nproc,
            sandbox_rlimit_fsize_mb=self.sandbox_rlimit_fsize_mb,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            enable_access_logs=self.enable_access_logs,
        )

    def get_channel_idle_timeout_seconds(self) -> int:
        """Get output channel idle timeout in seconds."""
        return self.channel_idle_timeout_minutes * 60


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "APIConfig",
    "LoggingConfig",
    "SandboxConfig",
]
