"""Configuration and settings management using pydantic-settings."""
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="PARTIAL_EXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(
        default=True,
        description="Emit JSON log records (plain text when disabled)",
    )

    # Graph settings
    default_connection_type: str = Field(
        default="main",
        description="Connection type used when a connection does not name one",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a known logging level name."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("default_connection_type")
    @classmethod
    def validate_connection_type(cls, v: str) -> str:
        """Validate that the default connection type is not blank."""
        if not v.strip():
            raise ValueError("default_connection_type must not be empty")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
