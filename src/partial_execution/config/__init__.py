"""Configuration package."""
from partial_execution.config.settings import get_settings, reset_settings, Settings

__all__ = ["get_settings", "reset_settings", "Settings"]
