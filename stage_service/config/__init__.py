"""Configuration — pydantic-settings backed service settings."""
from .settings import Settings, settings

__all__ = ["Settings", "settings"]
