"""Configuration management for Stargazer Sync."""

from .api import APIConfig, CheckpointConfig
from .settings import Settings

__all__ = ["Settings", "APIConfig", "CheckpointConfig"]
