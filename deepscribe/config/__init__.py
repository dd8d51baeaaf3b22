"""Configuration loading and schema."""

from deepscribe.config.loader import load_config
from deepscribe.config.schema import AppConfig, AppConfigRoot

__all__ = ["AppConfig", "AppConfigRoot", "load_config"]
