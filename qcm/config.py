"""
Application configuration module.

Settings are read, highest priority first, from:
1. Environment variables
2. A ``.env`` file in the working directory
3. An optional YAML or JSON config file passed to ``load_settings``
4. Defaults
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qcm.common.logger import DEFAULT_LOG_FORMAT, configure_logger

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./qcm.db"
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = DEFAULT_LOG_FORMAT
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    # Engine settings
    ATTEMPT_SAVE_RETRIES: int = 3

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level"""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Log level must be one of {_LOG_LEVELS}")
        return level

    @field_validator("ATTEMPT_SAVE_RETRIES")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ATTEMPT_SAVE_RETRIES cannot be negative")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment beats values loaded from a config file
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def _load_from_file(path: Path) -> Dict[str, Any]:
    """
    Load configuration values from a file.

    Args:
        path: Path to a YAML or JSON config file

    Returns:
        Loaded configuration dictionary
    """
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    with path.open("r", encoding="utf-8") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

    return data or {}


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings, merging a config file under environment overrides.

    Args:
        config_path: Path to a YAML or JSON file; defaults to ``$CONFIG_PATH``

    Returns:
        Loaded settings
    """
    config_path = config_path or os.environ.get("CONFIG_PATH")
    file_config = _load_from_file(Path(config_path)) if config_path else {}
    return Settings(**file_config)


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply the logging settings to the application logger."""
    return configure_logger(
        level=settings.LOG_LEVEL,
        format_string=settings.LOG_FORMAT,
        use_json=settings.LOG_JSON,
        log_file=settings.LOG_FILE,
    )


# Create global settings instance
settings = Settings()
