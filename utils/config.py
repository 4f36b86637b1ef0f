"""
Configuration Management

Pydantic-based configuration system with environment variable
support, optional YAML overrides and validation for all
self-healing components.
"""

import os
from typing import Dict, Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main settings class for the self-healing core."""

    model_config = SettingsConfigDict(
        env_prefix="SELFHEAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default="Browser Self-Healing")
    app_version: str = Field(default="0.1.0")

    # Logging settings
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    # Data settings
    data_dir: str = Field(default="data")
    errors_file: Optional[str] = Field(default="data/errors.json")
    patterns_file: Optional[str] = Field(default="data/patterns.json")
    auto_persist: bool = Field(default=True)

    # Error collector settings
    max_errors: int = Field(default=1000, ge=1)
    errors_persist_limit: int = Field(default=500, ge=1)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # Pattern learner settings
    max_patterns: int = Field(default=500, ge=1)
    pattern_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    default_fix_confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    # Element finder and healer settings
    finder_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    heal_max_alternatives: int = Field(default=5, ge=1)
    auto_heal_enabled: bool = Field(default=True)

    # Result validator settings
    validation_history_size: int = Field(default=100, ge=1)


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


def load_config(config_path: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Load settings with YAML and keyword overrides.

    Values are layered: defaults, then environment, then the YAML file
    (top-level mapping or a ``self_healing`` section), then ``overrides``.

    Args:
        config_path: Optional path to a YAML configuration file
        **overrides: Explicit field values that win over everything else

    Returns:
        Validated Settings instance
    """
    data: Dict[str, Any] = {}

    if config_path and os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        data.update(config_data.get('self_healing', config_data))

    data.update(overrides)
    return Settings(**data)


# Global settings instance
settings = get_settings()
