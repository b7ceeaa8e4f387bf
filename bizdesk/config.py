"""
Configuration module for Bizdesk.

Provides centralized configuration for the record store, the trash view and
the activity log.
"""

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class TrashOrdering(str, Enum):
    """Ordering of entries within each trash group."""

    DELETED_AT_DESC = "deleted_at_desc"  # newest deletion first, id desc tie-break
    INSERTION = "insertion"  # id ascending


class BizdeskConfig(BaseModel):
    """Central configuration for Bizdesk.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (``configure(...)`` / ``set_config``)
        2. Environment variables (BIZDESK_ prefix)
        3. Default values

    Example:
        >>> config = BizdeskConfig(database_url="sqlite:///bizdesk.db")

        Loading from environment:

        >>> import os
        >>> os.environ['BIZDESK_DATABASE_URL'] = 'postgresql://localhost/bizdesk'
        >>> os.environ['BIZDESK_ACTIVITY_LOG_ENABLED'] = 'false'
        >>> config = BizdeskConfig.from_env()

    Environment Variables:
        - BIZDESK_APPLICATION_NAME
        - BIZDESK_ENVIRONMENT
        - BIZDESK_DATABASE_URL
        - BIZDESK_DATABASE_ECHO
        - BIZDESK_LOG_LEVEL
        - BIZDESK_TRASH_ORDERING
        - BIZDESK_ACTIVITY_LOG_ENABLED
        - BIZDESK_SQLITE_FOREIGN_KEYS
    """

    # General settings
    application_name: str = Field("Bizdesk", description="Name shown by the CLI")
    environment: str = Field(
        "production", description="Environment (development, testing, production)"
    )
    log_level: str = Field("WARNING", description="Root log level for the CLI")

    # Store settings
    database_url: str = Field(
        "sqlite:///bizdesk.db", description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(False, description="Echo SQL statements")
    sqlite_foreign_keys: bool = Field(
        True, description="Enforce foreign keys on SQLite connections"
    )

    # Lifecycle settings
    trash_ordering: TrashOrdering = Field(
        TrashOrdering.DELETED_AT_DESC, description="Ordering of trash entries"
    )
    activity_log_enabled: bool = Field(
        True, description="Record lifecycle events in the activity log"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "testing", "staging", "production"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if "://" not in v:
            raise ValueError(
                "database_url must be a SQLAlchemy URL, e.g. sqlite:///bizdesk.db"
            )
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "BIZDESK_") -> "BizdeskConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            if field_type is bool:
                config_dict[field_name] = value.lower() in ("true", "1", "yes", "on")
            else:
                # Enums and strings are validated by the model
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    def get_store_config(self) -> Dict[str, Any]:
        """Keyword arguments for ``EntityStore.from_url``."""
        return {
            "url": self.database_url,
            "echo": self.database_echo,
            "sqlite_foreign_keys": self.sqlite_foreign_keys,
        }


# Global configuration instance
_config: Optional[BizdeskConfig] = None


def get_config() -> BizdeskConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        try:
            _config = BizdeskConfig.from_env()
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring invalid BIZDESK_ environment settings: {e}")
            _config = BizdeskConfig.model_validate({})

    return _config


def set_config(config: Optional[BizdeskConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> BizdeskConfig:
    """
    Configure Bizdesk with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = BizdeskConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = BizdeskConfig(**config_dict)

    return _config
