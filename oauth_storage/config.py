"""
Configuration Manager for the OAuth 2.0 storage layer

Collects every setting the storage layer, the resource owner adapters and
the logging setup consume into typed dataclasses. Values come from
environment variables, optionally seeded from a ``.env`` file.

Environment variables:
- OAUTH_STORAGE_DSN, OAUTH_STORAGE_USERNAME, OAUTH_STORAGE_PASSWORD
- OAUTH_STORAGE_PERSISTENT, OAUTH_ALLOW_UNREGISTERED_CLIENTS
- RESOURCE_OWNER_BACKEND (saml|dummy)
- SAML_USE_NAMEID, SAML_ID_ATTRIBUTE, SAML_DISPLAY_NAME_ATTRIBUTE
- DUMMY_RESOURCE_OWNER_ID, DUMMY_RESOURCE_OWNER_DISPLAY_NAME
- LOG_LEVEL, LOG_FORMAT (text|json), LOG_FILE
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DSN = "sqlite:data/oauth.sqlite"
RESOURCE_OWNER_BACKENDS = ("saml", "dummy")
LOG_FORMATS = ("text", "json")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StorageConfig:
    """Connection settings for the storage backend."""

    dsn: str
    username: Optional[str] = None
    password: Optional[str] = None
    persistent_connection: bool = False
    allow_unregistered_clients: bool = False

    @property
    def enforce_foreign_keys(self) -> bool:
        # unregistered clients have no Client row to reference
        return not self.allow_unregistered_clients


@dataclass
class ResourceOwnerConfig:
    """Settings for the resource owner identity adapters."""

    backend: str = "saml"
    use_nameid: bool = True
    id_attribute: Optional[str] = None
    display_name_attribute: str = "cn"
    dummy_id: str = "demo"
    dummy_display_name: str = "Demo User"


@dataclass
class LogConfig:
    """Logging settings."""

    level: str = "INFO"
    format: str = "text"
    file: Optional[str] = None


class ConfigManager:
    """
    Configuration manager for the storage layer.

    Loads once on construction; call ``reload()`` after changing the
    environment.
    """

    def __init__(self, env_file: str | Path | None = None):
        self._env_file = env_file
        self._storage_config: Optional[StorageConfig] = None
        self._resource_owner_config: Optional[ResourceOwnerConfig] = None
        self._log_config: Optional[LogConfig] = None
        self._load_configuration()

    def _load_configuration(self):
        """Load all configuration from the environment and defaults."""
        if self._env_file is not None:
            env_path = Path(self._env_file)
            if env_path.exists():
                load_dotenv(dotenv_path=env_path)
        else:
            load_dotenv()

        self._storage_config = self._load_storage_config()
        self._resource_owner_config = self._load_resource_owner_config()
        self._log_config = self._load_log_config()

        issues = self.validate_configuration()
        if issues:
            for issue in issues:
                logger.error(f"Configuration issue: {issue}")
            raise ConfigurationError("; ".join(issues))
        logger.debug("Configuration loaded successfully")

    def _load_storage_config(self) -> StorageConfig:
        return StorageConfig(
            dsn=os.getenv("OAUTH_STORAGE_DSN", DEFAULT_DSN),
            username=os.getenv("OAUTH_STORAGE_USERNAME") or None,
            password=os.getenv("OAUTH_STORAGE_PASSWORD") or None,
            persistent_connection=_env_bool("OAUTH_STORAGE_PERSISTENT"),
            allow_unregistered_clients=_env_bool("OAUTH_ALLOW_UNREGISTERED_CLIENTS"),
        )

    def _load_resource_owner_config(self) -> ResourceOwnerConfig:
        defaults = ResourceOwnerConfig()
        return ResourceOwnerConfig(
            backend=os.getenv("RESOURCE_OWNER_BACKEND", defaults.backend).strip().lower(),
            use_nameid=_env_bool("SAML_USE_NAMEID", defaults.use_nameid),
            id_attribute=os.getenv("SAML_ID_ATTRIBUTE") or None,
            display_name_attribute=os.getenv("SAML_DISPLAY_NAME_ATTRIBUTE", defaults.display_name_attribute),
            dummy_id=os.getenv("DUMMY_RESOURCE_OWNER_ID", defaults.dummy_id),
            dummy_display_name=os.getenv("DUMMY_RESOURCE_OWNER_DISPLAY_NAME", defaults.dummy_display_name),
        )

    def _load_log_config(self) -> LogConfig:
        return LogConfig(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "text").lower(),
            file=os.getenv("LOG_FILE") or None,
        )

    @property
    def storage(self) -> StorageConfig:
        """Get storage configuration."""
        if self._storage_config is None:
            raise RuntimeError("Configuration not loaded")
        return self._storage_config

    @property
    def resource_owner(self) -> ResourceOwnerConfig:
        """Get resource owner adapter configuration."""
        if self._resource_owner_config is None:
            raise RuntimeError("Configuration not loaded")
        return self._resource_owner_config

    @property
    def log(self) -> LogConfig:
        """Get logging configuration."""
        if self._log_config is None:
            raise RuntimeError("Configuration not loaded")
        return self._log_config

    def validate_configuration(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.storage.dsn.startswith("sqlite:"):
            issues.append(f"Unsupported DSN (only sqlite:<path> is supported): {self.storage.dsn}")

        backend = self.resource_owner.backend
        if backend not in RESOURCE_OWNER_BACKENDS:
            issues.append(f"Unknown RESOURCE_OWNER_BACKEND: {backend}")
        elif backend == "saml" and not self.resource_owner.use_nameid and not self.resource_owner.id_attribute:
            issues.append("SAML_ID_ATTRIBUTE is required when SAML_USE_NAMEID is disabled")

        if self.log.format not in LOG_FORMATS:
            issues.append(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")
        if not isinstance(logging.getLevelName(self.log.level), int):
            issues.append(f"Unknown LOG_LEVEL: {self.log.level}")

        return issues

    def reload(self):
        """Reload configuration from environment variables."""
        self._load_configuration()


# Global configuration instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def reset_config():
    """Drop the global configuration so the next access reloads it."""
    global _config_manager
    _config_manager = None


__all__ = [
    "ConfigManager",
    "LogConfig",
    "ResourceOwnerConfig",
    "StorageConfig",
    "get_config",
    "reset_config",
]
