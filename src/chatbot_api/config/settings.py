"""
Configuration management for the Chatbot API.

This module implements hierarchical configuration loading with validation,
following the pattern: CLI args > env vars > user config > defaults.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class StorageConfig(BaseModel):
    """Conversation storage configuration."""

    backend: Literal["memory", "file", "sql"] = Field(
        default="sql", description="Persistence strategy"
    )
    snapshot_path: str | None = Field(
        default=None,
        description="Snapshot file for the file backend (default: <data_dir>/conversations.json)",
    )
    database_url: str | None = Field(
        default=None,
        description="Database URL for the sql backend (default: sqlite in <data_dir>)",
    )


class CompletionConfig(BaseModel):
    """Completion provider configuration."""

    provider: Literal["openai", "openrouter", "echo"] = Field(
        default="openai", description="Completion provider"
    )
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    base_url: str | None = Field(
        default=None, description="Override for the provider's API base URL"
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Upper bound in seconds for one completion, retries included",
    )
    temperature: float | None = Field(
        default=None, ge=0.0, le=2.0, description="Sampling temperature"
    )
    max_tokens: int | None = Field(
        default=None, ge=1, le=32000, description="Maximum tokens to generate"
    )

    @field_validator("model")
    @classmethod
    def validate_model(cls, v):
        if not v or not v.strip():
            raise ValueError("Model cannot be empty")
        return v.strip()


class APIConfig(BaseModel):
    """Provider HTTP configuration."""

    timeout: int = Field(
        default=30, ge=1, le=300, description="Request timeout in seconds"
    )
    retries: int = Field(default=2, ge=0, le=10, description="Number of retries")
    backoff_factor: float = Field(
        default=1.0, ge=0.0, le=10.0, description="Base delay for exponential backoff"
    )
    max_backoff: int = Field(
        default=30, ge=1, description="Maximum backoff time in seconds"
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, ge=1, le=65535, description="Server port")
    cors_enabled: bool = Field(default=True, description="Enable CORS")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"], description="Allowed CORS origins"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError("Host cannot be empty")
        return v.strip()


class AppSettings(BaseSettings):
    """Main application settings using environment variables."""

    # Application info
    app_name: str = Field(default="Chatbot API", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development",
        description="Environment (development/test/staging/production)",
    )

    # API Keys
    openai_api_key: str | None = Field(
        default=None, description="Completion provider API key", repr=False
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Directories
    data_dir: str = Field(default="./data", description="Data directory")
    config_dir: str = Field(default="./config", description="Configuration directory")

    # Configuration sections
    storage: StorageConfig = Field(default_factory=StorageConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        valid_environments = {"development", "test", "staging", "production"}
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_api_keys(self):
        """Production must talk to a real provider."""
        if self.environment == "production" and not self.provider_configured:
            raise ValueError(
                "A completion provider API key must be configured in production"
            )
        return self

    @property
    def provider_configured(self) -> bool:
        """Whether a real completion provider can be used."""
        return self.completion.provider != "echo" and bool(self.openai_api_key)

    def get_data_path(self, filename: str) -> Path:
        """Get full path for a data file."""
        return Path(self.data_dir) / filename

    def get_config_path(self, filename: str) -> Path:
        """Get full path for a config file."""
        return Path(self.config_dir) / filename

    def get_snapshot_path(self) -> Path:
        """Snapshot file used by the file backend."""
        if self.storage.snapshot_path:
            return Path(self.storage.snapshot_path)
        return self.get_data_path("conversations.json")

    def get_database_url(self) -> str:
        """Database URL used by the sql backend."""
        if self.storage.database_url:
            return self.storage.database_url
        return f"sqlite:///{self.get_data_path('messages.db')}"


class ConfigurationManager:
    """Manages hierarchical configuration loading and validation."""

    def __init__(self):
        self._settings: AppSettings | None = None
        self._user_config: dict[str, Any] = {}

    def load_configuration(
        self,
        config_path: Path | None = None,
        override_env: dict[str, str] | None = None,
    ) -> AppSettings:
        """
        Load configuration with hierarchy: CLI/override > env vars > user config > defaults.

        Args:
            config_path: Path to user configuration file
            override_env: Environment variable overrides (simulating CLI args)

        Returns:
            Validated AppSettings instance
        """
        if config_path and config_path.exists():
            self._user_config = self._load_yaml_config(config_path)

        if override_env:
            for key, value in override_env.items():
                os.environ[key] = value

        # YAML config is the base; values also set in the environment are dropped
        # so that pydantic-settings picks the env value instead
        init_kwargs = {}
        if self._user_config:
            init_kwargs.update(self._without_env_overrides(self._user_config))

        self._settings = AppSettings(**init_kwargs)

        self._validate_configuration()

        return self._settings

    def _load_yaml_config(self, config_path: Path) -> dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
                return config or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML configuration: {e}") from e
        except FileNotFoundError:
            return {}
        except Exception as e:
            raise ValueError(f"Failed to load configuration: {e}") from e

    def _without_env_overrides(
        self, config: dict[str, Any], prefix: str = ""
    ) -> dict[str, Any]:
        """Drop YAML keys that an environment variable overrides."""
        env_keys = {key.upper() for key in os.environ}
        result: dict[str, Any] = {}
        for key, value in config.items():
            env_name = f"{prefix}{key}".upper()
            if env_name in env_keys:
                continue
            if isinstance(value, dict):
                value = self._without_env_overrides(value, prefix=f"{env_name}__")
            result[key] = value
        return result

    def _validate_configuration(self):
        """Perform additional configuration validation."""
        if not self._settings:
            raise ValueError("Configuration not loaded")

        if self._settings.storage.backend != "memory":
            self._ensure_directory(self._settings.data_dir)

        self._validate_api_key_format()

    def _ensure_directory(self, dir_path: str):
        """Ensure directory exists, create if necessary."""
        path = Path(dir_path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise ValueError(f"Cannot create directory {dir_path}: {e}") from e

    def _validate_api_key_format(self):
        if not self._settings or not self._settings.openai_api_key:
            return

        if not re.match(r"^sk-.*", self._settings.openai_api_key):
            logger.warning("Completion provider API key should start with 'sk-'")

    @property
    def settings(self) -> AppSettings:
        """Get current settings (load default if not loaded)."""
        if self._settings is None:
            self._settings = self.load_configuration()
        return self._settings

    def reset(self):
        """Reset the configuration manager (useful for testing)."""
        self._settings = None
        self._user_config = {}

    def export_config_template(self, output_path: Path):
        """Export a configuration template file."""
        template = {
            "app_name": "Chatbot API",
            "environment": "development",
            "log_level": "INFO",
            "data_dir": "./data",
            "storage": {
                "backend": "sql",
                "snapshot_path": "data/conversations.json",
                "database_url": "sqlite:///data/messages.db",
            },
            "completion": {
                "provider": "openai",
                "model": "gpt-4o-mini",
                "timeout": 60,
            },
            "api": {"timeout": 30, "retries": 2, "backoff_factor": 1.0},
            "server": {"host": "0.0.0.0", "port": 3000, "cors_enabled": True},
        }

        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(template, f, default_flow_style=False, indent=2)


# Global configuration manager instance
config_manager = ConfigurationManager()


def get_settings() -> AppSettings:
    """Get the current application settings."""
    return config_manager.settings


def load_config(config_path: Path | None = None) -> AppSettings:
    """Load configuration from file and environment."""
    return config_manager.load_configuration(config_path)
