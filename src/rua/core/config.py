"""
Rua Configuration Management

Provides centralized configuration management with validation and environment support.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Logging level")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    max_file_size: int = Field(
        default=10_000_000, description="Max log file size in bytes"
    )
    backup_count: int = Field(default=5, description="Number of backup log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class ExtensionsConfig(BaseModel):
    """Extension runtime configuration."""

    data_dir: str = Field(
        default_factory=lambda: str(Path.home() / ".rua"),
        description="Base directory for extension data",
    )
    extensions_dir_name: str = Field(
        default="extensions", description="Managed extension store, under data_dir"
    )
    registry_file: str = Field(
        default="registry.json", description="Registry document, under the store"
    )
    storage_dir_name: str = Field(
        default="storage", description="Per-extension key-value data, under data_dir"
    )
    load_timeout_ms: int = Field(
        default=5000, description="Deadline for importing and activating an extension"
    )
    shutdown_timeout_ms: int = Field(
        default=1000, description="Deadline for each deactivate call on shutdown"
    )
    http_timeout_s: float = Field(
        default=30.0, description="Total timeout for extension HTTP requests"
    )
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub API base for github: installs"
    )

    @field_validator("load_timeout_ms", "shutdown_timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Invalid timeout: {v}. Must be positive")
        return v

    def get_extensions_dir(self) -> Path:
        return Path(self.data_dir).expanduser() / self.extensions_dir_name

    def get_registry_path(self) -> Path:
        return self.get_extensions_dir() / self.registry_file

    def get_storage_dir(self) -> Path:
        return Path(self.data_dir).expanduser() / self.storage_dir_name


class RuaConfig(BaseSettings):
    """Main Rua configuration."""

    # Environment and deployment
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configurations
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    extensions: ExtensionsConfig = Field(default_factory=ExtensionsConfig)

    model_config = SettingsConfigDict(
        env_prefix="RUA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )


# Global configuration instance
_config: Optional[RuaConfig] = None


def get_config() -> RuaConfig:
    """
    Get the global configuration instance.

    Returns:
        The global RuaConfig instance
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def load_config(config_file: Optional[Path] = None) -> RuaConfig:
    """
    Load configuration from file and environment variables.

    Args:
        config_file: Optional path to a dotenv-style configuration file

    Returns:
        Loaded configuration instance

    Raises:
        ConfigurationError: If a configured value is invalid
    """
    env_file = str(config_file) if config_file and config_file.exists() else None
    try:
        if env_file:
            return RuaConfig(_env_file=env_file)
        return RuaConfig()
    except PydanticValidationError as e:
        source = env_file or "environment"
        raise ConfigurationError(
            f"Invalid configuration from {source}: {e.error_count()} error(s)",
            {"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]},
        )


def reload_config(config_file: Optional[Path] = None) -> RuaConfig:
    """
    Reload the global configuration.

    Args:
        config_file: Optional path to configuration file

    Returns:
        Reloaded configuration instance
    """
    global _config
    _config = load_config(config_file)
    return _config


def set_config(config: RuaConfig) -> None:
    """Replace the global configuration instance."""
    global _config
    _config = config

