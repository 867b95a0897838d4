"""
Configuration settings management for portalsync.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.portalsync/config.yaml by default, with the
path overridable via the PORTALSYNC_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".portalsync"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# API Management REST API version used for every management call
DEFAULT_API_VERSION = "2019-12-01"

AZURE_LOGIN_ENDPOINT = "https://login.microsoftonline.com"
AZURE_MANAGEMENT_ENDPOINT = "https://management.azure.com"


@dataclass
class AzureConfig:
    """Azure subscription, service principal and API Management instance."""

    subscription_id: str = ""
    tenant_id: str = ""
    client_id: str = ""
    resource_group: str = ""
    service_name: str = ""
    api_version: str = DEFAULT_API_VERSION
    login_endpoint: str = AZURE_LOGIN_ENDPOINT
    management_endpoint: str = AZURE_MANAGEMENT_ENDPOINT


@dataclass
class HttpConfig:
    """HTTP client settings."""

    timeout: float = 30.0


@dataclass
class Settings:
    """
    Complete portalsync configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with PORTALSYNC_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        log_format: Log line format, "text" or "json".
        log_file: Optional file to write logs to instead of stderr.
        azure: Azure identity and API Management instance settings.
        http: HTTP client settings.
    """

    log_level: str = "INFO"
    log_format: str = "text"
    log_file: str = ""

    azure: AzureConfig = field(default_factory=AzureConfig)
    http: HttpConfig = field(default_factory=HttpConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from PORTALSYNC_CONFIG environment variable if set,
    otherwise returns the default path (~/.portalsync/config.yaml).
    """
    env_path = os.environ.get("PORTALSYNC_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.
    A missing file is not an error: defaults and environment apply.

    Args:
        config_path: Optional path to configuration file.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(
                _settings_to_dict(settings), f, default_flow_style=False, sort_keys=False
            )
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("portalsync") or {}

    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()
    if "log_format" in general:
        settings.log_format = str(general["log_format"]).lower()
    if "log_file" in general:
        settings.log_file = str(general["log_file"] or "")

    azure = data.get("azure") or {}
    for key in (
        "subscription_id",
        "tenant_id",
        "client_id",
        "resource_group",
        "service_name",
        "api_version",
        "login_endpoint",
        "management_endpoint",
    ):
        if key in azure and azure[key] is not None:
            setattr(settings.azure, key, str(azure[key]))

    http = data.get("http") or {}
    if "timeout" in http:
        try:
            settings.http.timeout = float(http["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid http.timeout: {http['timeout']}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "PORTALSYNC_LOG_LEVEL": ("log_level", str.upper),
        "PORTALSYNC_LOG_FORMAT": ("log_format", str.lower),
        "PORTALSYNC_LOG_FILE": ("log_file", str),
        "PORTALSYNC_SUBSCRIPTION_ID": ("azure.subscription_id", str),
        "PORTALSYNC_TENANT_ID": ("azure.tenant_id", str),
        "PORTALSYNC_CLIENT_ID": ("azure.client_id", str),
        "PORTALSYNC_RESOURCE_GROUP": ("azure.resource_group", str),
        "PORTALSYNC_SERVICE_NAME": ("azure.service_name", str),
        "PORTALSYNC_HTTP_TIMEOUT": ("http.timeout", float),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        try:
            converted = converter(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {value}") from e
        _set_nested_attr(settings, attr_path, converted)

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    valid_formats = {"text", "json"}
    if settings.log_format not in valid_formats:
        raise ConfigurationError(
            f"Invalid log_format: {settings.log_format}. "
            f"Must be one of: {', '.join(sorted(valid_formats))}"
        )

    if settings.http.timeout < 1:
        raise ConfigurationError("http.timeout must be at least 1 second")


def require_instance(settings: Settings) -> None:
    """
    Check that the settings identify an API Management instance.

    Raises:
        ConfigurationError: Naming every missing setting.
    """
    required = {
        "subscription_id": settings.azure.subscription_id,
        "tenant_id": settings.azure.tenant_id,
        "client_id": settings.azure.client_id,
        "resource_group": settings.azure.resource_group,
        "service_name": settings.azure.service_name,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing azure settings: {', '.join(missing)}. "
            "Set them in the config file, the environment, or on the command line."
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "portalsync": {
            "log_level": settings.log_level,
            "log_format": settings.log_format,
            "log_file": settings.log_file,
        },
        "azure": {
            "subscription_id": settings.azure.subscription_id,
            "tenant_id": settings.azure.tenant_id,
            "client_id": settings.azure.client_id,
            "resource_group": settings.azure.resource_group,
            "service_name": settings.azure.service_name,
            "api_version": settings.azure.api_version,
            "login_endpoint": settings.azure.login_endpoint,
            "management_endpoint": settings.azure.management_endpoint,
        },
        "http": {
            "timeout": settings.http.timeout,
        },
    }
