"""
Configuration management for portalsync.

This module handles loading, validating, and saving configuration settings,
as well as encrypted storage of the Azure client secret.
"""

from portalsync.config.credentials import (
    CredentialError,
    CredentialNotFoundError,
    CredentialStore,
    CredentialStoreLockedError,
    CredentialStoreNotInitializedError,
    InvalidPassphraseError,
    resolve_client_secret,
)
from portalsync.config.settings import (
    ConfigurationError,
    Settings,
    load_config,
    require_instance,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "require_instance",
    "ConfigurationError",
    # Credentials
    "CredentialStore",
    "CredentialError",
    "CredentialStoreNotInitializedError",
    "CredentialStoreLockedError",
    "InvalidPassphraseError",
    "CredentialNotFoundError",
    "resolve_client_secret",
]
