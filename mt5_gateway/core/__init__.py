"""
Core Module
===========
Configuration, logging and the adapter's error taxonomy.
"""

from .config import Config, BridgeConfig, LoggingConfig, is_placeholder
from .logger import setup_logger, get_logger, CredentialFilter, redact
from .exceptions import (
    BrokerageError,
    ConfigurationError,
    NotConnectedError,
    TransportError,
    AuthenticationExpiredError,
    InvalidCredentialsError,
    InvalidServerError,
    AccountDisabledError,
    BridgeRejectedError,
    UnresolvedSymbolError,
    VolumeFormatExhaustedError,
)

__all__ = [
    # Config
    "Config",
    "BridgeConfig",
    "LoggingConfig",
    "is_placeholder",
    # Logging
    "setup_logger",
    "get_logger",
    "CredentialFilter",
    "redact",
    # Errors
    "BrokerageError",
    "ConfigurationError",
    "NotConnectedError",
    "TransportError",
    "AuthenticationExpiredError",
    "InvalidCredentialsError",
    "InvalidServerError",
    "AccountDisabledError",
    "BridgeRejectedError",
    "UnresolvedSymbolError",
    "VolumeFormatExhaustedError",
]
