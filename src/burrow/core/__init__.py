"""Burrow Core - configuration, logging and the exception hierarchy."""

from .config import BurrowSettings, clear_config_cache, get_config
from .exceptions import (
    AccessDeniedError,
    BurrowException,
    ConfigException,
    CryptoError,
    NotFoundError,
    RelayError,
    StorageError,
    ValidationException,
)
from .logging import configure_logging, correlation_context, get_correlation_id

__all__ = [
    "AccessDeniedError",
    "BurrowException",
    "BurrowSettings",
    "ConfigException",
    "CryptoError",
    "NotFoundError",
    "RelayError",
    "StorageError",
    "ValidationException",
    "clear_config_cache",
    "configure_logging",
    "correlation_context",
    "get_config",
    "get_correlation_id",
]
