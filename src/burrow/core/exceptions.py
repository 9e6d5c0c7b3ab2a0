# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for Burrow.

Provides specific exception types for different error categories,
enabling better error handling and clearer error messages.

Cryptographic and protocol errors (NIP-44, MLS, TLS decoding) live next to
the code that raises them but all inherit from :class:`BurrowException`.
"""

from __future__ import annotations

from typing import Any


class BurrowException(Exception):  # noqa: N818
    """Base exception for all Burrow errors.

    All Burrow-specific exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(BurrowException):
    """Exception for validation errors.

    Raised when:
    - A pubkey or group id is not well-formed hex
    - Input fields are out of range
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(BurrowException):
    """Exception for configuration errors.

    Raised when:
    - The secret key file is missing or malformed
    - access-control.json is missing or has no owner
    - The daemon has nothing to listen on
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class NotFoundError(BurrowException):
    """Exception for resource not found errors.

    Raised when:
    - A group id (or prefix) matches nothing in the store
    - A key package event cannot be found on any relay
    """

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class AccessDeniedError(BurrowException):
    """Raised when a principal other than the owner tries to mutate policy."""

    def __init__(self, message: str, requester: str | None = None):
        details = {}
        if requester:
            details["requester"] = requester
        super().__init__(message, details)
        self.requester = requester


class StorageError(BurrowException):
    """Raised when a persisted record cannot be read or written."""

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, details)
        self.path = path


class RelayError(BurrowException):
    """Raised for transport-level failures talking to Nostr relays.

    These are always retryable; the daemon reconnects after a fixed delay.
    """

    def __init__(self, message: str, relay: str | None = None):
        details = {}
        if relay:
            details["relay"] = relay
        super().__init__(message, details)
        self.relay = relay


class CryptoError(BurrowException):
    """Base exception for cryptographic failures (bad keys, MACs, signatures)."""
