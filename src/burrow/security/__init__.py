# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Access control and auditing."""

from .access_control import (
    LOCAL_REQUESTER,
    AccessControl,
    AccessControlConfig,
    AccessSettings,
    OwnerConfig,
    create_default_config,
)
from .audit import AuditEntry, AuditEventType, AuditLog, read_audit_log, truncate_pubkey

__all__ = [
    "AccessControl",
    "AccessControlConfig",
    "AccessSettings",
    "AuditEntry",
    "AuditEventType",
    "AuditLog",
    "LOCAL_REQUESTER",
    "OwnerConfig",
    "create_default_config",
    "read_audit_log",
    "truncate_pubkey",
]
