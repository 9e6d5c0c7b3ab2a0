# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Audit trail for message activity and access changes.

Entries are appended as JSON lines to ``audit/YYYY-MM-DD.jsonl`` (UTC date).
Entries about rejected senders never carry message content and only a
truncated sender key.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_CHARS = 100
REJECTED_SENDER_CHARS = 16


class AuditEventType(StrEnum):
    """Events that create audit records."""

    MESSAGE_RECEIVED = "message_received"
    MESSAGE_REJECTED = "message_rejected"
    MESSAGE_SENT = "message_sent"
    GROUP_REJECTED = "group_rejected"
    ACCESS_CHANGE = "access_change"
    DAEMON_START = "daemon_start"
    DAEMON_STOP = "daemon_stop"
    ERROR = "error"


@dataclass
class AuditEntry:
    """A single audit log entry."""

    type: AuditEventType
    allowed: bool
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    sender_pubkey: str | None = None
    group_id: str | None = None
    group_name: str | None = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "type": self.type.value,
            "allowed": self.allowed,
        }
        if self.sender_pubkey is not None:
            data["sender_pubkey"] = self.sender_pubkey
        if self.group_id is not None:
            data["group_id"] = self.group_id
        if self.group_name is not None:
            data["group_name"] = self.group_name
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        return cls(
            type=AuditEventType(data["type"]),
            allowed=bool(data["allowed"]),
            timestamp=data.get("timestamp", ""),
            sender_pubkey=data.get("sender_pubkey"),
            group_id=data.get("group_id"),
            group_name=data.get("group_name"),
            details=data.get("details"),
        )


def truncate_pubkey(pubkey: str) -> str:
    return pubkey[:REJECTED_SENDER_CHARS] + "..."


class AuditLog:
    """Append-only, date-partitioned audit log.

    Usage:
        audit = AuditLog(data_dir)
        audit.log_rejected_message(sender, group_id, group_name, "sender not in allowlist")
    """

    def __init__(self, data_dir: str | Path, enabled: bool = True):
        self.audit_dir = Path(data_dir).expanduser() / "audit"
        self.enabled = enabled
        if enabled:
            self.audit_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    def log(self, entry: AuditEntry) -> None:
        """Append an entry. Non-fatal on error."""
        if not self.enabled:
            return
        path = self.audit_dir / f"{datetime.now(UTC).date().isoformat()}.jsonl"
        try:
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            with os.fdopen(fd, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
        except OSError as e:
            # Audit logging should never break message processing
            logger.warning(f"Failed to write audit log: {e}")

    def log_allowed_message(
        self,
        sender_pubkey: str,
        group_id: str,
        group_name: str,
        content_preview: str | None = None,
    ) -> None:
        self.log(
            AuditEntry(
                type=AuditEventType.MESSAGE_RECEIVED,
                allowed=True,
                sender_pubkey=sender_pubkey,
                group_id=group_id,
                group_name=group_name,
                details=content_preview[:CONTENT_PREVIEW_CHARS] if content_preview is not None else None,
            )
        )

    def log_rejected_message(self, sender_pubkey: str, group_id: str, group_name: str, reason: str) -> None:
        """Record a rejected message. Never pass content here."""
        self.log(
            AuditEntry(
                type=AuditEventType.MESSAGE_REJECTED,
                allowed=False,
                sender_pubkey=truncate_pubkey(sender_pubkey),
                group_id=group_id,
                group_name=group_name,
                details=reason,
            )
        )

    def log_sent_message(self, group_id: str, group_name: str, content_preview: str | None = None) -> None:
        self.log(
            AuditEntry(
                type=AuditEventType.MESSAGE_SENT,
                allowed=True,
                group_id=group_id,
                group_name=group_name,
                details=content_preview[:CONTENT_PREVIEW_CHARS] if content_preview is not None else None,
            )
        )

    def log_group_rejected(self, group_id: str, group_name: str, reason: str) -> None:
        self.log(
            AuditEntry(
                type=AuditEventType.GROUP_REJECTED,
                allowed=False,
                group_id=group_id,
                group_name=group_name,
                details=reason,
            )
        )

    def log_access_change(self, requester_pubkey: str, allowed: bool, details: str) -> None:
        self.log(
            AuditEntry(
                type=AuditEventType.ACCESS_CHANGE,
                allowed=allowed,
                sender_pubkey=requester_pubkey if allowed else truncate_pubkey(requester_pubkey),
                details=details,
            )
        )

    def log_daemon_event(self, event_type: AuditEventType, details: str | None = None) -> None:
        self.log(AuditEntry(type=event_type, allowed=True, details=details))

    def log_error(self, details: str, group_id: str | None = None) -> None:
        self.log(AuditEntry(type=AuditEventType.ERROR, allowed=False, group_id=group_id, details=details))


def read_audit_log(data_dir: str | Path, days: int = 7, today: date | None = None) -> list[AuditEntry]:
    """Entries from the last ``days`` daily files, oldest first.

    Unparseable lines are skipped with a warning.
    """
    audit_dir = Path(data_dir).expanduser() / "audit"
    if not audit_dir.exists():
        return []
    today = today or datetime.now(UTC).date()
    cutoff = today - timedelta(days=days)

    entries: list[AuditEntry] = []
    for path in sorted(audit_dir.glob("*.jsonl")):
        try:
            file_date = date.fromisoformat(path.stem)
        except ValueError:
            continue
        if file_date < cutoff:
            continue
        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed audit line {path.name}:{line_no}: {e}")
    return entries
