# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Inbound message pipeline and daemon output.

Each kind-445 event for a monitored group goes through:

1. NIP-44 decryption with the current epoch's exporter secret
2. MLS processing (application message or commit)
3. The access-control gate (application messages only)
4. Persistence, audit and JSONL emission

MLS failures never touch persisted state. Events encrypted for another
epoch or unrelated to MLS fail NIP-44 decoding and are skipped.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

from ..core.logging import correlation_context
from ..crypto.identity import NostrIdentity
from ..crypto.mls import MLSError, MLSOwnMessageError
from ..crypto.nip44 import Nip44Error, decrypt_group_message
from ..groups.engine import GroupEngine
from ..nostr.events import Kind, NostrEvent, parse_inner_message
from ..security.access_control import AccessControl
from ..security.audit import AuditLog, truncate_pubkey
from ..storage.file_store import FileStore
from ..storage.models import GroupMessage, StoredGroup

logger = logging.getLogger(__name__)

REDACTED_CONTENT = "[REDACTED]"
REDACTED_EMISSION = "[REDACTED - sender not allowed]"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class DaemonStatus:
    """A lifecycle or error notice on the daemon's output stream."""

    event: str
    details: str | None = None
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "status", "timestamp": self.timestamp or _now(), "event": self.event}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class DaemonMessage:
    """A received group message. Content is redacted when not allowed."""

    group_id: str
    group_name: str
    sender_pubkey: str
    content: str
    event_id: str
    allowed: bool
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "message",
            "timestamp": self.timestamp or _now(),
            "groupId": self.group_id,
            "groupName": self.group_name,
            "senderPubkey": self.sender_pubkey,
            "content": self.content,
            "eventId": self.event_id,
            "allowed": self.allowed,
        }


class Emitter:
    """Writes one JSON object per line to stdout and, optionally, a log file."""

    def __init__(self, stream: TextIO | None = None, log_file: str | Path | None = None):
        self.stream = stream if stream is not None else sys.stdout
        self.log_file = Path(log_file).expanduser() if log_file else None
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, item: DaemonStatus | DaemonMessage) -> None:
        line = json.dumps(item.to_dict(), ensure_ascii=False)
        self.stream.write(line + "\n")
        self.stream.flush()
        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.warning(f"Failed to append to {self.log_file}: {e}")

    def status(self, event: str, details: str | None = None) -> None:
        self.emit(DaemonStatus(event=event, details=details))


class MessagePipeline:
    """Decrypt, process, gate and persist inbound group events."""

    def __init__(
        self,
        identity: NostrIdentity,
        store: FileStore,
        engine: GroupEngine,
        acl: AccessControl,
        audit: AuditLog,
        emitter: Emitter,
    ):
        self.identity = identity
        self.store = store
        self.engine = engine
        self.acl = acl
        self.audit = audit
        self.emitter = emitter

    def process_event(self, event: NostrEvent, group: StoredGroup) -> DaemonMessage | None:
        """Handle one relay event for ``group``.

        Returns:
            The emitted message for application content, else None
        """
        with correlation_context(event.id or None):
            return self._process(event, group)

    def _process(self, event: NostrEvent, group: StoredGroup) -> DaemonMessage | None:
        gid = group.nostr_group_id
        if event.kind != Kind.GROUP_MESSAGE or gid not in event.tag_values("h"):
            logger.debug(f"Ignoring kind {event.kind} event {event.id[:16]} on {gid[:16]}")
            return None

        state = self.store.get_state(gid)
        if state is None:
            logger.warning(f"No MLS state for group {gid[:16]}, dropping {event.id[:16]}")
            return None

        try:
            mls_bytes = decrypt_group_message(event.content, self.engine.derive_epoch_secret(state))
        except Nip44Error as e:
            if e.is_foreign_format:
                logger.debug(f"Skipping non-MLS payload {event.id[:16]}: {e.message}")
            else:
                self.emitter.status("decrypt_error", f"{group.name}: {e.message}")
            return None

        try:
            result, new_state = self.engine.process_incoming_message(state, mls_bytes)
        except MLSOwnMessageError:
            logger.debug(f"Ignoring echo of our own message {event.id[:16]}")
            return None
        except MLSError as e:
            self.emitter.status("mls_error", f"{group.name}: MLS processing failed (state NOT updated): {e.message}")
            return None

        if result.is_commit:
            self.store.commit_group_state(group, new_state, result.epoch)
            logger.info(f"Group {gid[:16]} advanced to epoch {result.epoch}")
            return None

        if not result.is_application or result.application_data is None:
            return None

        try:
            inner = parse_inner_message(result.application_data)
        except (ValueError, KeyError, TypeError) as e:
            # The ratchet moved; keep it in step even though the payload is unusable
            self.store.commit_group_state(group, new_state, result.epoch)
            self.emitter.status("decrypt_error", f"{group.name}: malformed inner message: {e}")
            return None

        # The MLS credential is authoritative for who sent the message
        sender = result.sender.hex()
        if inner.pubkey and inner.pubkey != sender:
            logger.warning(f"Inner pubkey {inner.pubkey[:16]} does not match MLS sender {sender[:16]}")
        allowed = self.acl.is_contact_allowed(sender)

        self.store.save_message(
            GroupMessage(
                id=event.id,
                group_id=gid,
                sender_pubkey=sender,
                content=inner.content if allowed else REDACTED_CONTENT,
                kind=inner.kind,
                created_at=inner.created_at,
                tags=inner.tags,
            )
        )
        self.store.commit_group_state(group, new_state, result.epoch, last_message_at=inner.created_at)

        if allowed:
            self.audit.log_allowed_message(sender, gid, group.name, inner.content)
            message = DaemonMessage(
                group_id=gid,
                group_name=group.name,
                sender_pubkey=sender,
                content=inner.content,
                event_id=event.id,
                allowed=True,
            )
        else:
            self.audit.log_rejected_message(sender, gid, group.name, "Sender not in allowlist")
            message = DaemonMessage(
                group_id=gid,
                group_name=group.name,
                sender_pubkey=truncate_pubkey(sender),
                content=REDACTED_EMISSION,
                event_id=event.id,
                allowed=False,
            )
        self.emitter.emit(message)
        return message
