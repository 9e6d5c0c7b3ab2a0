# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""File-based storage for Burrow state.

Layout under the data directory::

    groups/<nostr_group_id>.json
    mls-state/<nostr_group_id>.bin
    keypackages/<event_id>.json
    messages/<nostr_group_id>/<created_at>-<id8>.json

Every file holds secrets or private metadata, so files are written 0600 and
directories created 0700. Writes go to a temporary file in the same directory
and are renamed into place, so a crash never leaves a half-written record.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import stat
import tempfile
from pathlib import Path
from typing import Any

from ..core.exceptions import NotFoundError, StorageError, ValidationException
from .models import GroupMessage, StoredGroup, StoredKeyPackage

logger = logging.getLogger(__name__)

_HEX_COMPONENT = re.compile(r"^[0-9a-f]{1,128}$")

FILE_MODE = stat.S_IRUSR | stat.S_IWUSR
DIR_MODE = stat.S_IRWXU


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file + rename, mode 0600."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise StorageError(f"Failed to write {path.name}: {e}", path=str(path)) from e
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, path)
    except OSError as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise StorageError(f"Failed to write {path.name}: {e}", path=str(path)) from e


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write(path, json.dumps(data, indent=2).encode("utf-8"))


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Failed to read {path.name}: {e}", path=str(path)) from e


class FileStore:
    """CRUD over the Burrow data directory. One instance per data root."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir).expanduser()
        self.groups_dir = self.data_dir / "groups"
        self.state_dir = self.data_dir / "mls-state"
        self.keypackages_dir = self.data_dir / "keypackages"
        self.messages_dir = self.data_dir / "messages"
        for directory in (self.data_dir, self.groups_dir, self.state_dir, self.keypackages_dir, self.messages_dir):
            directory.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)

    @staticmethod
    def _component(value: str, what: str) -> str:
        """Reject anything that is not lowercase hex before using it in a path."""
        if not isinstance(value, str) or not _HEX_COMPONENT.match(value):
            raise ValidationException(f"{what} must be lowercase hex", field=what, value=value)
        return value

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def save_group(self, group: StoredGroup) -> None:
        gid = self._component(group.nostr_group_id, "nostr_group_id")
        atomic_write_json(self.groups_dir / f"{gid}.json", group.to_dict())

    def get_group(self, nostr_group_id: str) -> StoredGroup | None:
        path = self.groups_dir / f"{self._component(nostr_group_id, 'nostr_group_id')}.json"
        if not path.exists():
            return None
        try:
            return StoredGroup.from_dict(_read_json(path))
        except (KeyError, TypeError) as e:
            raise StorageError(f"Malformed group record: {path.name}", path=str(path)) from e

    def list_groups(self) -> list[StoredGroup]:
        groups = []
        for path in sorted(self.groups_dir.glob("*.json")):
            try:
                groups.append(StoredGroup.from_dict(_read_json(path)))
            except (StorageError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable group record {path.name}: {e}")
        return groups

    def find_group(self, id_or_prefix: str) -> StoredGroup:
        """Resolve a full nostr group id or a unique prefix of one.

        Raises:
            NotFoundError: If nothing matches
            ValidationException: If the prefix is ambiguous
        """
        needle = id_or_prefix.strip().lower()
        self._component(needle, "group_id")
        exact = self.get_group(needle) if len(needle) == 64 else None
        if exact:
            return exact
        matches = [g for g in self.list_groups() if g.nostr_group_id.startswith(needle)]
        if not matches:
            raise NotFoundError("Group", id_or_prefix)
        if len(matches) > 1:
            raise ValidationException(
                f"Group id prefix '{id_or_prefix}' is ambiguous ({len(matches)} matches)",
                field="group_id",
                value=id_or_prefix,
            )
        return matches[0]

    # -------------------------------------------------------------------------
    # MLS state
    # -------------------------------------------------------------------------

    def save_state(self, nostr_group_id: str, state: bytes) -> None:
        gid = self._component(nostr_group_id, "nostr_group_id")
        atomic_write(self.state_dir / f"{gid}.bin", state)

    def get_state(self, nostr_group_id: str) -> bytes | None:
        path = self.state_dir / f"{self._component(nostr_group_id, 'nostr_group_id')}.bin"
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {path.name}: {e}", path=str(path)) from e

    def commit_group_state(
        self,
        group: StoredGroup,
        state: bytes,
        epoch: int,
        last_message_at: int | None = None,
    ) -> StoredGroup:
        """Persist a new authoritative state and mirror it into the group record."""
        self.save_state(group.nostr_group_id, state)
        group.mls_state = base64.b64encode(state).decode("ascii")
        group.epoch = max(group.epoch, epoch)
        if last_message_at is not None:
            group.last_message_at = max(group.last_message_at, last_message_at)
        self.save_group(group)
        return group

    # -------------------------------------------------------------------------
    # Key packages
    # -------------------------------------------------------------------------

    def save_key_package(self, kp: StoredKeyPackage) -> None:
        kid = self._component(kp.id, "key_package_id")
        atomic_write_json(self.keypackages_dir / f"{kid}.json", kp.to_dict())

    def get_key_package(self, kp_id: str) -> StoredKeyPackage | None:
        path = self.keypackages_dir / f"{self._component(kp_id, 'key_package_id')}.json"
        if not path.exists():
            return None
        try:
            return StoredKeyPackage.from_dict(_read_json(path))
        except (KeyError, TypeError) as e:
            raise StorageError(f"Malformed key package record: {path.name}", path=str(path)) from e

    def list_key_packages(self) -> list[StoredKeyPackage]:
        packages = []
        for path in sorted(self.keypackages_dir.glob("*.json")):
            try:
                packages.append(StoredKeyPackage.from_dict(_read_json(path)))
            except (StorageError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable key package {path.name}: {e}")
        return sorted(packages, key=lambda kp: kp.created_at)

    def delete_key_package(self, kp_id: str) -> bool:
        path = self.keypackages_dir / f"{self._component(kp_id, 'key_package_id')}.json"
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def save_message(self, msg: GroupMessage) -> None:
        gid = self._component(msg.group_id, "group_id")
        mid = self._component(msg.id, "message_id")
        atomic_write_json(self.messages_dir / gid / f"{int(msg.created_at)}-{mid[:8]}.json", msg.to_dict())

    def get_messages(self, nostr_group_id: str, limit: int = 50) -> list[GroupMessage]:
        """The newest ``limit`` messages, oldest first."""
        directory = self.messages_dir / self._component(nostr_group_id, "nostr_group_id")
        if not directory.exists():
            return []
        messages = []
        for path in directory.glob("*.json"):
            try:
                messages.append(GroupMessage.from_dict(_read_json(path)))
            except (StorageError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable message {path.name}: {e}")
        messages.sort(key=lambda m: (m.created_at, m.id))
        return messages[-limit:] if limit > 0 else []
