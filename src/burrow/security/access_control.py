# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Allowlist-based access control.

Only the owner and explicitly allowed contacts have their messages
delivered in full; only allowed groups are listened to at all. Burrow will
not operate without ``access-control.json`` and a configured owner.

On-disk format (``<data_dir>/access-control.json``)::

    {
      "version": 1,
      "owner": {"hex": "...", "npub": "...", "note": "..."},
      "defaultPolicy": "ignore",
      "allowedContacts": ["<hex pubkey>", ...],
      "allowedGroups": ["<nostr group id>", ...],
      "settings": {"logRejectedContent": false, "auditEnabled": true}
    }

A legacy file whose ``owner`` is a bare hex string is migrated on load.
``BURROW_OWNER_HEX`` / ``BURROW_OWNER_NPUB`` override the owner without
being written back to the file.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.config import BurrowSettings, get_config
from ..core.exceptions import AccessDeniedError, ConfigException, StorageError, ValidationException
from ..crypto.nip19 import is_hex_key, npub_decode, npub_encode, resolve_pubkey_hex
from ..storage.file_store import atomic_write_json
from .audit import AuditLog

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "access-control.json"
CONFIG_VERSION = 1
LOCAL_REQUESTER = "local"
POLICIES = ("ignore", "log")


@dataclass
class OwnerConfig:
    hex: str
    npub: str = ""
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"hex": self.hex, "npub": self.npub, "note": self.note}


@dataclass
class AccessSettings:
    log_rejected_content: bool = False
    audit_enabled: bool = True


@dataclass
class AccessControlConfig:
    """Parsed ``access-control.json``."""

    owner: OwnerConfig
    version: int = CONFIG_VERSION
    default_policy: str = "ignore"
    allowed_contacts: list[str] = field(default_factory=list)
    allowed_groups: list[str] = field(default_factory=list)
    settings: AccessSettings = field(default_factory=AccessSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "owner": self.owner.to_dict(),
            "defaultPolicy": self.default_policy,
            "allowedContacts": self.allowed_contacts,
            "allowedGroups": self.allowed_groups,
            "settings": {
                "logRejectedContent": self.settings.log_rejected_content,
                "auditEnabled": self.settings.audit_enabled,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessControlConfig:
        owner_raw = data.get("owner")
        if isinstance(owner_raw, str):
            owner = OwnerConfig(hex=owner_raw, note="Migrated from legacy format")
        elif isinstance(owner_raw, dict):
            owner = OwnerConfig(
                hex=owner_raw.get("hex", "") or "",
                npub=owner_raw.get("npub", "") or "",
                note=owner_raw.get("note", "") or "",
            )
        else:
            owner = OwnerConfig(hex="")
        settings_raw = data.get("settings") or {}
        policy = data.get("defaultPolicy", "ignore")
        if policy not in POLICIES:
            raise ConfigException(f"defaultPolicy must be one of {', '.join(POLICIES)}, got {policy!r}")
        return cls(
            owner=owner,
            version=data.get("version", CONFIG_VERSION),
            default_policy=policy,
            allowed_contacts=[str(c).lower() for c in data.get("allowedContacts", [])],
            allowed_groups=[str(g).lower() for g in data.get("allowedGroups", [])],
            settings=AccessSettings(
                log_rejected_content=bool(settings_raw.get("logRejectedContent", False)),
                audit_enabled=bool(settings_raw.get("auditEnabled", True)),
            ),
        )


def create_default_config(
    data_dir: str | Path,
    owner: str = "",
    note: str = "",
    overwrite: bool = False,
) -> Path:
    """Write a fresh ``access-control.json``.

    ``owner`` may be hex or npub. Without one the file is written with an
    empty owner that must be filled in (or supplied via the environment)
    before the daemon will start.

    Returns:
        Path of the written file

    Raises:
        ConfigException: If a config already exists and ``overwrite`` is False
    """
    path = Path(data_dir).expanduser() / CONFIG_FILENAME
    if path.exists() and not overwrite:
        raise ConfigException(f"{path} already exists")
    if owner:
        owner_hex = resolve_pubkey_hex(owner)
        owner_cfg = OwnerConfig(hex=owner_hex, npub=npub_encode(owner_hex), note=note)
    else:
        owner_cfg = OwnerConfig(hex="", note=note or "Set BURROW_OWNER_HEX or edit this file")
    atomic_write_json(path, AccessControlConfig(owner=owner_cfg).to_dict())
    logger.info(f"Wrote access control config to {path} (owner: {owner_cfg.hex[:16] or 'unset'})")
    return path


class AccessControl:
    """The loaded allowlist plus its mutation API.

    Mutations take a ``requester``: the owner's pubkey, or
    :data:`LOCAL_REQUESTER` for the local CLI. Anyone else is refused and the
    attempt is audited.
    """

    def __init__(
        self,
        data_dir: str | Path,
        audit: AuditLog | None = None,
        settings: BurrowSettings | None = None,
    ):
        self.config_path = Path(data_dir).expanduser() / CONFIG_FILENAME
        if not self.config_path.exists():
            raise ConfigException(
                f"{self.config_path} not found. Run 'burrow init --owner <npub|hex>' first. "
                "Burrow will not operate without access control."
            )
        try:
            raw = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigException(f"Cannot read {self.config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigException(f"{self.config_path} must contain a JSON object")

        self._config = AccessControlConfig.from_dict(raw)
        self._file_owner = copy.deepcopy(self._config.owner)
        self._apply_env_owner(settings or get_config())

        owner_hex = self._config.owner.hex.lower()
        if not owner_hex or not is_hex_key(owner_hex):
            raise ConfigException(
                "Owner pubkey not configured. Either:\n"
                "  1. Set BURROW_OWNER_HEX (and optionally BURROW_OWNER_NPUB) environment variables, or\n"
                f"  2. Set owner.hex in {self.config_path}\n"
                "Burrow will not operate without an owner.",
                missing_vars=["BURROW_OWNER_HEX"],
            )
        self._config.owner.hex = owner_hex
        self.audit = audit or AuditLog(self.config_path.parent, enabled=self._config.settings.audit_enabled)

    def _apply_env_owner(self, settings: BurrowSettings) -> None:
        env_hex = settings.owner_hex
        env_npub = settings.owner_npub
        if env_hex:
            self._config.owner = OwnerConfig(
                hex=env_hex.strip().lower(),
                npub=env_npub or self._config.owner.npub,
                note="Set via BURROW_OWNER_HEX environment variable",
            )
        elif env_npub and not self._config.owner.hex:
            try:
                self._config.owner = OwnerConfig(
                    hex=npub_decode(env_npub.strip()),
                    npub=env_npub.strip(),
                    note="Set via BURROW_OWNER_NPUB environment variable",
                )
            except ValidationException as e:
                raise ConfigException(f"BURROW_OWNER_NPUB is not a valid npub: {e.message}") from e

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def owner_hex(self) -> str:
        return self._config.owner.hex

    @property
    def settings(self) -> AccessSettings:
        return self._config.settings

    @property
    def default_policy(self) -> str:
        return self._config.default_policy

    def is_owner(self, pubkey: str) -> bool:
        return pubkey.lower() == self._config.owner.hex

    def is_contact_allowed(self, pubkey: str) -> bool:
        pubkey = pubkey.lower()
        return pubkey == self._config.owner.hex or pubkey in self._config.allowed_contacts

    def is_group_allowed(self, group_id: str) -> bool:
        return group_id.lower() in self._config.allowed_groups

    def get_config(self) -> AccessControlConfig:
        """A copy of the effective configuration."""
        return copy.deepcopy(self._config)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _authorize(self, requester: str, action: str) -> None:
        if requester == LOCAL_REQUESTER or self.is_owner(requester):
            return
        self.audit.log_access_change(requester, allowed=False, details=f"denied: {action}")
        logger.warning(f"Refused access change '{action}' from {requester[:16]}")
        raise AccessDeniedError(f"Only the owner may {action}", requester=requester)

    def _commit(self, requester: str, details: str, mutate: Callable[[AccessControlConfig], None]) -> None:
        """Apply ``mutate``, persist it, then audit.

        If the write fails the in-memory config is restored and nothing is
        audited, so memory, disk and the audit trail stay in agreement.
        """
        previous = copy.deepcopy(self._config)
        mutate(self._config)
        try:
            self._save()
        except StorageError:
            self._config = previous
            raise
        self.audit.log_access_change(requester, allowed=True, details=details)

    def add_contact(self, pubkey: str, requester: str = LOCAL_REQUESTER) -> bool:
        """Allow a contact. Returns False if already present (no duplicate entry)."""
        self._authorize(requester, "add contacts")
        pubkey = resolve_pubkey_hex(pubkey)
        if pubkey in self._config.allowed_contacts:
            return False
        self._commit(requester, f"add_contact {pubkey}", lambda c: c.allowed_contacts.append(pubkey))
        return True

    def remove_contact(self, pubkey: str, requester: str = LOCAL_REQUESTER) -> bool:
        """Disallow a contact. Returns False if it was not present."""
        self._authorize(requester, "remove contacts")
        pubkey = resolve_pubkey_hex(pubkey)
        if pubkey not in self._config.allowed_contacts:
            return False
        self._commit(requester, f"remove_contact {pubkey}", lambda c: c.allowed_contacts.remove(pubkey))
        return True

    def add_group(self, group_id: str, requester: str = LOCAL_REQUESTER) -> bool:
        self._authorize(requester, "add groups")
        group_id = _group_id(group_id)
        if group_id in self._config.allowed_groups:
            return False
        self._commit(requester, f"add_group {group_id}", lambda c: c.allowed_groups.append(group_id))
        return True

    def remove_group(self, group_id: str, requester: str = LOCAL_REQUESTER) -> bool:
        self._authorize(requester, "remove groups")
        group_id = _group_id(group_id)
        if group_id not in self._config.allowed_groups:
            return False
        self._commit(requester, f"remove_group {group_id}", lambda c: c.allowed_groups.remove(group_id))
        return True

    def _save(self) -> None:
        # Environment overrides stay in memory only
        on_disk = copy.deepcopy(self._config)
        on_disk.owner = self._file_owner
        atomic_write_json(self.config_path, on_disk.to_dict())


def _group_id(value: str) -> str:
    value = value.strip().lower()
    if not is_hex_key(value):
        raise ValidationException("group id must be 64 hex chars", field="group_id", value=value)
    return value
