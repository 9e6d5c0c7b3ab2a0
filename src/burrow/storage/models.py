# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Persisted records: groups, key packages and messages."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class StoredGroup:
    """A group this identity belongs to.

    ``mls_state`` is a base64 copy of the binary state; the ``.bin`` file
    under ``mls-state/`` is authoritative.
    """

    mls_group_id: str
    nostr_group_id: str
    name: str
    description: str = ""
    admin_pubkeys: list[str] = field(default_factory=list)
    relays: list[str] = field(default_factory=list)
    epoch: int = 0
    mls_state: str = ""
    image_hash: str = "00" * 32
    image_key: str = "00" * 32
    image_nonce: str = "00" * 12
    created_at: int = field(default_factory=lambda: int(time.time()))
    last_message_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mls_group_id": self.mls_group_id,
            "nostr_group_id": self.nostr_group_id,
            "name": self.name,
            "description": self.description,
            "admin_pubkeys": self.admin_pubkeys,
            "relays": self.relays,
            "epoch": self.epoch,
            "mls_state": self.mls_state,
            "image_hash": self.image_hash,
            "image_key": self.image_key,
            "image_nonce": self.image_nonce,
            "created_at": self.created_at,
            "last_message_at": self.last_message_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredGroup:
        return cls(
            mls_group_id=data["mls_group_id"],
            nostr_group_id=data["nostr_group_id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            admin_pubkeys=list(data.get("admin_pubkeys", [])),
            relays=list(data.get("relays", [])),
            epoch=data.get("epoch", 0),
            mls_state=data.get("mls_state", ""),
            image_hash=data.get("image_hash", "00" * 32),
            image_key=data.get("image_key", "00" * 32),
            image_nonce=data.get("image_nonce", "00" * 12),
            created_at=data.get("created_at", 0),
            last_message_at=data.get("last_message_at", 0),
        )


@dataclass
class StoredKeyPackage:
    """A published key package and its private half."""

    id: str
    mls_key_package: str
    private_key: str
    created_at: int = field(default_factory=lambda: int(time.time()))
    is_last_resort: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mls_key_package": self.mls_key_package,
            "private_key": self.private_key,
            "created_at": self.created_at,
            "is_last_resort": self.is_last_resort,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredKeyPackage:
        return cls(
            id=data["id"],
            mls_key_package=data["mls_key_package"],
            private_key=data["private_key"],
            created_at=data.get("created_at", 0),
            is_last_resort=data.get("is_last_resort", True),
        )


@dataclass
class GroupMessage:
    """One message as received or sent in a group."""

    id: str
    group_id: str
    sender_pubkey: str
    content: str
    kind: int = 9
    created_at: int = field(default_factory=lambda: int(time.time()))
    tags: list[list[str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "sender_pubkey": self.sender_pubkey,
            "content": self.content,
            "kind": self.kind,
            "created_at": self.created_at,
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupMessage:
        return cls(
            id=data["id"],
            group_id=data["group_id"],
            sender_pubkey=data["sender_pubkey"],
            content=data.get("content", ""),
            kind=data.get("kind", 9),
            created_at=data.get("created_at", 0),
            tags=[list(t) for t in data.get("tags", [])],
        )
