# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Nostr events and the Marmot envelope builders.

Events follow NIP-01: the id is the SHA-256 of the canonical serialization
``[0, pubkey, created_at, kind, tags, content]`` and the signature is a
BIP-340 Schnorr signature over the id.

Rumors (inner chat messages, welcome payloads) carry an id but no
signature; they only ever travel inside an encrypted wrapper.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from ..crypto.identity import NostrIdentity, verify_schnorr
from ..groups.key_package import ciphersuite_hex_id


class Kind(IntEnum):
    """Event kinds used by Burrow."""

    CHAT = 9
    SEAL = 13
    KEY_PACKAGE = 443
    WELCOME = 444
    GROUP_MESSAGE = 445
    GIFT_WRAP = 1059
    KEY_PACKAGE_RELAY_LIST = 10051


# Kinds are uint16 on the wire; timestamps must fit a signed 64-bit integer
MAX_KIND = 0xFFFF
MAX_TIMESTAMP = 2**63 - 1


def _bounded_int(value: Any, name: str, upper: int) -> int:
    """Integer field in ``0..upper``. Raises ValueError for anything else."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        number = int(value)
    except OverflowError as e:
        raise ValueError(f"{name} is not finite") from e
    except ValueError as e:
        raise ValueError(f"{name} is not an integer: {value!r}") from e
    if not 0 <= number <= upper:
        raise ValueError(f"{name} out of range: {number}")
    return number


@dataclass
class NostrEvent:
    """A NIP-01 event. ``id`` and ``sig`` are empty until computed/signed."""

    kind: int
    content: str
    tags: list[list[str]] = field(default_factory=list)
    pubkey: str = ""
    created_at: int = field(default_factory=lambda: int(time.time()))
    id: str = ""
    sig: str = ""

    def __post_init__(self) -> None:
        self.kind = int(self.kind)

    def serialize_for_id(self) -> str:
        return json.dumps(
            [0, self.pubkey, self.created_at, self.kind, self.tags, self.content],
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def compute_id(self) -> str:
        return hashlib.sha256(self.serialize_for_id().encode("utf-8")).hexdigest()

    def tag_values(self, name: str) -> list[str]:
        """First value of every tag named ``name``."""
        return [t[1] for t in self.tags if len(t) > 1 and t[0] == name]

    def first_tag(self, name: str) -> str | None:
        values = self.tag_values(name)
        return values[0] if values else None

    def tag_params(self, name: str) -> list[str]:
        """All values of the first tag named ``name``, e.g. a ``relays`` list."""
        return next((list(t[1:]) for t in self.tags if t and t[0] == name), [])

    @property
    def is_signed(self) -> bool:
        return bool(self.sig)

    def to_dict(self) -> dict[str, Any]:
        """Wire form. Unsigned events (rumors) omit ``sig``."""
        data: dict[str, Any] = {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
        }
        if self.sig:
            data["sig"] = self.sig
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NostrEvent:
        return cls(
            kind=_bounded_int(data["kind"], "kind", MAX_KIND),
            content=str(data.get("content", "")),
            tags=[[str(v) for v in tag] for tag in data.get("tags", [])],
            pubkey=str(data.get("pubkey", "")),
            created_at=_bounded_int(data.get("created_at", 0), "created_at", MAX_TIMESTAMP),
            id=str(data.get("id", "")),
            sig=str(data.get("sig", "")),
        )

    @classmethod
    def from_json(cls, raw: str) -> NostrEvent:
        return cls.from_dict(json.loads(raw))


def finalize_rumor(event: NostrEvent, pubkey: str) -> NostrEvent:
    """Set author and id on an unsigned event."""
    event.pubkey = pubkey
    event.sig = ""
    event.id = event.compute_id()
    return event


def sign_event(event: NostrEvent, identity: NostrIdentity) -> NostrEvent:
    """Set author, id and signature in place and return the event."""
    event.pubkey = identity.public_key_hex
    event.id = event.compute_id()
    event.sig = identity.sign(bytes.fromhex(event.id)).hex()
    return event


def verify_event(event: NostrEvent) -> bool:
    """Check the id matches the content and the signature matches the author."""
    if not event.id or not event.sig or event.id != event.compute_id():
        return False
    try:
        return verify_schnorr(bytes.fromhex(event.pubkey), bytes.fromhex(event.id), bytes.fromhex(event.sig))
    except ValueError:
        return False


# =============================================================================
# Marmot envelopes
# =============================================================================


def build_key_package_event(
    identity: NostrIdentity,
    key_package_base64: str,
    relays: list[str],
    client: str | None = None,
    ciphersuite: str | None = None,
) -> NostrEvent:
    """Kind 443, signed by the real identity and restricted to its author (NIP-70)."""
    tags = [
        ["mls_protocol_version", "1.0"],
        ["mls_ciphersuite", ciphersuite_hex_id(ciphersuite) if ciphersuite else ciphersuite_hex_id()],
        ["mls_extensions", "0xf2ee", "0x000a"],
        ["encoding", "base64"],
        ["relays", *relays],
        ["-"],
    ]
    if client:
        tags.append(["client", client])
    return sign_event(NostrEvent(kind=Kind.KEY_PACKAGE, content=key_package_base64, tags=tags), identity)


def build_group_event(nostr_group_id_hex: str, encrypted_content: str) -> tuple[NostrEvent, NostrIdentity]:
    """Kind 445 signed by a fresh key, so relays cannot link messages to members.

    Returns:
        Tuple of (signed event, the single-use signer)
    """
    ephemeral = NostrIdentity.generate()
    event = NostrEvent(kind=Kind.GROUP_MESSAGE, content=encrypted_content, tags=[["h", nostr_group_id_hex]])
    return sign_event(event, ephemeral), ephemeral


def build_inner_chat_message(sender_pubkey_hex: str, text: str, reply_to: str | None = None) -> NostrEvent:
    """Kind 9 rumor carried inside MLS application data. Never signed, never ``h``-tagged."""
    tags = [["e", reply_to, "", "reply"]] if reply_to else []
    return finalize_rumor(NostrEvent(kind=Kind.CHAT, content=text, tags=tags), sender_pubkey_hex)


def build_welcome_rumor(
    sender_pubkey_hex: str,
    welcome_base64: str,
    key_package_event_id: str,
    relays: list[str],
) -> NostrEvent:
    """Kind 444 rumor; delivered only inside a NIP-59 gift wrap."""
    tags = [
        ["e", key_package_event_id],
        ["relays", *relays],
        ["encoding", "base64"],
    ]
    return finalize_rumor(NostrEvent(kind=Kind.WELCOME, content=welcome_base64, tags=tags), sender_pubkey_hex)


def parse_inner_message(data: bytes) -> NostrEvent:
    """Decode MLS application data as an inner rumor.

    Raises:
        ValueError: If the data is not a JSON event object.
    """
    try:
        raw = json.loads(data.decode("utf-8"))
    except RecursionError as e:
        raise ValueError("inner message nests too deeply") from e
    if not isinstance(raw, dict):
        raise ValueError("inner message is not a JSON object")
    return NostrEvent.from_dict(raw)
