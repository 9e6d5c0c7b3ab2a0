# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Marmot Group Data extension (``0xF2EE``).

Carried in the MLS group context so every member agrees on the group's
Nostr-facing metadata. Wire layout (big-endian, TLS presentation language)::

    uint16 version (=1)
    opaque nostr_group_id[32]
    opaque name<0..2^16-1>
    opaque description<0..2^16-1>
    opaque admin_pubkeys<0..2^16-1>    concatenated 32-byte x-only keys
    opaque relays<0..2^16-1>           newline-joined URLs
    opaque image_hash[32]
    opaque image_key[32]
    opaque image_nonce[12]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..crypto.mls import Extension
from ..crypto.tls import TLSDecodeError, TLSReader, TLSWriter

MARMOT_EXTENSION_ID = 0xF2EE
LAST_RESORT_EXTENSION_ID = 0x000A
GROUP_DATA_VERSION = 1

NOSTR_GROUP_ID_LEN = 32
IMAGE_HASH_LEN = 32
IMAGE_KEY_LEN = 32
IMAGE_NONCE_LEN = 12


class ExtensionDecodeError(TLSDecodeError):
    """Raised when Marmot group data is malformed."""


@dataclass
class MarmotGroupData:
    """Group metadata shared through the MLS group context.

    Attributes:
        nostr_group_id: 32 random bytes, used as the ``h`` tag on kind-445 events
        name: Display name
        description: Free text
        admin_pubkeys: Hex x-only pubkeys of admins
        relays: Relay URLs the group publishes to
        image_hash / image_key / image_nonce: Encrypted avatar pointer; all-zero means unset
    """

    nostr_group_id: bytes
    name: str = ""
    description: str = ""
    admin_pubkeys: list[str] = field(default_factory=list)
    relays: list[str] = field(default_factory=list)
    image_hash: bytes = bytes(IMAGE_HASH_LEN)
    image_key: bytes = bytes(IMAGE_KEY_LEN)
    image_nonce: bytes = bytes(IMAGE_NONCE_LEN)
    version: int = GROUP_DATA_VERSION

    @property
    def has_image(self) -> bool:
        return any(self.image_hash)

    def to_extension(self) -> Extension:
        return Extension(MARMOT_EXTENSION_ID, encode_group_data(self))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "nostr_group_id": self.nostr_group_id.hex(),
            "name": self.name,
            "description": self.description,
            "admin_pubkeys": self.admin_pubkeys,
            "relays": self.relays,
            "image_hash": self.image_hash.hex(),
            "image_key": self.image_key.hex(),
            "image_nonce": self.image_nonce.hex(),
        }


def encode_group_data(data: MarmotGroupData) -> bytes:
    """Serialize group data. Raises ValueError on out-of-range fields."""
    admins = b""
    for pubkey in data.admin_pubkeys:
        raw = bytes.fromhex(pubkey)
        if len(raw) != 32:
            raise ValueError(f"admin pubkey must be 32 bytes: {pubkey}")
        admins += raw

    w = TLSWriter()
    w.uint16(data.version)
    w.fixed(data.nostr_group_id, NOSTR_GROUP_ID_LEN)
    w.opaque(data.name.encode("utf-8"), 2)
    w.opaque(data.description.encode("utf-8"), 2)
    w.opaque(admins, 2)
    w.opaque("\n".join(data.relays).encode("utf-8"), 2)
    w.fixed(data.image_hash, IMAGE_HASH_LEN)
    w.fixed(data.image_key, IMAGE_KEY_LEN)
    w.fixed(data.image_nonce, IMAGE_NONCE_LEN)
    return w.getvalue()


def decode_group_data(raw: bytes) -> MarmotGroupData:
    """Parse group data, rejecting truncation and trailing bytes.

    Raises:
        ExtensionDecodeError: If the input is malformed.
    """
    r = TLSReader(raw)
    try:
        version = r.uint16("version")
        nostr_group_id = r.fixed(NOSTR_GROUP_ID_LEN, "nostr_group_id")
        name = r.opaque(2, "name").decode("utf-8")
        description = r.opaque(2, "description").decode("utf-8")
        admins = r.opaque(2, "admin_pubkeys")
        relays_raw = r.opaque(2, "relays").decode("utf-8")
        image_hash = r.fixed(IMAGE_HASH_LEN, "image_hash")
        image_key = r.fixed(IMAGE_KEY_LEN, "image_key")
        image_nonce = r.fixed(IMAGE_NONCE_LEN, "image_nonce")
        r.expect_end()
    except TLSDecodeError as e:
        raise ExtensionDecodeError(f"invalid group data: {e.message}", e.details) from e
    except UnicodeDecodeError as e:
        raise ExtensionDecodeError("invalid group data: text field is not UTF-8") from e

    if len(admins) % 32:
        raise ExtensionDecodeError(
            f"invalid group data: admin block length {len(admins)} is not a multiple of 32"
        )

    return MarmotGroupData(
        version=version,
        nostr_group_id=nostr_group_id,
        name=name,
        description=description,
        admin_pubkeys=[admins[i : i + 32].hex() for i in range(0, len(admins), 32)],
        relays=[url for url in relays_raw.split("\n") if url],
        image_hash=image_hash,
        image_key=image_key,
        image_nonce=image_nonce,
    )
