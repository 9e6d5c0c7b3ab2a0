# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Key package generation and parsing for the Marmot profile.

A Marmot key package uses the raw 32-byte Nostr pubkey as its basic
credential, advertises support for the Marmot group data and last-resort
extensions, and is by default itself marked last-resort so it can be reused
until replaced.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..crypto.identity import NostrIdentity, credential_identity
from ..crypto.mls import (
    CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519,
    Extension,
    KeyPackage,
    KeyPackagePrivate,
    MLSBackend,
    MLSDecodeError,
    MLSInvalidKeyPackageError,
    NativeMLSBackend,
)
from .extensions import LAST_RESORT_EXTENSION_ID, MARMOT_EXTENSION_ID

if TYPE_CHECKING:
    from ..nostr.events import NostrEvent

DEFAULT_CIPHERSUITE = "MLS_128_DHKEMX25519_AES128GCM_SHA256_Ed25519"

CIPHERSUITES = {
    "MLS_128_DHKEMX25519_AES128GCM_SHA256_Ed25519": CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519,
    "MLS_128_DHKEMP256_AES128GCM_SHA256_P256": 0x0002,
    "MLS_128_DHKEMX25519_CHACHA20POLY1305_SHA256_Ed25519": 0x0003,
}


@dataclass
class GeneratedKeyPackage:
    """A freshly generated key package with its encodings."""

    key_package: KeyPackage
    private: KeyPackagePrivate
    serialized: bytes

    @property
    def serialized_base64(self) -> str:
        return base64.b64encode(self.serialized).decode("ascii")

    @property
    def is_last_resort(self) -> bool:
        return self.key_package.is_last_resort


def ciphersuite_hex_id(name: str = DEFAULT_CIPHERSUITE) -> str:
    """Tag form of a ciphersuite, e.g. ``0x0001``. Unknown names map to 0x0001."""
    suite = CIPHERSUITES.get(name, CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519)
    return f"0x{suite:04x}"


def generate_key_package(
    identity: NostrIdentity,
    backend: MLSBackend | None = None,
    last_resort: bool = True,
) -> GeneratedKeyPackage:
    """Build a Marmot key package for ``identity``."""
    backend = backend or NativeMLSBackend()
    extensions = [Extension(LAST_RESORT_EXTENSION_ID, b"")] if last_resort else []
    key_package, private = backend.generate_key_package(
        credential_identity(identity),
        extensions=extensions,
        capability_extensions=[MARMOT_EXTENSION_ID, LAST_RESORT_EXTENSION_ID],
    )
    return GeneratedKeyPackage(
        key_package=key_package,
        private=private,
        serialized=key_package.to_bytes(),
    )


def parse_key_package_event(event: NostrEvent) -> KeyPackage:
    """Decode and check the key package carried by a kind-443 event.

    Raises:
        MLSInvalidKeyPackageError: If the content is not a valid key package
            or its credential does not match the event author.
    """
    encoding = next((t[1] for t in event.tags if len(t) > 1 and t[0] == "encoding"), "base64")
    if encoding != "base64":
        raise MLSInvalidKeyPackageError(f"unsupported key package encoding: {encoding}")
    try:
        raw = base64.b64decode(event.content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MLSInvalidKeyPackageError("key package content is not valid base64") from e

    try:
        key_package = KeyPackage.from_bytes(raw)
    except MLSDecodeError as e:
        raise MLSInvalidKeyPackageError(e.message) from e
    if key_package.identity.hex() != event.pubkey:
        raise MLSInvalidKeyPackageError(
            "key package credential does not match event author",
            {"credential": key_package.identity.hex(), "pubkey": event.pubkey},
        )
    if not key_package.verify_signature():
        raise MLSInvalidKeyPackageError("key package signature does not verify")
    return key_package
