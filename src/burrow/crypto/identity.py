# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Nostr identity management for Burrow.

Loads or generates a secp256k1 keypair and exposes the 32-byte x-only public
key, which doubles as the MLS basic credential identity.

The key file holds either 64 hex characters or an ``nsec1…`` string. It is
created with mode 0600.
"""

from __future__ import annotations

import logging
import os
import secrets
import stat
from dataclasses import dataclass
from pathlib import Path

from coincurve import PrivateKey, PublicKeyXOnly

from ..core.exceptions import ConfigException, CryptoError, ValidationException
from .nip19 import npub_encode, nsec_decode, nsec_encode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NostrIdentity:
    """A secp256k1 keypair in Nostr form.

    Attributes:
        secret_key: 32-byte raw secret
        public_key: 32-byte x-only (BIP-340) public key
    """

    secret_key: bytes
    public_key: bytes

    @classmethod
    def from_secret(cls, secret_key: bytes) -> NostrIdentity:
        if len(secret_key) != 32:
            raise CryptoError(
                f"Invalid secret key length: {len(secret_key)} (expected 32)",
                {"length": len(secret_key)},
            )
        try:
            private = PrivateKey(secret_key)
        except ValueError as e:
            raise CryptoError("Secret key is not a valid secp256k1 scalar") from e
        return cls(secret_key=bytes(secret_key), public_key=private.public_key_xonly.format())

    @classmethod
    def generate(cls) -> NostrIdentity:
        while True:
            candidate = secrets.token_bytes(32)
            try:
                return cls.from_secret(candidate)
            except CryptoError:
                continue

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    @property
    def secret_key_hex(self) -> str:
        return self.secret_key.hex()

    @property
    def npub(self) -> str:
        return npub_encode(self.public_key_hex)

    @property
    def nsec(self) -> str:
        return nsec_encode(self.secret_key)

    def sign(self, message: bytes) -> bytes:
        """BIP-340 Schnorr signature over a 32-byte message digest."""
        return PrivateKey(self.secret_key).sign_schnorr(message, secrets.token_bytes(32))

    def __repr__(self) -> str:
        return f"NostrIdentity(public_key={self.public_key_hex})"


def verify_schnorr(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Verify a BIP-340 signature. Malformed keys or signatures return False."""
    try:
        return PublicKeyXOnly(public_key).verify(signature, message)
    except (ValueError, TypeError):
        return False


def xonly_public_key(secret_key: bytes) -> bytes:
    """Derive the x-only public key for a raw 32-byte secret."""
    return NostrIdentity.from_secret(secret_key).public_key


def load_identity(key_path: str | Path | None = None) -> NostrIdentity:
    """Load the identity from its key file.

    Args:
        key_path: Key file path; defaults to ``BURROW_KEY_PATH``.

    Raises:
        ConfigException: If the file is missing or does not hold a valid key.
    """
    if key_path is None:
        from ..core.config import get_config

        key_path = get_config().key_file
    path = Path(key_path).expanduser()

    if not path.exists():
        raise ConfigException(f"Secret key not found at {path}. Run 'burrow init' to generate one.")

    raw = path.read_text(encoding="utf-8").strip()
    try:
        if raw.startswith("nsec1"):
            secret = nsec_decode(raw)
        else:
            secret = bytes.fromhex(raw)
        return NostrIdentity.from_secret(secret)
    except (ValueError, CryptoError, ValidationException) as e:
        raise ConfigException(f"Invalid secret key in {path}: {e}") from e


def generate_identity(key_path: str | Path | None = None) -> NostrIdentity:
    """Generate a new identity and write it to ``key_path`` as hex, mode 0600."""
    if key_path is None:
        from ..core.config import get_config

        key_path = get_config().key_file
    path = Path(key_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    identity = NostrIdentity.generate()
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
    with os.fdopen(fd, "w") as f:
        f.write(identity.secret_key_hex)
    # O_CREAT mode is ignored for a pre-existing file
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)

    logger.info(f"Generated new identity {identity.npub} at {path}")
    return identity


def credential_identity(identity: NostrIdentity) -> bytes:
    """Raw 32-byte public key used as the MLS basic credential."""
    return identity.public_key
