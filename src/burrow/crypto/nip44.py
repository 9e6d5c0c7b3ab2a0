# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""NIP-44 v2 encryption for Nostr payloads.

Two modes are built on the same primitive:

- Group-message mode: the MLS exporter secret of the current epoch is used
  as a secp256k1 secret key and paired with its own x-only public key. Every
  member holding the same epoch derives the same conversation key.
- Recipient mode: the usual sender-secret / recipient-pubkey pairing, used
  for NIP-59 seals and gift wraps.

Payload format: ``base64(0x02 || nonce[32] || ciphertext || mac[32])``. The
ciphertext is ChaCha20 over the padded plaintext and the MAC is
HMAC-SHA256 over ``nonce || ciphertext``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import struct

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from ..core.exceptions import CryptoError
from .identity import xonly_public_key

VERSION = 2
SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535

# Error messages that mean "not a NIP-44 payload at all" rather than "ours but broken"
NOT_OUR_FORMAT_ERRORS = ("invalid base64", "invalid payload length", "unknown encryption version")


class Nip44Error(CryptoError):
    """Raised when a NIP-44 payload cannot be produced or opened."""

    def __init__(self, message: str):
        super().__init__(message)

    @property
    def is_foreign_format(self) -> bool:
        """True if the payload is not NIP-44 v2 at all (e.g. another client's format)."""
        return any(sig in self.message for sig in NOT_OUR_FORMAT_ERRORS)


# =============================================================================
# Primitives
# =============================================================================


def _shared_x(secret_key: bytes, public_key_xonly: bytes) -> bytes:
    """Unhashed ECDH: the x coordinate of ``secret * P`` with P lifted to even y."""
    if len(public_key_xonly) != 32:
        raise Nip44Error("invalid public key")
    try:
        private = ec.derive_private_key(int.from_bytes(secret_key, "big"), ec.SECP256K1())
        peer = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256K1(), b"\x02" + bytes(public_key_xonly)
        )
    except ValueError as e:
        raise Nip44Error("invalid public key") from e
    return private.exchange(ec.ECDH(), peer)


def get_conversation_key(secret_key: bytes, public_key_xonly: bytes) -> bytes:
    """HKDF-extract(salt="nip44-v2", ikm=shared_x)."""
    shared = _shared_x(secret_key, public_key_xonly)
    return hmac.new(SALT, shared, hashlib.sha256).digest()


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    if len(conversation_key) != 32:
        raise Nip44Error("invalid conversation key length")
    if len(nonce) != 32:
        raise Nip44Error("invalid nonce length")
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return keys[0:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    data = plaintext.encode("utf-8")
    length = len(data)
    if length < MIN_PLAINTEXT_SIZE or length > MAX_PLAINTEXT_SIZE:
        raise Nip44Error("invalid plaintext length")
    return struct.pack(">H", length) + data + b"\x00" * (calc_padded_len(length) - length)


def _unpad(padded: bytes) -> str:
    (length,) = struct.unpack(">H", padded[:2])
    data = padded[2 : 2 + length]
    if length == 0 or len(data) != length or len(padded) != 2 + calc_padded_len(length):
        raise Nip44Error("invalid padding")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise Nip44Error("invalid padding") from e


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 32-bit little-endian counter then the 96-bit nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    return cipher.encryptor().update(data)


def encrypt(plaintext: str, conversation_key: bytes, nonce: bytes | None = None) -> str:
    """Encrypt ``plaintext`` into a NIP-44 v2 payload.

    Args:
        plaintext: UTF-8 text, 1..65535 bytes once encoded
        conversation_key: 32-byte key from :func:`get_conversation_key`
        nonce: Optional fixed nonce (testing only); a fresh random one otherwise
    """
    if nonce is None:
        nonce = secrets.token_bytes(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = hmac.new(hmac_key, nonce + ciphertext, hashlib.sha256).digest()
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """Open a NIP-44 v2 payload.

    Raises:
        Nip44Error: With one of the messages ``unknown encryption version``,
            ``invalid payload length``, ``invalid base64``, ``invalid MAC``
            or ``invalid padding``.
    """
    plen = len(payload)
    if plen == 0 or payload[0] == "#":
        raise Nip44Error("unknown encryption version")
    if plen < 132 or plen > 87472:
        raise Nip44Error("invalid payload length")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise Nip44Error("invalid base64") from e
    dlen = len(data)
    if dlen < 99 or dlen > 65603:
        raise Nip44Error("invalid payload length")
    if data[0] != VERSION:
        raise Nip44Error("unknown encryption version")

    nonce = data[1:33]
    ciphertext = data[33 : dlen - 32]
    mac = data[dlen - 32 :]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    expected = hmac.new(hmac_key, nonce + ciphertext, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, mac):
        raise Nip44Error("invalid MAC")
    return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))


# =============================================================================
# Group-message mode
# =============================================================================


def group_conversation_key(exporter_secret: bytes) -> bytes:
    """Conversation key of the exporter secret paired with its own public key."""
    try:
        public = xonly_public_key(exporter_secret)
    except CryptoError as e:
        raise Nip44Error("exporter secret is not a valid secp256k1 key") from e
    return get_conversation_key(exporter_secret, public)


def encrypt_group_message(content: bytes, exporter_secret: bytes) -> str:
    """Encrypt serialized MLS bytes for a kind-445 event.

    NIP-44 carries text, so the MLS bytes are base64-encoded first.
    """
    inner = base64.b64encode(content).decode("ascii")
    return encrypt(inner, group_conversation_key(exporter_secret))


def decrypt_group_message(payload: str, exporter_secret: bytes) -> bytes:
    """Inverse of :func:`encrypt_group_message`.

    A payload sealed under another epoch's secret fails with ``invalid MAC``.
    """
    inner = decrypt(payload, group_conversation_key(exporter_secret))
    try:
        return base64.b64decode(inner, validate=True)
    except (binascii.Error, ValueError) as e:
        raise Nip44Error("invalid group message encoding") from e


# =============================================================================
# Recipient mode
# =============================================================================


def encrypt_for_recipient(content: str, sender_secret: bytes, recipient_pubkey: str) -> str:
    key = get_conversation_key(sender_secret, bytes.fromhex(recipient_pubkey))
    return encrypt(content, key)


def decrypt_from_sender(payload: str, recipient_secret: bytes, sender_pubkey: str) -> str:
    key = get_conversation_key(recipient_secret, bytes.fromhex(sender_pubkey))
    return decrypt(payload, key)
