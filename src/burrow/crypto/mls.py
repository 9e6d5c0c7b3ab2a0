# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""MLS (Messaging Layer Security) Abstraction Layer.

Provides a Python interface for MLS-style group key agreement (RFC 9420).
The Marmot layer only ever talks to :class:`MLSBackend`; the concrete
:class:`NativeMLSBackend` implements it in-process on top of ``cryptography``
for ciphersuite 0x0001 (X25519, AES-128-GCM, SHA-256, Ed25519).

The backend is stateless: every operation takes a :class:`GroupState`, works
on a private copy and returns the new state. A failed operation therefore
never disturbs the caller's state.

Scope of the native backend:
- Add-only membership (no remove proposals)
- Commit secrets are encrypted directly to each member's leaf key rather
  than along a ratchet tree path, which is equivalent for small groups
- Application keys are derived per (sender, generation) from the epoch's
  encryption secret; replays within an epoch are rejected

Security properties:
- Forward secrecy across epochs: each commit mixes a fresh commit secret
  into the key schedule and rotates the committer's leaf key
- Authentication: commits, group info and application content are signed
  with the sender's Ed25519 key, commits also carry a membership tag

Example:
    >>> backend = NativeMLSBackend()
    >>> alice_kp, alice_priv = backend.generate_key_package(alice_pub)
    >>> group = backend.create_group(os.urandom(32), alice_kp, alice_priv, [])
    >>> bob_kp, bob_priv = backend.generate_key_package(bob_pub)
    >>> result = backend.add_member(group, bob_kp)
    >>> bob_group = backend.join_from_welcome(result.welcome, bob_priv)
"""

from __future__ import annotations

import copy
import hashlib
import hmac
import json
import secrets as crypto_secrets
import struct
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from ..core.exceptions import CryptoError
from .tls import TLSDecodeError, TLSReader, TLSWriter

PROTOCOL_VERSION = 1  # mls10
CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519 = 0x0001
CREDENTIAL_BASIC = 0x0001

WIRE_FORMAT_PUBLIC_MESSAGE = 1
WIRE_FORMAT_PRIVATE_MESSAGE = 2
WIRE_FORMAT_WELCOME = 3
WIRE_FORMAT_KEY_PACKAGE = 5

CONTENT_TYPE_APPLICATION = 1
CONTENT_TYPE_COMMIT = 3

LAST_RESORT_EXTENSION_ID = 0x000A

_MAX_LIFETIME = 2**64 - 1
_STATE_FORMAT = "burrow-mls-group-state"
_STATE_VERSION = 1


# =============================================================================
# Exceptions
# =============================================================================


class MLSError(CryptoError):
    """Base exception for MLS operations."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, details)


class MLSDecodeError(MLSError):
    """Raised when a message, key package or state blob cannot be decoded."""


class MLSEpochMismatchError(MLSError):
    """Raised when a message references a different epoch than the group's."""


class MLSSignatureError(MLSError):
    """Raised when a signature or membership tag does not verify."""


class MLSSingleMemberError(MLSError):
    """Raised when encrypting in a group with nobody else to read it."""


class MLSInvalidKeyPackageError(MLSError):
    """Raised when a key package fails validation for admission."""


class MLSOwnMessageError(MLSError):
    """Raised when processing a message this member sent itself."""


class MLSReplayError(MLSError):
    """Raised when an application message generation is seen twice."""


# =============================================================================
# Key derivation
# =============================================================================


def _kdf_label(label: bytes, context: bytes, length: int) -> bytes:
    return TLSWriter().uint16(length).opaque(b"MLS 1.0 " + label, 1).opaque(context, 4).getvalue()


def expand_with_label(secret: bytes, label: bytes, context: bytes, length: int) -> bytes:
    """HKDF-Expand with an MLS ``KDFLabel`` as info."""
    return HKDFExpand(
        algorithm=hashes.SHA256(),
        length=length,
        info=_kdf_label(label, context, length),
    ).derive(secret)


def derive_secret(secret: bytes, label: bytes) -> bytes:
    return expand_with_label(secret, label, b"", 32)


def _extract(salt: bytes, ikm: bytes) -> bytes:
    return hmac.new(salt, ikm, hashlib.sha256).digest()


@dataclass(frozen=True)
class MLSKeySchedule:
    """Key schedule derived from the MLS epoch secret.

    The key schedule derives multiple secrets from the epoch secret:
    - sender_data_secret: For encrypting the sender of application messages
    - encryption_secret: Root of the per-sender application keys
    - exporter_secret: For deriving external secrets (the Marmot NIP-44 key)
    - membership_key: For membership tags on commits
    - init_secret: Carried into the next epoch
    """

    epoch: int
    epoch_secret: bytes
    sender_data_secret: bytes
    encryption_secret: bytes
    exporter_secret: bytes
    membership_key: bytes
    init_secret: bytes

    @classmethod
    def from_epoch_secret(cls, epoch: int, epoch_secret: bytes) -> MLSKeySchedule:
        return cls(
            epoch=epoch,
            epoch_secret=epoch_secret,
            sender_data_secret=derive_secret(epoch_secret, b"sender data"),
            encryption_secret=derive_secret(epoch_secret, b"encryption"),
            exporter_secret=derive_secret(epoch_secret, b"exporter"),
            membership_key=derive_secret(epoch_secret, b"membership"),
            init_secret=derive_secret(epoch_secret, b"init"),
        )

    def _application_secret(self, leaf_index: int, generation: int) -> bytes:
        return expand_with_label(
            self.encryption_secret,
            b"application",
            struct.pack(">II", leaf_index, generation),
            32,
        )

    def derive_application_key(self, leaf_index: int, generation: int) -> bytes:
        """Derive the 16-byte AEAD key for one sender's message generation.

        Args:
            leaf_index: The sender's leaf index
            generation: The message generation (increments per message)

        Returns:
            16-byte application key for AES-128-GCM
        """
        return expand_with_label(self._application_secret(leaf_index, generation), b"key", b"", 16)

    def derive_nonce(self, leaf_index: int, generation: int) -> bytes:
        """Derive the 12-byte AEAD nonce for one sender's message generation."""
        return expand_with_label(self._application_secret(leaf_index, generation), b"nonce", b"", 12)

    def sender_data_key_nonce(self, ciphertext_sample: bytes) -> tuple[bytes, bytes]:
        key = expand_with_label(self.sender_data_secret, b"key", ciphertext_sample, 16)
        nonce = expand_with_label(self.sender_data_secret, b"nonce", ciphertext_sample, 12)
        return key, nonce

    def export_secret(self, label: bytes, context: bytes, length: int = 32) -> bytes:
        """Export a secret for external use (RFC 9420 MLS-Exporter).

        Args:
            label: Label for the exported secret
            context: Context binding for the secret
            length: Desired length in bytes

        Returns:
            Exported secret of the specified length
        """
        labeled = derive_secret(self.exporter_secret, label)
        return expand_with_label(labeled, b"exported", hashlib.sha256(context).digest(), length)


def _next_epoch_secret(init_secret: bytes, commit_secret: bytes, group_context: bytes) -> bytes:
    joiner_secret = _extract(init_secret, commit_secret)
    return expand_with_label(joiner_secret, b"epoch", hashlib.sha256(group_context).digest(), 32)


# =============================================================================
# Signatures and sealing
# =============================================================================


def _sign_content(label: bytes, content: bytes) -> bytes:
    return TLSWriter().opaque(b"MLS 1.0 " + label, 1).opaque(content, 4).getvalue()


def _sign_with_label(private_key: bytes, label: bytes, content: bytes) -> bytes:
    return Ed25519PrivateKey.from_private_bytes(private_key).sign(_sign_content(label, content))


def _verify_with_label(public_key: bytes, label: bytes, content: bytes, signature: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, _sign_content(label, content))
    except (InvalidSignature, ValueError):
        return False
    return True


def _seal_key_nonce(shared: bytes, kem_output: bytes, recipient: bytes, info: bytes) -> tuple[bytes, bytes]:
    prk = _extract(b"burrow-hpke", shared + kem_output + recipient)
    return expand_with_label(prk, b"seal key", info, 16), expand_with_label(prk, b"seal nonce", info, 12)


def _seal(recipient_public: bytes, plaintext: bytes, info: bytes) -> tuple[bytes, bytes]:
    """Encrypt to an X25519 public key. Returns ``(kem_output, ciphertext)``."""
    ephemeral = X25519PrivateKey.generate()
    kem_output = ephemeral.public_key().public_bytes_raw()
    shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(recipient_public))
    key, nonce = _seal_key_nonce(shared, kem_output, recipient_public, info)
    return kem_output, AESGCM(key).encrypt(nonce, plaintext, info)


def _open(recipient_private: bytes, kem_output: bytes, ciphertext: bytes, info: bytes) -> bytes:
    private = X25519PrivateKey.from_private_bytes(recipient_private)
    try:
        shared = private.exchange(X25519PublicKey.from_public_bytes(kem_output))
    except ValueError as e:
        raise MLSDecodeError("invalid KEM output") from e
    key, nonce = _seal_key_nonce(shared, kem_output, private.public_key().public_bytes_raw(), info)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, info)
    except InvalidTag as e:
        raise MLSDecodeError("cannot open sealed secret") from e


def _ed25519_public(private_key: bytes) -> bytes:
    return Ed25519PrivateKey.from_private_bytes(private_key).public_key().public_bytes_raw()


def _x25519_public(private_key: bytes) -> bytes:
    return X25519PrivateKey.from_private_bytes(private_key).public_key().public_bytes_raw()


def _new_x25519() -> tuple[bytes, bytes]:
    private = X25519PrivateKey.generate()
    return private.private_bytes_raw(), private.public_key().public_bytes_raw()


def _new_ed25519() -> tuple[bytes, bytes]:
    private = Ed25519PrivateKey.generate()
    return private.private_bytes_raw(), private.public_key().public_bytes_raw()


# =============================================================================
# Data Classes
# =============================================================================


def _encode_u16_list(w: TLSWriter, values: list[int]) -> None:
    w.opaque(b"".join(struct.pack(">H", v) for v in values), 1)


def _decode_u16_list(r: TLSReader, what: str) -> list[int]:
    raw = r.opaque(1, what)
    if len(raw) % 2:
        raise TLSDecodeError(f"odd-length uint16 list in {what}")
    return [v for (v,) in struct.iter_unpack(">H", raw)]


@dataclass(frozen=True)
class Extension:
    """A typed extension blob (group context or key package)."""

    extension_type: int
    data: bytes

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.extension_type, "data": self.data.hex()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Extension:
        return cls(extension_type=data["type"], data=bytes.fromhex(data["data"]))


def _encode_extensions(w: TLSWriter, extensions: list[Extension]) -> None:
    inner = TLSWriter()
    for ext in extensions:
        inner.uint16(ext.extension_type).opaque(ext.data, 4)
    w.opaque(inner.getvalue(), 4)


def _decode_extensions(r: TLSReader) -> list[Extension]:
    inner = TLSReader(r.opaque(4, "extensions"))
    extensions = []
    while inner.remaining:
        ext_type = inner.uint16("extension type")
        extensions.append(Extension(ext_type, inner.opaque(4, "extension data")))
    return extensions


@dataclass
class Capabilities:
    """What a client supports, advertised in its leaf node."""

    versions: list[int] = field(default_factory=lambda: [PROTOCOL_VERSION])
    cipher_suites: list[int] = field(default_factory=lambda: [CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519])
    extensions: list[int] = field(default_factory=list)
    credentials: list[int] = field(default_factory=lambda: [CREDENTIAL_BASIC])

    def encode(self, w: TLSWriter) -> None:
        _encode_u16_list(w, self.versions)
        _encode_u16_list(w, self.cipher_suites)
        _encode_u16_list(w, self.extensions)
        _encode_u16_list(w, self.credentials)

    @classmethod
    def decode(cls, r: TLSReader) -> Capabilities:
        return cls(
            versions=_decode_u16_list(r, "versions"),
            cipher_suites=_decode_u16_list(r, "cipher suites"),
            extensions=_decode_u16_list(r, "extensions"),
            credentials=_decode_u16_list(r, "credentials"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "versions": self.versions,
            "cipher_suites": self.cipher_suites,
            "extensions": self.extensions,
            "credentials": self.credentials,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Capabilities:
        return cls(
            versions=list(data["versions"]),
            cipher_suites=list(data["cipher_suites"]),
            extensions=list(data["extensions"]),
            credentials=list(data["credentials"]),
        )


@dataclass
class LeafNode:
    """A group member's public material.

    Attributes:
        identity: Basic credential identity (the raw 32-byte Nostr pubkey)
        signature_key: Ed25519 public key
        encryption_key: X25519 public key the member receives commit secrets on
        capabilities: Advertised capabilities
    """

    identity: bytes
    signature_key: bytes
    encryption_key: bytes
    capabilities: Capabilities = field(default_factory=Capabilities)

    def encode(self, w: TLSWriter) -> None:
        w.fixed(self.encryption_key, 32)
        w.fixed(self.signature_key, 32)
        w.uint16(CREDENTIAL_BASIC).opaque(self.identity, 2)
        self.capabilities.encode(w)

    @classmethod
    def decode(cls, r: TLSReader) -> LeafNode:
        encryption_key = r.fixed(32, "encryption key")
        signature_key = r.fixed(32, "signature key")
        credential_type = r.uint16("credential type")
        if credential_type != CREDENTIAL_BASIC:
            raise TLSDecodeError(f"unsupported credential type: {credential_type}")
        identity = r.opaque(2, "identity")
        return cls(
            identity=identity,
            signature_key=signature_key,
            encryption_key=encryption_key,
            capabilities=Capabilities.decode(r),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity.hex(),
            "signature_key": self.signature_key.hex(),
            "encryption_key": self.encryption_key.hex(),
            "capabilities": self.capabilities.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LeafNode:
        return cls(
            identity=bytes.fromhex(data["identity"]),
            signature_key=bytes.fromhex(data["signature_key"]),
            encryption_key=bytes.fromhex(data["encryption_key"]),
            capabilities=Capabilities.from_dict(data["capabilities"]),
        )


def _encode_members(w: TLSWriter, members: list[LeafNode]) -> None:
    inner = TLSWriter()
    for leaf in members:
        leaf.encode(inner)
    w.opaque(inner.getvalue(), 4)


def _decode_members(r: TLSReader) -> list[LeafNode]:
    inner = TLSReader(r.opaque(4, "members"))
    members = []
    while inner.remaining:
        members.append(LeafNode.decode(inner))
    return members


def _message_header(wire_format: int) -> TLSWriter:
    return TLSWriter().uint16(PROTOCOL_VERSION).uint16(wire_format)


def _read_header(data: bytes) -> tuple[int, TLSReader]:
    r = TLSReader(data)
    try:
        version = r.uint16("protocol version")
        wire_format = r.uint16("wire format")
    except TLSDecodeError as e:
        raise MLSDecodeError("message too short for MLS header") from e
    if version != PROTOCOL_VERSION:
        raise MLSDecodeError(f"unsupported protocol version: {version}")
    return wire_format, r


@dataclass
class KeyPackage:
    """A signed, publishable offer to be added to a group."""

    init_key: bytes
    leaf: LeafNode
    extensions: list[Extension] = field(default_factory=list)
    not_before: int = 0
    not_after: int = _MAX_LIFETIME
    version: int = PROTOCOL_VERSION
    cipher_suite: int = CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519
    signature: bytes = b""

    def _tbs(self) -> bytes:
        w = TLSWriter().uint16(self.version).uint16(self.cipher_suite).fixed(self.init_key, 32)
        self.leaf.encode(w)
        w.uint64(self.not_before).uint64(self.not_after)
        _encode_extensions(w, self.extensions)
        return w.getvalue()

    def sign(self, signature_private: bytes) -> None:
        self.signature = _sign_with_label(signature_private, b"KeyPackageTBS", self._tbs())

    def verify_signature(self) -> bool:
        return _verify_with_label(self.leaf.signature_key, b"KeyPackageTBS", self._tbs(), self.signature)

    def to_bytes(self) -> bytes:
        return _message_header(WIRE_FORMAT_KEY_PACKAGE).raw(self._tbs()).opaque(self.signature, 2).getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> KeyPackage:
        """Decode a serialized key package.

        Raises:
            MLSDecodeError: If the bytes are not a well-formed key package.
        """
        wire_format, r = _read_header(data)
        if wire_format != WIRE_FORMAT_KEY_PACKAGE:
            raise MLSDecodeError(f"expected key package, got wire format {wire_format}")
        try:
            version = r.uint16("version")
            cipher_suite = r.uint16("cipher suite")
            init_key = r.fixed(32, "init key")
            leaf = LeafNode.decode(r)
            not_before = r.uint64("not_before")
            not_after = r.uint64("not_after")
            extensions = _decode_extensions(r)
            signature = r.opaque(2, "signature")
            r.expect_end()
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed key package: {e.message}") from e
        return cls(
            init_key=init_key,
            leaf=leaf,
            extensions=extensions,
            not_before=not_before,
            not_after=not_after,
            version=version,
            cipher_suite=cipher_suite,
            signature=signature,
        )

    def ref(self) -> bytes:
        """Stable reference used to address Welcome secrets to this package."""
        return hashlib.sha256(b"MLS 1.0 KeyPackage Reference" + self.to_bytes()).digest()

    @property
    def identity(self) -> bytes:
        return self.leaf.identity

    @property
    def is_last_resort(self) -> bool:
        return any(e.extension_type == LAST_RESORT_EXTENSION_ID for e in self.extensions)


@dataclass
class KeyPackagePrivate:
    """Private counterpart of a :class:`KeyPackage`.

    Never leaves the device; stored base64-encoded next to the public package.
    """

    init_private: bytes
    encryption_private: bytes
    signature_private: bytes
    key_package_ref: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "init_private": self.init_private.hex(),
            "encryption_private": self.encryption_private.hex(),
            "signature_private": self.signature_private.hex(),
            "key_package_ref": self.key_package_ref.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KeyPackagePrivate:
        return cls(
            init_private=bytes.fromhex(data["init_private"]),
            encryption_private=bytes.fromhex(data["encryption_private"]),
            signature_private=bytes.fromhex(data["signature_private"]),
            key_package_ref=bytes.fromhex(data["key_package_ref"]),
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> KeyPackagePrivate:
        try:
            return cls.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            raise MLSDecodeError("malformed private key package") from e


@dataclass
class ClientConfig:
    """Local processing policy. Not part of the serialized group state.

    Attributes:
        padding_block: Pad application content to a multiple of this many
            bytes; 0 means no padding
        credential_validation: ``basic-32`` requires 32-byte basic identities
    """

    padding_block: int = 0
    credential_validation: str = "basic-32"

    @property
    def padding(self) -> str:
        return "none" if self.padding_block == 0 else f"block-{self.padding_block}"


@dataclass
class GroupState:
    """One member's view of an MLS group at an epoch.

    Attributes:
        group_id: MLS group identifier
        epoch: Current epoch number (increments on each commit)
        cipher_suite: The cipher suite for the group
        extensions: Group context extensions (carries the Marmot group data)
        members: Leaf nodes, indexed by leaf index
        own_leaf: This member's leaf index
        signature_private: This member's Ed25519 private key
        encryption_private: This member's current X25519 leaf private key
        epoch_secret: Root of the epoch key schedule
        send_generation: Next application generation this member will use
        received: Application generations already processed, per sender leaf
        config: Local policy, re-attached on deserialization
    """

    group_id: bytes
    epoch: int
    extensions: list[Extension]
    members: list[LeafNode]
    own_leaf: int
    signature_private: bytes
    encryption_private: bytes
    epoch_secret: bytes
    cipher_suite: int = CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519
    send_generation: int = 0
    received: dict[int, list[int]] = field(default_factory=dict)
    config: ClientConfig = field(default_factory=ClientConfig)

    @property
    def schedule(self) -> MLSKeySchedule:
        return MLSKeySchedule.from_epoch_secret(self.epoch, self.epoch_secret)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def own_identity(self) -> bytes:
        return self.members[self.own_leaf].identity

    @property
    def member_identities(self) -> list[bytes]:
        return [m.identity for m in self.members]

    def get_extension(self, extension_type: int) -> Extension | None:
        for ext in self.extensions:
            if ext.extension_type == extension_type:
                return ext
        return None

    def group_context(self) -> bytes:
        """Everything all members must agree on for the current epoch."""
        w = TLSWriter().uint16(PROTOCOL_VERSION).uint16(self.cipher_suite)
        w.opaque(self.group_id, 1).uint64(self.epoch)
        _encode_members(w, self.members)
        _encode_extensions(w, self.extensions)
        return w.getvalue()

    def copy(self) -> GroupState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization. ``config`` is excluded."""
        return {
            "format": _STATE_FORMAT,
            "version": _STATE_VERSION,
            "group_id": self.group_id.hex(),
            "epoch": self.epoch,
            "cipher_suite": self.cipher_suite,
            "extensions": [e.to_dict() for e in self.extensions],
            "members": [m.to_dict() for m in self.members],
            "own_leaf": self.own_leaf,
            "signature_private": self.signature_private.hex(),
            "encryption_private": self.encryption_private.hex(),
            "epoch_secret": self.epoch_secret.hex(),
            "send_generation": self.send_generation,
            "received": {str(k): sorted(v) for k, v in self.received.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], config: ClientConfig | None = None) -> GroupState:
        """Create from dictionary, attaching ``config`` (defaults if None)."""
        if data.get("format") != _STATE_FORMAT or data.get("version") != _STATE_VERSION:
            raise MLSDecodeError("unrecognized group state format")
        return cls(
            group_id=bytes.fromhex(data["group_id"]),
            epoch=data["epoch"],
            cipher_suite=data["cipher_suite"],
            extensions=[Extension.from_dict(e) for e in data["extensions"]],
            members=[LeafNode.from_dict(m) for m in data["members"]],
            own_leaf=data["own_leaf"],
            signature_private=bytes.fromhex(data["signature_private"]),
            encryption_private=bytes.fromhex(data["encryption_private"]),
            epoch_secret=bytes.fromhex(data["epoch_secret"]),
            send_generation=data.get("send_generation", 0),
            received={int(k): list(v) for k, v in data.get("received", {}).items()},
            config=config or ClientConfig(),
        )


@dataclass
class ProcessResult:
    """Outcome of processing an inbound group message.

    Attributes:
        kind: ``application`` or ``commit``
        epoch: Group epoch after processing
        sender: Credential identity of the sender
        application_data: Decrypted payload for application messages
        added_members: Identities admitted by a commit
    """

    kind: str
    epoch: int
    sender: bytes
    application_data: bytes | None = None
    added_members: list[bytes] = field(default_factory=list)

    @property
    def is_application(self) -> bool:
        return self.kind == "application"

    @property
    def is_commit(self) -> bool:
        return self.kind == "commit"


@dataclass
class CommitResult:
    """Outcome of creating a commit."""

    state: GroupState
    commit: bytes
    welcome: bytes | None = None


# =============================================================================
# Abstract Backend
# =============================================================================


class MLSBackend(ABC):
    """Abstract interface for MLS operations.

    This defines the contract that any MLS implementation must fulfill.
    Implementations include:
    - NativeMLSBackend: In-process, built on ``cryptography``
    - Future: OpenMLS binding via FFI
    """

    @abstractmethod
    def generate_key_package(
        self,
        identity: bytes,
        extensions: list[Extension] | None = None,
        capability_extensions: list[int] | None = None,
    ) -> tuple[KeyPackage, KeyPackagePrivate]:
        """Generate a signed key package for ``identity``.

        Args:
            identity: Basic credential identity
            extensions: Key package extensions (e.g. last-resort)
            capability_extensions: Extension types to advertise support for

        Returns:
            Tuple of (public key package, private counterpart)
        """
        pass

    @abstractmethod
    def create_group(
        self,
        group_id: bytes,
        key_package: KeyPackage,
        key_package_private: KeyPackagePrivate,
        extensions: list[Extension],
    ) -> GroupState:
        """Create a single-member group at epoch 0 seeded from the creator's key package."""
        pass

    @abstractmethod
    def add_member(self, state: GroupState, key_package: KeyPackage) -> CommitResult:
        """Add a member by key package and commit immediately.

        Raises:
            MLSInvalidKeyPackageError: If the key package fails validation
        """
        pass

    @abstractmethod
    def encrypt_application(self, state: GroupState, plaintext: bytes) -> tuple[GroupState, bytes]:
        """Encrypt application data for the group.

        Raises:
            MLSSingleMemberError: If no other member could decrypt it
        """
        pass

    @abstractmethod
    def process_message(self, state: GroupState, message: bytes) -> tuple[GroupState, ProcessResult]:
        """Process an inbound commit or application message."""
        pass

    @abstractmethod
    def export_secret(self, state: GroupState, label: bytes, context: bytes, length: int) -> bytes:
        """MLS exporter for the current epoch."""
        pass

    @abstractmethod
    def serialize_state(self, state: GroupState) -> bytes:
        pass

    @abstractmethod
    def deserialize_state(self, data: bytes) -> GroupState:
        pass

    @abstractmethod
    def join_from_welcome(self, welcome: bytes, key_package_private: KeyPackagePrivate) -> GroupState:
        """Join a group from a Welcome addressed to one of our key packages."""
        pass


# =============================================================================
# Native Implementation
# =============================================================================


class NativeMLSBackend(MLSBackend):
    """In-process MLS backend for ciphersuite 0x0001.

    Example:
        >>> backend = NativeMLSBackend()
        >>> kp, priv = backend.generate_key_package(b"\\x01" * 32)
        >>> group = backend.create_group(b"g" * 32, kp, priv, [])
        >>> assert group.member_count == 1
    """

    def __init__(self, config: ClientConfig | None = None):
        self.config = config or ClientConfig()

    # -------------------------------------------------------------------------
    # Key packages
    # -------------------------------------------------------------------------

    def generate_key_package(
        self,
        identity: bytes,
        extensions: list[Extension] | None = None,
        capability_extensions: list[int] | None = None,
    ) -> tuple[KeyPackage, KeyPackagePrivate]:
        init_private, init_public = _new_x25519()
        encryption_private, encryption_public = _new_x25519()
        signature_private, signature_public = _new_ed25519()

        key_package = KeyPackage(
            init_key=init_public,
            leaf=LeafNode(
                identity=bytes(identity),
                signature_key=signature_public,
                encryption_key=encryption_public,
                capabilities=Capabilities(extensions=list(capability_extensions or [])),
            ),
            extensions=list(extensions or []),
        )
        key_package.sign(signature_private)

        private = KeyPackagePrivate(
            init_private=init_private,
            encryption_private=encryption_private,
            signature_private=signature_private,
            key_package_ref=key_package.ref(),
        )
        return key_package, private

    def validate_key_package(self, state: GroupState, key_package: KeyPackage) -> None:
        """Check a key package is acceptable for admission to ``state``.

        Raises:
            MLSInvalidKeyPackageError: Describing the first failed check
        """
        if key_package.version != PROTOCOL_VERSION:
            raise MLSInvalidKeyPackageError(f"unsupported protocol version: {key_package.version}")
        if key_package.cipher_suite != state.cipher_suite:
            raise MLSInvalidKeyPackageError(
                f"ciphersuite mismatch: 0x{key_package.cipher_suite:04x} != 0x{state.cipher_suite:04x}"
            )
        if not key_package.verify_signature():
            raise MLSInvalidKeyPackageError("key package signature does not verify")
        if state.config.credential_validation == "basic-32" and len(key_package.identity) != 32:
            raise MLSInvalidKeyPackageError(
                f"credential identity must be 32 bytes, got {len(key_package.identity)}"
            )
        now = int(time.time())
        if not key_package.not_before <= now <= key_package.not_after:
            raise MLSInvalidKeyPackageError("key package lifetime is not current")
        supported = set(key_package.leaf.capabilities.extensions)
        for ext in state.extensions:
            if ext.extension_type not in supported:
                raise MLSInvalidKeyPackageError(
                    f"key package lacks required extension 0x{ext.extension_type:04x}"
                )
        if key_package.identity in state.member_identities:
            raise MLSInvalidKeyPackageError(f"already a member: {key_package.identity.hex()}")

    # -------------------------------------------------------------------------
    # Group lifecycle
    # -------------------------------------------------------------------------

    def create_group(
        self,
        group_id: bytes,
        key_package: KeyPackage,
        key_package_private: KeyPackagePrivate,
        extensions: list[Extension],
    ) -> GroupState:
        return GroupState(
            group_id=bytes(group_id),
            epoch=0,
            cipher_suite=key_package.cipher_suite,
            extensions=list(extensions),
            members=[copy.deepcopy(key_package.leaf)],
            own_leaf=0,
            signature_private=key_package_private.signature_private,
            encryption_private=key_package_private.encryption_private,
            epoch_secret=crypto_secrets.token_bytes(32),
            config=self.config,
        )

    def add_member(self, state: GroupState, key_package: KeyPackage) -> CommitResult:
        return self.commit(state, [key_package])

    def self_update(self, state: GroupState) -> CommitResult:
        """Commit with no proposals, rotating this member's leaf key."""
        return self.commit(state, [])

    def commit(self, state: GroupState, key_packages: list[KeyPackage]) -> CommitResult:
        """Commit the given Add proposals and advance the epoch by one.

        A Welcome is produced only when at least one member is added.
        """
        new_state = state.copy()
        seen: set[bytes] = set()
        for kp in key_packages:
            self.validate_key_package(new_state, kp)
            if kp.identity in seen:
                raise MLSInvalidKeyPackageError(f"duplicate key package identity: {kp.identity.hex()}")
            seen.add(kp.identity)

        old_schedule = new_state.schedule
        old_epoch = new_state.epoch
        old_members = list(new_state.members)
        commit_secret = crypto_secrets.token_bytes(32)
        context_info = TLSWriter().opaque(new_state.group_id, 1).uint64(old_epoch).getvalue()

        sealed = []
        for leaf_index, leaf in enumerate(old_members):
            if leaf_index == new_state.own_leaf:
                continue
            kem_output, ciphertext = _seal(leaf.encryption_key, commit_secret, context_info)
            sealed.append((leaf_index, kem_output, ciphertext))

        new_encryption_private, new_encryption_public = _new_x25519()
        added_bytes = [kp.to_bytes() for kp in key_packages]

        content = _encode_commit_content(
            new_state.group_id,
            old_epoch,
            new_state.own_leaf,
            added_bytes,
            new_encryption_public,
            sealed,
        )
        signature = _sign_with_label(new_state.signature_private, b"FramedContentTBS", content)
        tag = hmac.new(old_schedule.membership_key, content + signature, hashlib.sha256).digest()
        commit_bytes = (
            _message_header(WIRE_FORMAT_PUBLIC_MESSAGE)
            .opaque(content, 4)
            .opaque(signature, 2)
            .fixed(tag, 32)
            .getvalue()
        )

        # Apply locally exactly as receivers will
        own = new_state.members[new_state.own_leaf]
        new_state.members[new_state.own_leaf] = LeafNode(
            identity=own.identity,
            signature_key=own.signature_key,
            encryption_key=new_encryption_public,
            capabilities=copy.deepcopy(own.capabilities),
        )
        first_new_leaf = len(new_state.members)
        for kp in key_packages:
            new_state.members.append(copy.deepcopy(kp.leaf))
        new_state.encryption_private = new_encryption_private
        self._advance_epoch(new_state, old_schedule.init_secret, commit_secret)

        welcome = None
        if key_packages:
            welcome = self._build_welcome(new_state, key_packages, first_new_leaf)
        return CommitResult(state=new_state, commit=commit_bytes, welcome=welcome)

    def _advance_epoch(self, state: GroupState, init_secret: bytes, commit_secret: bytes) -> None:
        state.epoch += 1
        state.epoch_secret = _next_epoch_secret(init_secret, commit_secret, state.group_context())
        state.send_generation = 0
        state.received = {}

    # -------------------------------------------------------------------------
    # Welcome
    # -------------------------------------------------------------------------

    def _build_welcome(self, state: GroupState, key_packages: list[KeyPackage], first_new_leaf: int) -> bytes:
        welcome_secret = crypto_secrets.token_bytes(32)
        info = TLSWriter().opaque(state.group_id, 1).uint64(state.epoch).uint16(state.cipher_suite)
        _encode_extensions(info, state.extensions)
        _encode_members(info, state.members)
        info.fixed(state.epoch_secret, 32).uint32(state.own_leaf)
        group_info = info.getvalue()
        signature = _sign_with_label(state.signature_private, b"GroupInfoTBS", group_info)
        signed_info = TLSWriter().raw(group_info).opaque(signature, 2).getvalue()

        key = expand_with_label(welcome_secret, b"key", b"", 16)
        nonce = expand_with_label(welcome_secret, b"nonce", b"", 12)
        encrypted_info = AESGCM(key).encrypt(nonce, signed_info, None)

        entries = TLSWriter()
        for offset, kp in enumerate(key_packages):
            ref = kp.ref()
            group_secrets = TLSWriter().fixed(welcome_secret, 32).uint32(first_new_leaf + offset).getvalue()
            kem_output, ciphertext = _seal(kp.init_key, group_secrets, b"welcome" + ref)
            entries.fixed(ref, 32).fixed(kem_output, 32).opaque(ciphertext, 2)

        return (
            _message_header(WIRE_FORMAT_WELCOME)
            .uint16(state.cipher_suite)
            .opaque(entries.getvalue(), 4)
            .opaque(encrypted_info, 4)
            .getvalue()
        )

    @staticmethod
    def welcome_refs(welcome: bytes) -> list[bytes]:
        """Key package references a Welcome is addressed to."""
        wire_format, r = _read_header(welcome)
        if wire_format != WIRE_FORMAT_WELCOME:
            raise MLSDecodeError(f"expected welcome, got wire format {wire_format}")
        try:
            r.uint16("cipher suite")
            entries = TLSReader(r.opaque(4, "secrets"))
            refs = []
            while entries.remaining:
                refs.append(entries.fixed(32, "key package ref"))
                entries.fixed(32, "kem output")
                entries.opaque(2, "encrypted group secrets")
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed welcome: {e.message}") from e
        return refs

    def join_from_welcome(self, welcome: bytes, key_package_private: KeyPackagePrivate) -> GroupState:
        wire_format, r = _read_header(welcome)
        if wire_format != WIRE_FORMAT_WELCOME:
            raise MLSDecodeError(f"expected welcome, got wire format {wire_format}")
        try:
            cipher_suite = r.uint16("cipher suite")
            entries = TLSReader(r.opaque(4, "secrets"))
            encrypted_info = r.opaque(4, "encrypted group info")
            r.expect_end()
            own_entry = None
            while entries.remaining:
                ref = entries.fixed(32, "key package ref")
                kem_output = entries.fixed(32, "kem output")
                ciphertext = entries.opaque(2, "encrypted group secrets")
                if ref == key_package_private.key_package_ref:
                    own_entry = (ref, kem_output, ciphertext)
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed welcome: {e.message}") from e

        if cipher_suite != CIPHERSUITE_X25519_AES128GCM_SHA256_ED25519:
            raise MLSDecodeError(f"unsupported ciphersuite: 0x{cipher_suite:04x}")
        if own_entry is None:
            raise MLSDecodeError("welcome is not addressed to this key package")

        ref, kem_output, ciphertext = own_entry
        secrets_reader = TLSReader(_open(key_package_private.init_private, kem_output, ciphertext, b"welcome" + ref))
        try:
            welcome_secret = secrets_reader.fixed(32, "welcome secret")
            own_leaf = secrets_reader.uint32("leaf index")
            secrets_reader.expect_end()
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed group secrets: {e.message}") from e

        key = expand_with_label(welcome_secret, b"key", b"", 16)
        nonce = expand_with_label(welcome_secret, b"nonce", b"", 12)
        try:
            signed_info = AESGCM(key).decrypt(nonce, encrypted_info, None)
        except InvalidTag as e:
            raise MLSDecodeError("cannot decrypt group info") from e

        info = TLSReader(signed_info)
        try:
            group_id = info.opaque(1, "group id")
            epoch = info.uint64("epoch")
            info_suite = info.uint16("cipher suite")
            extensions = _decode_extensions(info)
            members = _decode_members(info)
            epoch_secret = info.fixed(32, "epoch secret")
            signer = info.uint32("signer")
            group_info = signed_info[: len(signed_info) - info.remaining]
            signature = info.opaque(2, "signature")
            info.expect_end()
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed group info: {e.message}") from e

        if info_suite != cipher_suite:
            raise MLSDecodeError("group info ciphersuite does not match welcome")
        if signer >= len(members) or own_leaf >= len(members):
            raise MLSDecodeError("leaf index out of range")
        if not _verify_with_label(members[signer].signature_key, b"GroupInfoTBS", group_info, signature):
            raise MLSSignatureError("group info signature does not verify")
        own = members[own_leaf]
        if own.signature_key != _ed25519_public(key_package_private.signature_private):
            raise MLSDecodeError("welcome leaf does not match our key package")
        if own.encryption_key != _x25519_public(key_package_private.encryption_private):
            raise MLSDecodeError("welcome leaf does not match our key package")

        return GroupState(
            group_id=group_id,
            epoch=epoch,
            cipher_suite=cipher_suite,
            extensions=extensions,
            members=members,
            own_leaf=own_leaf,
            signature_private=key_package_private.signature_private,
            encryption_private=key_package_private.encryption_private,
            epoch_secret=epoch_secret,
            config=self.config,
        )

    # -------------------------------------------------------------------------
    # Application messages
    # -------------------------------------------------------------------------

    @staticmethod
    def _application_aad(group_id: bytes, epoch: int) -> bytes:
        return TLSWriter().opaque(group_id, 1).uint64(epoch).uint8(CONTENT_TYPE_APPLICATION).getvalue()

    def encrypt_application(self, state: GroupState, plaintext: bytes) -> tuple[GroupState, bytes]:
        if state.member_count < 2:
            raise MLSSingleMemberError(
                "cannot send to a group with no other members; invite someone first",
                {"members": state.member_count},
            )
        new_state = state.copy()
        schedule = new_state.schedule
        generation = new_state.send_generation
        reuse_guard = crypto_secrets.token_bytes(4)
        aad = self._application_aad(new_state.group_id, new_state.epoch)

        tbs = TLSWriter().raw(aad).uint32(new_state.own_leaf).opaque(plaintext, 4).getvalue()
        signature = _sign_with_label(new_state.signature_private, b"FramedContentTBS", tbs)
        content = TLSWriter().opaque(plaintext, 4).opaque(signature, 2).getvalue()
        block = new_state.config.padding_block
        if block:
            content += b"\x00" * (-len(content) % block)

        key = schedule.derive_application_key(new_state.own_leaf, generation)
        nonce = _xor_guard(schedule.derive_nonce(new_state.own_leaf, generation), reuse_guard)
        ciphertext = AESGCM(key).encrypt(nonce, content, aad)

        sender_data = struct.pack(">II", new_state.own_leaf, generation) + reuse_guard
        sd_key, sd_nonce = schedule.sender_data_key_nonce(ciphertext[:32])
        encrypted_sender = AESGCM(sd_key).encrypt(sd_nonce, sender_data, aad)

        message = (
            _message_header(WIRE_FORMAT_PRIVATE_MESSAGE)
            .opaque(new_state.group_id, 1)
            .uint64(new_state.epoch)
            .uint8(CONTENT_TYPE_APPLICATION)
            .opaque(encrypted_sender, 1)
            .opaque(ciphertext, 4)
            .getvalue()
        )
        new_state.send_generation = generation + 1
        return new_state, message

    # -------------------------------------------------------------------------
    # Inbound processing
    # -------------------------------------------------------------------------

    def process_message(self, state: GroupState, message: bytes) -> tuple[GroupState, ProcessResult]:
        wire_format, r = _read_header(message)
        if wire_format == WIRE_FORMAT_PRIVATE_MESSAGE:
            return self._process_application(state, r)
        if wire_format == WIRE_FORMAT_PUBLIC_MESSAGE:
            return self._process_commit(state, r)
        raise MLSDecodeError(f"unsupported wire format for group message: {wire_format}")

    def _process_application(self, state: GroupState, r: TLSReader) -> tuple[GroupState, ProcessResult]:
        try:
            group_id = r.opaque(1, "group id")
            epoch = r.uint64("epoch")
            content_type = r.uint8("content type")
            encrypted_sender = r.opaque(1, "sender data")
            ciphertext = r.opaque(4, "ciphertext")
            r.expect_end()
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed private message: {e.message}") from e

        if group_id != state.group_id:
            raise MLSDecodeError("message belongs to a different group")
        if epoch != state.epoch:
            raise MLSEpochMismatchError(
                f"message epoch {epoch} != group epoch {state.epoch}",
                {"message_epoch": epoch, "group_epoch": state.epoch},
            )
        if content_type != CONTENT_TYPE_APPLICATION:
            raise MLSDecodeError(f"unsupported content type: {content_type}")

        schedule = state.schedule
        aad = self._application_aad(group_id, epoch)
        sd_key, sd_nonce = schedule.sender_data_key_nonce(ciphertext[:32])
        try:
            sender_data = AESGCM(sd_key).decrypt(sd_nonce, encrypted_sender, aad)
        except InvalidTag as e:
            raise MLSDecodeError("cannot decrypt sender data") from e
        if len(sender_data) != 12:
            raise MLSDecodeError("malformed sender data")
        leaf_index, generation = struct.unpack(">II", sender_data[:8])
        reuse_guard = sender_data[8:]

        if leaf_index == state.own_leaf:
            raise MLSOwnMessageError("message was sent by this member")
        if leaf_index >= state.member_count:
            raise MLSDecodeError(f"unknown sender leaf: {leaf_index}")
        if generation in state.received.get(leaf_index, []):
            raise MLSReplayError(
                f"generation {generation} from leaf {leaf_index} already processed",
                {"leaf": leaf_index, "generation": generation},
            )

        key = schedule.derive_application_key(leaf_index, generation)
        nonce = _xor_guard(schedule.derive_nonce(leaf_index, generation), reuse_guard)
        try:
            content = AESGCM(key).decrypt(nonce, ciphertext, aad)
        except InvalidTag as e:
            raise MLSDecodeError("cannot decrypt application content") from e

        body = TLSReader(content)
        try:
            plaintext = body.opaque(4, "application data")
            signature = body.opaque(2, "signature")
            padding = body.fixed(body.remaining, "padding")
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed application content: {e.message}") from e
        if padding.strip(b"\x00"):
            raise MLSDecodeError("non-zero padding in application content")

        sender = state.members[leaf_index]
        tbs = TLSWriter().raw(aad).uint32(leaf_index).opaque(plaintext, 4).getvalue()
        if not _verify_with_label(sender.signature_key, b"FramedContentTBS", tbs, signature):
            raise MLSSignatureError("application message signature does not verify")

        new_state = state.copy()
        new_state.received.setdefault(leaf_index, []).append(generation)
        return new_state, ProcessResult(
            kind="application",
            epoch=new_state.epoch,
            sender=sender.identity,
            application_data=plaintext,
        )

    def _process_commit(self, state: GroupState, r: TLSReader) -> tuple[GroupState, ProcessResult]:
        try:
            content = r.opaque(4, "commit content")
            signature = r.opaque(2, "signature")
            tag = r.fixed(32, "membership tag")
            r.expect_end()
            parsed = _decode_commit_content(content)
        except TLSDecodeError as e:
            raise MLSDecodeError(f"malformed commit: {e.message}") from e

        group_id, epoch, sender_leaf, added_bytes, new_encryption_key, sealed = parsed
        if group_id != state.group_id:
            raise MLSDecodeError("commit belongs to a different group")
        if sender_leaf == state.own_leaf:
            raise MLSOwnMessageError("commit was created by this member")
        if epoch != state.epoch:
            raise MLSEpochMismatchError(
                f"commit epoch {epoch} != group epoch {state.epoch}",
                {"message_epoch": epoch, "group_epoch": state.epoch},
            )
        if sender_leaf >= state.member_count:
            raise MLSDecodeError(f"unknown committer leaf: {sender_leaf}")

        old_schedule = state.schedule
        expected_tag = hmac.new(old_schedule.membership_key, content + signature, hashlib.sha256).digest()
        if not hmac.compare_digest(expected_tag, tag):
            raise MLSSignatureError("commit membership tag does not verify")
        committer = state.members[sender_leaf]
        if not _verify_with_label(committer.signature_key, b"FramedContentTBS", content, signature):
            raise MLSSignatureError("commit signature does not verify")

        own_sealed = [s for s in sealed if s[0] == state.own_leaf]
        if not own_sealed:
            raise MLSDecodeError("commit carries no secret for this member")
        _, kem_output, ciphertext = own_sealed[0]
        context_info = TLSWriter().opaque(group_id, 1).uint64(epoch).getvalue()
        commit_secret = _open(state.encryption_private, kem_output, ciphertext, context_info)

        new_state = state.copy()
        key_packages = [KeyPackage.from_bytes(b) for b in added_bytes]
        for kp in key_packages:
            try:
                self.validate_key_package(new_state, kp)
            except MLSInvalidKeyPackageError as e:
                raise MLSDecodeError(f"commit adds an invalid key package: {e.message}") from e
            new_state.members.append(copy.deepcopy(kp.leaf))
        committer_leaf = new_state.members[sender_leaf]
        new_state.members[sender_leaf] = LeafNode(
            identity=committer_leaf.identity,
            signature_key=committer_leaf.signature_key,
            encryption_key=new_encryption_key,
            capabilities=copy.deepcopy(committer_leaf.capabilities),
        )
        self._advance_epoch(new_state, old_schedule.init_secret, commit_secret)

        return new_state, ProcessResult(
            kind="commit",
            epoch=new_state.epoch,
            sender=committer.identity,
            added_members=[kp.identity for kp in key_packages],
        )

    # -------------------------------------------------------------------------
    # Exporter and persistence
    # -------------------------------------------------------------------------

    def export_secret(self, state: GroupState, label: bytes, context: bytes, length: int = 32) -> bytes:
        return state.schedule.export_secret(label, context, length)

    def serialize_state(self, state: GroupState) -> bytes:
        return json.dumps(state.to_dict(), sort_keys=True).encode("utf-8")

    def deserialize_state(self, data: bytes) -> GroupState:
        try:
            raw = json.loads(data)
        except (ValueError, TypeError) as e:
            raise MLSDecodeError("group state is not valid JSON") from e
        try:
            return GroupState.from_dict(raw, config=self.config)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MLSDecodeError(f"malformed group state: {e}") from e


def _xor_guard(nonce: bytes, reuse_guard: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(nonce[:4], reuse_guard)) + nonce[4:]


def _encode_commit_content(
    group_id: bytes,
    epoch: int,
    sender_leaf: int,
    added: list[bytes],
    new_encryption_key: bytes,
    sealed: list[tuple[int, bytes, bytes]],
) -> bytes:
    w = TLSWriter().opaque(group_id, 1).uint64(epoch).uint32(sender_leaf).uint8(CONTENT_TYPE_COMMIT)
    adds = TLSWriter()
    for kp in added:
        adds.opaque(kp, 4)
    w.opaque(adds.getvalue(), 4)
    w.fixed(new_encryption_key, 32)
    secrets = TLSWriter()
    for leaf_index, kem_output, ciphertext in sealed:
        secrets.uint32(leaf_index).fixed(kem_output, 32).opaque(ciphertext, 2)
    w.opaque(secrets.getvalue(), 4)
    return w.getvalue()


def _decode_commit_content(
    content: bytes,
) -> tuple[bytes, int, int, list[bytes], bytes, list[tuple[int, bytes, bytes]]]:
    r = TLSReader(content)
    group_id = r.opaque(1, "group id")
    epoch = r.uint64("epoch")
    sender_leaf = r.uint32("sender")
    content_type = r.uint8("content type")
    if content_type != CONTENT_TYPE_COMMIT:
        raise TLSDecodeError(f"unexpected content type in public message: {content_type}")
    adds = TLSReader(r.opaque(4, "adds"))
    added = []
    while adds.remaining:
        added.append(adds.opaque(4, "key package"))
    new_encryption_key = r.fixed(32, "encryption key")
    secrets = TLSReader(r.opaque(4, "sealed secrets"))
    sealed = []
    while secrets.remaining:
        sealed.append((secrets.uint32("leaf"), secrets.fixed(32, "kem output"), secrets.opaque(2, "ciphertext")))
    r.expect_end()
    return group_id, epoch, sender_leaf, added, new_encryption_key, sealed
