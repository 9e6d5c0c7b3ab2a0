"""Cryptographic primitives for Burrow.

This module provides:
- Nostr identities and BIP-340 signatures
- NIP-19 bech32 key encoding
- NIP-44 v2 payload encryption (group and recipient modes)
- MLS (Messaging Layer Security) for group key agreement
"""

from burrow.crypto.identity import (
    NostrIdentity,
    credential_identity,
    generate_identity,
    load_identity,
    verify_schnorr,
)
from burrow.crypto.mls import (
    ClientConfig,
    GroupState,
    KeyPackage,
    KeyPackagePrivate,
    MLSBackend,
    MLSDecodeError,
    MLSEpochMismatchError,
    MLSError,
    MLSInvalidKeyPackageError,
    MLSKeySchedule,
    MLSOwnMessageError,
    MLSReplayError,
    MLSSignatureError,
    MLSSingleMemberError,
    NativeMLSBackend,
    ProcessResult,
)
from burrow.crypto.nip19 import npub_decode, npub_encode, nsec_decode, nsec_encode, resolve_pubkey_hex
from burrow.crypto.nip44 import (
    Nip44Error,
    decrypt_from_sender,
    decrypt_group_message,
    encrypt_for_recipient,
    encrypt_group_message,
)
from burrow.crypto.tls import TLSDecodeError, TLSReader, TLSWriter

__all__ = [
    # Identity
    "NostrIdentity",
    "credential_identity",
    "generate_identity",
    "load_identity",
    "verify_schnorr",
    # NIP-19
    "npub_decode",
    "npub_encode",
    "nsec_decode",
    "nsec_encode",
    "resolve_pubkey_hex",
    # NIP-44
    "Nip44Error",
    "decrypt_from_sender",
    "decrypt_group_message",
    "encrypt_for_recipient",
    "encrypt_group_message",
    # MLS
    "ClientConfig",
    "GroupState",
    "KeyPackage",
    "KeyPackagePrivate",
    "MLSBackend",
    "MLSDecodeError",
    "MLSEpochMismatchError",
    "MLSError",
    "MLSInvalidKeyPackageError",
    "MLSKeySchedule",
    "MLSOwnMessageError",
    "MLSReplayError",
    "MLSSignatureError",
    "MLSSingleMemberError",
    "NativeMLSBackend",
    "ProcessResult",
    # TLS codec
    "TLSDecodeError",
    "TLSReader",
    "TLSWriter",
]
