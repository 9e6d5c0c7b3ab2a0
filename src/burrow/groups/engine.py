# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Marmot group engine.

Wraps an :class:`~burrow.crypto.mls.MLSBackend` with the Marmot profile:
groups carry the ``0xF2EE`` group-data extension, members are identified by
their Nostr pubkey, and the epoch exporter secret (label ``marmot_exporter``)
keys the NIP-44 layer of kind-445 events.

The engine deals in serialized state bytes. Callers persist the returned
bytes only after the surrounding operation (publish, store) has succeeded.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from ..crypto.identity import NostrIdentity
from ..crypto.mls import (
    GroupState,
    KeyPackage,
    KeyPackagePrivate,
    MLSBackend,
    MLSDecodeError,
    NativeMLSBackend,
    ProcessResult,
)
from .extensions import MARMOT_EXTENSION_ID, MarmotGroupData, decode_group_data
from .key_package import generate_key_package

logger = logging.getLogger(__name__)

EXPORTER_LABEL = b"marmot_exporter"
EXPORTER_LENGTH = 32


@dataclass
class GroupInfo:
    """Public view of a group at one epoch."""

    mls_group_id: bytes
    epoch: int
    group_data: MarmotGroupData
    members: list[str] = field(default_factory=list)

    @property
    def nostr_group_id(self) -> bytes:
        return self.group_data.nostr_group_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "mls_group_id": self.mls_group_id.hex(),
            "nostr_group_id": self.nostr_group_id.hex(),
            "epoch": self.epoch,
            "members": self.members,
            **{k: v for k, v in self.group_data.to_dict().items() if k != "nostr_group_id"},
        }


@dataclass
class AdmitResult:
    """Outcome of admitting a member.

    Attributes:
        state: New serialized state; persist only after ``commit`` is published
        commit: Commit message for existing members (kind 445)
        welcome: Welcome for the new member (kind 444), None if nobody was added
        epoch: Epoch after the commit
    """

    state: bytes
    commit: bytes
    welcome: bytes | None
    epoch: int


class GroupEngine:
    """Marmot group operations over serialized MLS state."""

    def __init__(self, backend: MLSBackend | None = None):
        self.backend = backend or NativeMLSBackend()

    def _load(self, state_bytes: bytes) -> GroupState:
        return self.backend.deserialize_state(state_bytes)

    def _info(self, state: GroupState) -> GroupInfo:
        return GroupInfo(
            mls_group_id=state.group_id,
            epoch=state.epoch,
            group_data=self._group_data(state),
            members=[identity.hex() for identity in state.member_identities],
        )

    @staticmethod
    def _group_data(state: GroupState) -> MarmotGroupData:
        ext = state.get_extension(MARMOT_EXTENSION_ID)
        if ext is None:
            raise MLSDecodeError("group has no Marmot group data extension")
        return decode_group_data(ext.data)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_group(
        self,
        identity: NostrIdentity,
        name: str,
        description: str = "",
        relays: list[str] | None = None,
    ) -> tuple[GroupInfo, bytes]:
        """Create a group with ``identity`` as sole member and admin.

        The MLS group id and the Nostr group id are drawn independently so
        relays never see the MLS identifier.
        """
        group_data = MarmotGroupData(
            nostr_group_id=secrets.token_bytes(32),
            name=name,
            description=description,
            admin_pubkeys=[identity.public_key_hex],
            relays=list(relays or []),
        )
        own = generate_key_package(identity, backend=self.backend)
        state = self.backend.create_group(
            secrets.token_bytes(32),
            own.key_package,
            own.private,
            [group_data.to_extension()],
        )
        logger.info(f"Created group {group_data.nostr_group_id.hex()[:16]} ({name!r})")
        return self._info(state), self.backend.serialize_state(state)

    def admit_member(self, state_bytes: bytes, key_package_bytes: bytes) -> AdmitResult:
        """Add the holder of ``key_package_bytes`` and commit.

        Raises:
            MLSInvalidKeyPackageError: Bad signature, wrong ciphersuite,
                missing Marmot capability or an existing member
        """
        state = self._load(state_bytes)
        key_package = KeyPackage.from_bytes(key_package_bytes)
        result = self.backend.add_member(state, key_package)
        logger.info(
            f"Admitted {key_package.identity.hex()[:16]} at epoch {result.state.epoch} "
            f"({result.state.member_count} members)"
        )
        return AdmitResult(
            state=self.backend.serialize_state(result.state),
            commit=result.commit,
            welcome=result.welcome,
            epoch=result.state.epoch,
        )

    def join_from_welcome(self, welcome_bytes: bytes, key_package_private: bytes) -> tuple[GroupInfo, bytes]:
        """Join a group from a Welcome addressed to one of our key packages."""
        private = KeyPackagePrivate.from_bytes(key_package_private)
        state = self.backend.join_from_welcome(welcome_bytes, private)
        info = self._info(state)
        logger.info(f"Joined group {info.nostr_group_id.hex()[:16]} at epoch {state.epoch}")
        return info, self.backend.serialize_state(state)

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    def encrypt_application_message(self, state_bytes: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
        """Encrypt ``plaintext``. Returns ``(mls_message, new_state)``.

        Raises:
            MLSSingleMemberError: If the group has no other member
        """
        new_state, message = self.backend.encrypt_application(self._load(state_bytes), plaintext)
        return message, self.backend.serialize_state(new_state)

    def process_incoming_message(self, state_bytes: bytes, message_bytes: bytes) -> tuple[ProcessResult, bytes]:
        """Process an application message or commit. Returns ``(result, new_state)``.

        On error the caller's ``state_bytes`` remain the valid current state.
        """
        new_state, result = self.backend.process_message(self._load(state_bytes), message_bytes)
        return result, self.backend.serialize_state(new_state)

    def derive_epoch_secret(self, state_bytes: bytes) -> bytes:
        """Exporter secret that keys the NIP-44 layer for the current epoch."""
        return self.backend.export_secret(self._load(state_bytes), EXPORTER_LABEL, b"", EXPORTER_LENGTH)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def serialize_state(self, state: GroupState) -> bytes:
        return self.backend.serialize_state(state)

    def deserialize_state(self, state_bytes: bytes) -> GroupState:
        return self._load(state_bytes)

    def group_data(self, state_bytes: bytes) -> MarmotGroupData:
        return self._group_data(self._load(state_bytes))

    def describe(self, state_bytes: bytes) -> GroupInfo:
        return self._info(self._load(state_bytes))

    def epoch(self, state_bytes: bytes) -> int:
        return self._load(state_bytes).epoch
