# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""NIP-59 gift wrap.

rumor (unsigned) -> seal (kind 13, signed by the sender, NIP-44 to the
recipient) -> gift wrap (kind 1059, signed by a single-use key, NIP-44 to
the recipient, ``p``-tagged). Both outer timestamps are pushed a random
amount into the past so relays cannot correlate them with the send.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass

from ..core.exceptions import CryptoError
from ..crypto.identity import NostrIdentity
from ..crypto.nip44 import decrypt_from_sender, encrypt_for_recipient
from .events import Kind, NostrEvent, finalize_rumor, sign_event, verify_event

logger = logging.getLogger(__name__)

MAX_TIMESTAMP_JITTER = 2 * 24 * 60 * 60


class GiftWrapError(CryptoError):
    """Raised when a gift wrap or its seal fails verification."""


@dataclass
class UnwrappedGift:
    """The rumor inside a gift wrap, plus who really sent it."""

    rumor: NostrEvent
    sender_pubkey: str
    wrap_id: str


def _jittered_timestamp() -> int:
    return int(time.time()) - secrets.randbelow(MAX_TIMESTAMP_JITTER)


def wrap_gift(rumor: NostrEvent, sender: NostrIdentity, recipient_pubkey: str) -> NostrEvent:
    """Seal ``rumor`` from ``sender`` and gift-wrap it for ``recipient_pubkey``."""
    if rumor.pubkey != sender.public_key_hex or not rumor.id:
        finalize_rumor(rumor, sender.public_key_hex)
    rumor.sig = ""

    seal = NostrEvent(
        kind=Kind.SEAL,
        content=encrypt_for_recipient(rumor.to_json(), sender.secret_key, recipient_pubkey),
        tags=[],
        created_at=_jittered_timestamp(),
    )
    sign_event(seal, sender)

    wrapper = NostrIdentity.generate()
    wrap = NostrEvent(
        kind=Kind.GIFT_WRAP,
        content=encrypt_for_recipient(seal.to_json(), wrapper.secret_key, recipient_pubkey),
        tags=[["p", recipient_pubkey]],
        created_at=_jittered_timestamp(),
    )
    return sign_event(wrap, wrapper)


def unwrap_gift(wrap: NostrEvent, recipient: NostrIdentity) -> UnwrappedGift:
    """Open a gift wrap addressed to ``recipient``.

    Raises:
        GiftWrapError: Wrong kind, bad signatures, or a rumor not authored by the sealer.
        Nip44Error: If either layer cannot be decrypted.
    """
    if wrap.kind != Kind.GIFT_WRAP:
        raise GiftWrapError(f"expected kind {int(Kind.GIFT_WRAP)}, got {wrap.kind}")
    if not verify_event(wrap):
        raise GiftWrapError("gift wrap signature does not verify")

    try:
        seal = NostrEvent.from_json(decrypt_from_sender(wrap.content, recipient.secret_key, wrap.pubkey))
    except (ValueError, KeyError, TypeError) as e:
        raise GiftWrapError("gift wrap does not contain a seal") from e
    if seal.kind != Kind.SEAL:
        raise GiftWrapError(f"expected seal kind {int(Kind.SEAL)}, got {seal.kind}")
    if not verify_event(seal):
        raise GiftWrapError("seal signature does not verify")

    try:
        rumor = NostrEvent.from_json(decrypt_from_sender(seal.content, recipient.secret_key, seal.pubkey))
    except (ValueError, KeyError, TypeError) as e:
        raise GiftWrapError("seal does not contain a rumor") from e
    if rumor.pubkey != seal.pubkey:
        raise GiftWrapError("rumor author does not match seal author")
    if rumor.id and rumor.id != rumor.compute_id():
        raise GiftWrapError("rumor id does not match its content")

    logger.debug(f"Unwrapped kind {rumor.kind} rumor from {seal.pubkey[:16]}")
    return UnwrappedGift(rumor=rumor, sender_pubkey=seal.pubkey, wrap_id=wrap.id)
