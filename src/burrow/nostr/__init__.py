"""Nostr transport: NIP-01 events, NIP-59 gift wrap and the relay pool."""

from .events import (
    Kind,
    NostrEvent,
    build_group_event,
    build_inner_chat_message,
    build_key_package_event,
    build_welcome_rumor,
    sign_event,
    verify_event,
)
from .gift_wrap import GiftWrapError, UnwrappedGift, unwrap_gift, wrap_gift
from .relay import Filter, RelayConnection, RelayPool

__all__ = [
    "Filter",
    "GiftWrapError",
    "Kind",
    "NostrEvent",
    "RelayConnection",
    "RelayPool",
    "UnwrappedGift",
    "build_group_event",
    "build_inner_chat_message",
    "build_key_package_event",
    "build_welcome_rumor",
    "sign_event",
    "unwrap_gift",
    "verify_event",
    "wrap_gift",
]
