"""Tests for Marmot key package generation and parsing."""

from __future__ import annotations

import base64

import pytest

from burrow.crypto.identity import NostrIdentity
from burrow.crypto.mls import KeyPackage, MLSInvalidKeyPackageError
from burrow.groups.extensions import LAST_RESORT_EXTENSION_ID, MARMOT_EXTENSION_ID
from burrow.groups.key_package import ciphersuite_hex_id, generate_key_package, parse_key_package_event
from burrow.nostr.events import Kind, NostrEvent, build_key_package_event, sign_event


class TestGenerateKeyPackage:
    def test_credential_is_nostr_pubkey(self, alice):
        kp = generate_key_package(alice)
        assert kp.key_package.identity == alice.public_key
        assert kp.key_package.verify_signature()

    def test_advertises_marmot_capabilities(self, alice):
        kp = generate_key_package(alice)
        supported = kp.key_package.leaf.capabilities.extensions
        assert MARMOT_EXTENSION_ID in supported
        assert LAST_RESORT_EXTENSION_ID in supported

    def test_last_resort_by_default(self, alice):
        assert generate_key_package(alice).is_last_resort
        assert not generate_key_package(alice, last_resort=False).is_last_resort

    def test_serialized_forms_agree(self, alice):
        kp = generate_key_package(alice)
        assert base64.b64decode(kp.serialized_base64) == kp.serialized
        assert KeyPackage.from_bytes(kp.serialized) == kp.key_package

    def test_ciphersuite_ids(self):
        assert ciphersuite_hex_id() == "0x0001"
        assert ciphersuite_hex_id("MLS_128_DHKEMP256_AES128GCM_SHA256_P256") == "0x0002"
        assert ciphersuite_hex_id("unknown") == "0x0001"


class TestParseKeyPackageEvent:
    def test_valid_event(self, alice):
        kp = generate_key_package(alice)
        event = build_key_package_event(alice, kp.serialized_base64, ["wss://r"])
        assert parse_key_package_event(event).identity == alice.public_key

    def test_author_mismatch(self, alice, bob):
        kp = generate_key_package(alice)
        event = build_key_package_event(bob, kp.serialized_base64, ["wss://r"])
        with pytest.raises(MLSInvalidKeyPackageError, match="does not match event author"):
            parse_key_package_event(event)

    def test_invalid_base64(self, alice):
        event = sign_event(NostrEvent(kind=Kind.KEY_PACKAGE, content="!!!", tags=[["encoding", "base64"]]), alice)
        with pytest.raises(MLSInvalidKeyPackageError, match="not valid base64"):
            parse_key_package_event(event)

    def test_not_a_key_package(self, alice):
        event = sign_event(
            NostrEvent(kind=Kind.KEY_PACKAGE, content=base64.b64encode(b"\x00\x01\x00\x05").decode()),
            alice,
        )
        with pytest.raises(MLSInvalidKeyPackageError):
            parse_key_package_event(event)

    def test_unsupported_encoding(self, alice):
        kp = generate_key_package(alice)
        event = sign_event(
            NostrEvent(kind=Kind.KEY_PACKAGE, content=kp.serialized.hex(), tags=[["encoding", "hex"]]),
            alice,
        )
        with pytest.raises(MLSInvalidKeyPackageError, match="unsupported key package encoding"):
            parse_key_package_event(event)

    def test_stale_signature_rejected(self):
        identity = NostrIdentity.generate()
        kp = generate_key_package(identity)
        kp.key_package.not_after = 5
        event = build_key_package_event(identity, base64.b64encode(kp.key_package.to_bytes()).decode(), [])
        with pytest.raises(MLSInvalidKeyPackageError, match="signature does not verify"):
            parse_key_package_event(event)

    def test_event_tags(self, alice):
        kp = generate_key_package(alice)
        event = build_key_package_event(alice, kp.serialized_base64, ["wss://a", "wss://b"], client="burrow")
        assert event.kind == Kind.KEY_PACKAGE
        assert event.first_tag("mls_protocol_version") == "1.0"
        assert event.first_tag("mls_ciphersuite") == "0x0001"
        assert event.tag_params("mls_extensions") == ["0xf2ee", "0x000a"]
        assert event.tag_params("relays") == ["wss://a", "wss://b"]
        assert ["-"] in event.tags
