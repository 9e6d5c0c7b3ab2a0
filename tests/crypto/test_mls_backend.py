"""Tests for the native MLS backend."""

from __future__ import annotations

import os

import pytest

from burrow.crypto.mls import (
    ClientConfig,
    Extension,
    GroupState,
    KeyPackage,
    KeyPackagePrivate,
    MLSDecodeError,
    MLSEpochMismatchError,
    MLSInvalidKeyPackageError,
    MLSKeySchedule,
    MLSOwnMessageError,
    MLSReplayError,
    MLSSignatureError,
    MLSSingleMemberError,
    NativeMLSBackend,
)

ALICE = b"\xa1" * 32
BOB = b"\xb0" * 32
CAROL = b"\xc0" * 32


@pytest.fixture
def backend() -> NativeMLSBackend:
    return NativeMLSBackend()


@pytest.fixture
def pair(backend) -> tuple[GroupState, GroupState]:
    """Alice and Bob in a two-member group at epoch 1."""
    alice_kp, alice_priv = backend.generate_key_package(ALICE)
    alice = backend.create_group(os.urandom(32), alice_kp, alice_priv, [])
    bob_kp, bob_priv = backend.generate_key_package(BOB)
    result = backend.add_member(alice, bob_kp)
    bob = backend.join_from_welcome(result.welcome, bob_priv)
    return result.state, bob


class TestKeySchedule:
    def test_secrets_are_distinct(self):
        schedule = MLSKeySchedule.from_epoch_secret(0, b"\x11" * 32)
        derived = {
            schedule.sender_data_secret,
            schedule.encryption_secret,
            schedule.exporter_secret,
            schedule.membership_key,
            schedule.init_secret,
        }
        assert len(derived) == 5

    def test_application_keys_per_sender_and_generation(self):
        schedule = MLSKeySchedule.from_epoch_secret(0, b"\x11" * 32)
        assert len(schedule.derive_application_key(0, 0)) == 16
        assert len(schedule.derive_nonce(0, 0)) == 12
        assert schedule.derive_application_key(0, 0) != schedule.derive_application_key(1, 0)
        assert schedule.derive_application_key(0, 0) != schedule.derive_application_key(0, 1)

    def test_export_secret_depends_on_label_and_context(self):
        schedule = MLSKeySchedule.from_epoch_secret(0, b"\x11" * 32)
        base = schedule.export_secret(b"label", b"")
        assert base == schedule.export_secret(b"label", b"")
        assert base != schedule.export_secret(b"other", b"")
        assert base != schedule.export_secret(b"label", b"ctx")
        assert len(schedule.export_secret(b"label", b"", 64)) == 64


class TestKeyPackages:
    def test_round_trip_and_signature(self, backend):
        kp, priv = backend.generate_key_package(ALICE, capability_extensions=[0xF2EE])
        decoded = KeyPackage.from_bytes(kp.to_bytes())
        assert decoded == kp
        assert decoded.verify_signature()
        assert decoded.identity == ALICE
        assert decoded.ref() == priv.key_package_ref

    def test_private_round_trip(self, backend):
        _, priv = backend.generate_key_package(ALICE)
        assert KeyPackagePrivate.from_bytes(priv.to_bytes()) == priv

    def test_last_resort_flag(self, backend):
        kp, _ = backend.generate_key_package(ALICE, extensions=[Extension(0x000A, b"")])
        assert kp.is_last_resort
        plain, _ = backend.generate_key_package(ALICE)
        assert not plain.is_last_resort

    def test_tampered_signature(self, backend):
        kp, _ = backend.generate_key_package(ALICE)
        kp.leaf.identity = BOB
        assert not kp.verify_signature()

    def test_truncated_bytes(self, backend):
        kp, _ = backend.generate_key_package(ALICE)
        with pytest.raises(MLSDecodeError, match="malformed key package"):
            KeyPackage.from_bytes(kp.to_bytes()[:-5])

    def test_wrong_wire_format(self):
        with pytest.raises(MLSDecodeError):
            KeyPackage.from_bytes(b"\x00\x01\x00\x03" + b"\x00" * 10)

    def test_missing_required_capability(self, backend):
        kp, priv = backend.generate_key_package(ALICE, capability_extensions=[0xF2EE])
        group = backend.create_group(os.urandom(32), kp, priv, [Extension(0xF2EE, b"data")])
        bob_kp, _ = backend.generate_key_package(BOB)
        with pytest.raises(MLSInvalidKeyPackageError, match="lacks required extension"):
            backend.add_member(group, bob_kp)

    def test_short_identity_rejected(self, backend):
        kp, priv = backend.generate_key_package(ALICE)
        group = backend.create_group(os.urandom(32), kp, priv, [])
        short_kp, _ = backend.generate_key_package(b"\x01" * 16)
        with pytest.raises(MLSInvalidKeyPackageError, match="32 bytes"):
            backend.add_member(group, short_kp)

    def test_lenient_credential_policy(self):
        backend = NativeMLSBackend(ClientConfig(credential_validation="any"))
        kp, priv = backend.generate_key_package(ALICE)
        group = backend.create_group(os.urandom(32), kp, priv, [])
        short_kp, _ = backend.generate_key_package(b"\x01" * 16)
        assert backend.add_member(group, short_kp).state.member_count == 2

    def test_existing_member_rejected(self, backend, pair):
        alice, _ = pair
        again, _ = backend.generate_key_package(BOB)
        with pytest.raises(MLSInvalidKeyPackageError, match="already a member"):
            backend.add_member(alice, again)


class TestGroupLifecycle:
    def test_create_group(self, backend):
        kp, priv = backend.generate_key_package(ALICE)
        group = backend.create_group(b"g" * 32, kp, priv, [])
        assert group.epoch == 0
        assert group.member_count == 1
        assert group.own_identity == ALICE

    def test_add_member_advances_epoch(self, pair):
        alice, bob = pair
        assert alice.epoch == bob.epoch == 1
        assert alice.member_identities == bob.member_identities == [ALICE, BOB]
        assert bob.own_leaf == 1

    def test_members_share_exporter(self, backend, pair):
        alice, bob = pair
        assert backend.export_secret(alice, b"x", b"", 32) == backend.export_secret(bob, b"x", b"", 32)

    def test_add_does_not_mutate_input(self, backend, pair):
        alice, _ = pair
        before = backend.serialize_state(alice)
        carol_kp, _ = backend.generate_key_package(CAROL)
        backend.add_member(alice, carol_kp)
        assert backend.serialize_state(alice) == before

    def test_commit_processed_by_existing_member(self, backend, pair):
        alice, bob = pair
        carol_kp, carol_priv = backend.generate_key_package(CAROL)
        result = backend.add_member(alice, carol_kp)
        bob2, processed = backend.process_message(bob, result.commit)
        carol = backend.join_from_welcome(result.welcome, carol_priv)
        assert processed.is_commit
        assert processed.sender == ALICE
        assert processed.added_members == [CAROL]
        assert result.state.epoch == bob2.epoch == carol.epoch == 2
        exports = {backend.export_secret(s, b"x", b"", 32) for s in (result.state, bob2, carol)}
        assert len(exports) == 1

    def test_epoch_secrets_change(self, backend, pair):
        alice, _ = pair
        update = backend.self_update(alice)
        assert update.welcome is None
        assert update.state.epoch == alice.epoch + 1
        assert backend.export_secret(update.state, b"x", b"", 32) != backend.export_secret(alice, b"x", b"", 32)

    def test_own_commit_echo(self, backend, pair):
        alice, _ = pair
        update = backend.self_update(alice)
        with pytest.raises(MLSOwnMessageError):
            backend.process_message(alice, update.commit)

    def test_commit_for_old_epoch(self, backend, pair):
        alice, bob = pair
        first = backend.self_update(alice)
        bob2, _ = backend.process_message(bob, first.commit)
        with pytest.raises(MLSEpochMismatchError):
            backend.process_message(bob2, first.commit)

    def test_tampered_commit(self, backend, pair):
        alice, bob = pair
        update = backend.self_update(alice)
        tampered = bytearray(update.commit)
        tampered[-1] ^= 0xFF
        with pytest.raises(MLSSignatureError, match="membership tag"):
            backend.process_message(bob, bytes(tampered))

    def test_welcome_refs(self, backend, pair):
        alice, _ = pair
        carol_kp, _ = backend.generate_key_package(CAROL)
        result = backend.add_member(alice, carol_kp)
        assert NativeMLSBackend.welcome_refs(result.welcome) == [carol_kp.ref()]

    def test_welcome_for_someone_else(self, backend, pair):
        alice, _ = pair
        carol_kp, _ = backend.generate_key_package(CAROL)
        _, other_priv = backend.generate_key_package(CAROL)
        result = backend.add_member(alice, carol_kp)
        with pytest.raises(MLSDecodeError, match="not addressed"):
            backend.join_from_welcome(result.welcome, other_priv)


class TestApplicationMessages:
    def test_round_trip(self, backend, pair):
        alice, bob = pair
        alice2, message = backend.encrypt_application(alice, b"hello bob")
        bob2, result = backend.process_message(bob, message)
        assert result.is_application
        assert result.application_data == b"hello bob"
        assert result.sender == ALICE
        assert alice2.send_generation == 1
        assert bob2.received == {0: [0]}

    def test_both_directions(self, backend, pair):
        alice, bob = pair
        bob2, message = backend.encrypt_application(bob, b"hi alice")
        _, result = backend.process_message(alice, message)
        assert result.application_data == b"hi alice"
        assert result.sender == BOB
        assert bob2.send_generation == 1

    def test_single_member_cannot_send(self, backend):
        kp, priv = backend.generate_key_package(ALICE)
        group = backend.create_group(os.urandom(32), kp, priv, [])
        with pytest.raises(MLSSingleMemberError):
            backend.encrypt_application(group, b"anyone?")

    def test_own_message(self, backend, pair):
        alice, _ = pair
        alice2, message = backend.encrypt_application(alice, b"echo")
        with pytest.raises(MLSOwnMessageError):
            backend.process_message(alice2, message)

    def test_replay_rejected(self, backend, pair):
        alice, bob = pair
        _, message = backend.encrypt_application(alice, b"once")
        bob2, _ = backend.process_message(bob, message)
        with pytest.raises(MLSReplayError):
            backend.process_message(bob2, message)

    def test_stale_epoch(self, backend, pair):
        alice, bob = pair
        alice2, stale = backend.encrypt_application(alice, b"old epoch")
        update = backend.self_update(alice2)
        bob2, _ = backend.process_message(bob, update.commit)
        with pytest.raises(MLSEpochMismatchError):
            backend.process_message(bob2, stale)
        # Failure leaves the caller's state untouched
        assert bob2.epoch == 2

    def test_tampered_ciphertext(self, backend, pair):
        alice, bob = pair
        _, message = backend.encrypt_application(alice, b"payload")
        tampered = bytearray(message)
        tampered[-1] ^= 0x01
        with pytest.raises(MLSDecodeError):
            backend.process_message(bob, bytes(tampered))

    def test_padding_block(self, pair):
        alice, bob = pair
        padded = NativeMLSBackend(ClientConfig(padding_block=64))
        alice.config = padded.config
        _, message = padded.encrypt_application(alice, b"x")
        _, result = padded.process_message(bob, message)
        assert result.application_data == b"x"

    def test_garbage_input(self, backend, pair):
        _, bob = pair
        with pytest.raises(MLSDecodeError):
            backend.process_message(bob, b"\x00")


class TestStateSerialization:
    def test_round_trip(self, backend, pair):
        alice, _ = pair
        restored = backend.deserialize_state(backend.serialize_state(alice))
        assert restored.group_id == alice.group_id
        assert restored.epoch == alice.epoch
        assert restored.member_identities == alice.member_identities
        assert backend.export_secret(restored, b"x", b"", 32) == backend.export_secret(alice, b"x", b"", 32)

    def test_received_generations_survive(self, backend, pair):
        alice, bob = pair
        _, message = backend.encrypt_application(alice, b"once")
        bob2, _ = backend.process_message(bob, message)
        restored = backend.deserialize_state(backend.serialize_state(bob2))
        with pytest.raises(MLSReplayError):
            backend.process_message(restored, message)

    def test_invalid_json(self, backend):
        with pytest.raises(MLSDecodeError, match="not valid JSON"):
            backend.deserialize_state(b"not json")

    def test_wrong_format_marker(self, backend):
        with pytest.raises(MLSDecodeError, match="unrecognized"):
            backend.deserialize_state(b'{"format": "other", "version": 1}')
