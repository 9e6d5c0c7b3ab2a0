"""Tests for the inbound message pipeline."""

from __future__ import annotations

import io
import json

import pytest

from burrow.crypto.nip44 import encrypt_group_message
from burrow.daemon.pipeline import (
    REDACTED_CONTENT,
    REDACTED_EMISSION,
    DaemonMessage,
    DaemonStatus,
    Emitter,
    MessagePipeline,
)
from burrow.nostr.events import NostrEvent, build_group_event, build_inner_chat_message, sign_event
from burrow.security.access_control import AccessControl, create_default_config
from burrow.security.audit import AuditLog, read_audit_log
from burrow.storage.file_store import FileStore
from burrow.storage.models import StoredGroup


def emitted(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def install_group(store: FileStore, group, member) -> StoredGroup:
    """Persist ``member``'s view of ``group`` the way accept/create do."""
    info = group.engine.describe(group.state(member))
    stored = StoredGroup(
        mls_group_id=info.mls_group_id.hex(),
        nostr_group_id=group.nostr_group_id,
        name=info.group_data.name,
        admin_pubkeys=list(info.group_data.admin_pubkeys),
        relays=list(info.group_data.relays),
        epoch=info.epoch,
    )
    return store.commit_group_state(stored, group.state(member), info.epoch)


def payload_event(group, sender, payload: bytes, exporter_from: bytes | None = None) -> NostrEvent:
    """Encrypt raw application data from ``sender`` and wrap it as a kind-445 event."""
    state = group.state(sender)
    message, group.states[sender.public_key_hex] = group.engine.encrypt_application_message(state, payload)
    exporter = group.engine.derive_epoch_secret(exporter_from or state)
    event, _ = build_group_event(group.nostr_group_id, encrypt_group_message(message, exporter))
    return event


def chat_event(group, sender, text: str, exporter_from: bytes | None = None) -> NostrEvent:
    """Encrypt ``text`` from ``sender`` as an inner chat rumor."""
    rumor = build_inner_chat_message(sender.public_key_hex, text)
    return payload_event(group, sender, rumor.to_json().encode("utf-8"), exporter_from)


class PipelineHarness:
    """Bob's side of a group: store, ACL, audit and captured output."""

    def __init__(self, root, group, bob, allow=()):
        self.data_dir = root / "bob"
        self.store = FileStore(self.data_dir)
        create_default_config(self.data_dir, bob.public_key_hex)
        self.audit = AuditLog(self.data_dir)
        self.acl = AccessControl(self.data_dir, audit=self.audit)
        for pubkey in allow:
            self.acl.add_contact(pubkey)
        self.stream = io.StringIO()
        self.pipeline = MessagePipeline(bob, self.store, group.engine, self.acl, self.audit, Emitter(self.stream))
        self.group = install_group(self.store, group, bob)

    def process(self, event: NostrEvent):
        return self.pipeline.process_event(event, self.store.get_group(self.group.nostr_group_id))

    @property
    def output(self) -> list[dict]:
        return emitted(self.stream)

    @property
    def epoch(self) -> int:
        return self.store.get_group(self.group.nostr_group_id).epoch


@pytest.fixture
def pair(group_factory, alice, bob):
    return group_factory(alice, bob)


class TestApplicationMessages:
    def test_allowed_message_is_emitted_and_stored(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob, allow=[alice.public_key_hex])
        event = chat_event(pair, alice, "Hello")

        message = harness.process(event)

        assert message.allowed
        assert message.content == "Hello"
        assert message.sender_pubkey == alice.public_key_hex
        (line,) = harness.output
        assert line["type"] == "message"
        assert line["content"] == "Hello"
        assert line["groupId"] == pair.nostr_group_id
        assert line["eventId"] == event.id
        (stored,) = harness.store.get_messages(pair.nostr_group_id)
        assert stored.content == "Hello"
        assert stored.sender_pubkey == alice.public_key_hex

    def test_rejected_sender_is_redacted(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob)

        message = harness.process(chat_event(pair, alice, "secret plans"))

        assert not message.allowed
        (line,) = harness.output
        assert line["content"] == REDACTED_EMISSION
        assert line["senderPubkey"] == alice.public_key_hex[:16] + "..."
        (stored,) = harness.store.get_messages(pair.nostr_group_id)
        assert stored.content == REDACTED_CONTENT
        audit_text = "".join(p.read_text() for p in (harness.data_dir / "audit").glob("*.jsonl"))
        assert "secret plans" not in audit_text
        assert "secret plans" not in harness.stream.getvalue()

    def test_ratchet_state_persisted(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob, allow=[alice.public_key_hex])
        first = chat_event(pair, alice, "one")
        second = chat_event(pair, alice, "two")
        harness.process(first)
        harness.process(second)
        # Replaying the first event is now a replay of a consumed generation
        assert harness.process(first) is None
        assert harness.output[-1]["event"] == "mls_error"
        assert [m.content for m in harness.store.get_messages(pair.nostr_group_id)] == ["one", "two"]

    def test_allowed_message_audited_with_preview(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob, allow=[alice.public_key_hex])
        harness.process(chat_event(pair, alice, "Hello"))
        entry = read_audit_log(harness.data_dir)[-1]
        assert entry.type == "message_received"
        assert entry.details == "Hello"

    def test_own_echo_ignored(self, tmp_path, pair, bob):
        harness = PipelineHarness(tmp_path, pair, bob)
        event = chat_event(pair, bob, "mine")
        assert harness.process(event) is None
        assert harness.output == []


class TestCommits:
    def test_commit_advances_epoch(self, tmp_path, pair, alice, bob, carol):
        harness = PipelineHarness(tmp_path, pair, bob)
        before = pair.state(alice)
        admitted = pair.add(alice, carol)
        commit, _ = build_group_event(
            pair.nostr_group_id,
            encrypt_group_message(admitted.commit, pair.engine.derive_epoch_secret(before)),
        )

        assert harness.process(commit) is None
        assert harness.epoch == 2
        state = harness.store.get_state(pair.nostr_group_id)
        assert pair.engine.derive_epoch_secret(state) == pair.engine.derive_epoch_secret(pair.state(alice))


class TestFailures:
    def test_stale_epoch_leaves_state_unchanged(self, tmp_path, pair, alice, bob, carol):
        stale_state = pair.state(alice)
        rumor = build_inner_chat_message(alice.public_key_hex, "M1")
        stale_message, _ = pair.engine.encrypt_application_message(stale_state, rumor.to_json().encode())
        pair.add(alice, carol)
        harness = PipelineHarness(tmp_path, pair, bob)
        state_before = harness.store.get_state(pair.nostr_group_id)

        current = pair.engine.derive_epoch_secret(pair.state(bob))
        event, _ = build_group_event(pair.nostr_group_id, encrypt_group_message(stale_message, current))

        assert harness.process(event) is None
        (line,) = harness.output
        assert line["type"] == "status"
        assert line["event"] == "mls_error"
        assert "state NOT updated" in line["details"]
        assert harness.store.get_state(pair.nostr_group_id) == state_before
        assert harness.epoch == 2

    def test_other_epoch_wrapper_is_decrypt_error(self, tmp_path, pair, alice, bob, carol):
        stale_state = pair.state(alice)
        event = chat_event(pair, alice, "M1", exporter_from=stale_state)
        pair.add(alice, carol)
        harness = PipelineHarness(tmp_path, pair, bob)

        assert harness.process(event) is None
        (line,) = harness.output
        assert line["event"] == "decrypt_error"
        assert "invalid MAC" in line["details"]
        assert harness.store.get_messages(pair.nostr_group_id) == []

    def test_overflowing_inner_timestamp(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob, allow=[alice.public_key_hex])
        inner = b'{"kind": 9, "content": "x", "tags": [], "pubkey": "", "created_at": 1e400}'

        assert harness.process(payload_event(pair, alice, inner)) is None

        (line,) = harness.output
        assert line["event"] == "decrypt_error"
        assert "created_at is not finite" in line["details"]
        assert harness.store.get_messages(pair.nostr_group_id) == []
        # The ratchet moved past the bad message, so the next one still decrypts
        assert harness.process(chat_event(pair, alice, "after")).content == "after"

    def test_foreign_payload_skipped_silently(self, tmp_path, pair, bob):
        harness = PipelineHarness(tmp_path, pair, bob)
        event, _ = build_group_event(pair.nostr_group_id, "not a nip44 payload")
        assert harness.process(event) is None
        assert harness.output == []

    def test_unrelated_event_ignored(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob)
        other_kind = sign_event(NostrEvent(kind=1, content="hi", tags=[["h", pair.nostr_group_id]]), alice)
        other_group, _ = build_group_event("ff" * 32, "payload")
        assert harness.process(other_kind) is None
        assert harness.process(other_group) is None
        assert harness.output == []

    def test_missing_state_drops_event(self, tmp_path, pair, alice, bob):
        harness = PipelineHarness(tmp_path, pair, bob)
        (harness.store.state_dir / f"{pair.nostr_group_id}.bin").unlink()
        assert harness.process(chat_event(pair, alice, "x")) is None
        assert harness.output == []


class TestEmitter:
    def test_writes_lines_to_stream_and_file(self, tmp_path):
        stream = io.StringIO()
        log_file = tmp_path / "logs" / "daemon.jsonl"
        emitter = Emitter(stream, log_file=log_file)
        emitter.status("ready", "Listening on 1 group(s): g")
        emitter.emit(
            DaemonMessage(
                group_id="ab" * 32,
                group_name="g",
                sender_pubkey="cd" * 32,
                content="ünï",
                event_id="ef" * 32,
                allowed=True,
            )
        )
        assert stream.getvalue() == log_file.read_text(encoding="utf-8")
        status, message = emitted(stream)
        assert status["type"] == "status"
        assert status["event"] == "ready"
        assert message["content"] == "ünï"
        assert "ünï" in stream.getvalue()

    def test_status_without_details(self):
        assert "details" not in DaemonStatus(event="connecting").to_dict()
