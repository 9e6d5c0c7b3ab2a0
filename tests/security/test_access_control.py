"""Tests for allowlist access control."""

from __future__ import annotations

import json

import pytest

from burrow.core.exceptions import AccessDeniedError, ConfigException, StorageError, ValidationException
from burrow.crypto.nip19 import npub_encode
from burrow.security.access_control import CONFIG_FILENAME, AccessControl, create_default_config
from burrow.security.audit import AuditEventType, read_audit_log

OWNER = "11" * 32
CONTACT = "22" * 32
STRANGER = "33" * 32
GROUP = "44" * 32


@pytest.fixture
def data_dir(tmp_path):
    create_default_config(tmp_path, OWNER)
    return tmp_path


@pytest.fixture
def acl(data_dir) -> AccessControl:
    return AccessControl(data_dir)


def on_disk(data_dir) -> dict:
    return json.loads((data_dir / CONFIG_FILENAME).read_text())


class TestCreateDefaultConfig:
    def test_writes_camel_case_file(self, data_dir):
        raw = on_disk(data_dir)
        assert raw["owner"]["hex"] == OWNER
        assert raw["owner"]["npub"] == npub_encode(OWNER)
        assert raw["defaultPolicy"] == "ignore"
        assert raw["allowedContacts"] == []
        assert raw["allowedGroups"] == []
        assert raw["settings"] == {"logRejectedContent": False, "auditEnabled": True}

    def test_accepts_npub_owner(self, tmp_path):
        create_default_config(tmp_path, npub_encode(OWNER))
        assert on_disk(tmp_path)["owner"]["hex"] == OWNER

    def test_refuses_to_overwrite(self, data_dir):
        with pytest.raises(ConfigException, match="already exists"):
            create_default_config(data_dir, CONTACT)
        create_default_config(data_dir, CONTACT, overwrite=True)
        assert on_disk(data_dir)["owner"]["hex"] == CONTACT

    def test_no_owner(self, tmp_path):
        create_default_config(tmp_path)
        assert on_disk(tmp_path)["owner"]["hex"] == ""


class TestLoading:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigException, match="not found"):
            AccessControl(tmp_path)

    def test_missing_owner(self, tmp_path):
        create_default_config(tmp_path)
        with pytest.raises(ConfigException, match="Owner pubkey not configured") as exc_info:
            AccessControl(tmp_path)
        assert exc_info.value.details["missing_vars"] == ["BURROW_OWNER_HEX"]

    def test_invalid_json(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("{oops")
        with pytest.raises(ConfigException, match="Cannot read"):
            AccessControl(tmp_path)

    def test_unknown_policy(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(json.dumps({"owner": {"hex": OWNER}, "defaultPolicy": "allow"}))
        with pytest.raises(ConfigException, match="defaultPolicy"):
            AccessControl(tmp_path)

    def test_legacy_string_owner(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(json.dumps({"owner": OWNER.upper(), "allowedContacts": [CONTACT]}))
        acl = AccessControl(tmp_path)
        assert acl.owner_hex == OWNER
        assert acl.get_config().owner.note == "Migrated from legacy format"

        acl.add_group(GROUP)
        assert on_disk(tmp_path)["owner"]["hex"] == OWNER.upper()
        assert on_disk(tmp_path)["owner"]["note"] == "Migrated from legacy format"


class TestEnvironmentOwner:
    def test_hex_override_is_not_persisted(self, tmp_path, monkeypatch):
        create_default_config(tmp_path)
        monkeypatch.setenv("BURROW_OWNER_HEX", OWNER)
        acl = AccessControl(tmp_path)
        assert acl.is_owner(OWNER)

        acl.add_contact(CONTACT)
        raw = on_disk(tmp_path)
        assert raw["owner"]["hex"] == ""
        assert raw["allowedContacts"] == [CONTACT]

    def test_hex_override_beats_file(self, data_dir, monkeypatch):
        monkeypatch.setenv("BURROW_OWNER_HEX", CONTACT)
        assert AccessControl(data_dir).owner_hex == CONTACT

    def test_npub_fills_missing_owner(self, tmp_path, monkeypatch):
        create_default_config(tmp_path)
        monkeypatch.setenv("BURROW_OWNER_NPUB", npub_encode(OWNER))
        assert AccessControl(tmp_path).owner_hex == OWNER

    def test_bad_npub(self, tmp_path, monkeypatch):
        create_default_config(tmp_path)
        monkeypatch.setenv("BURROW_OWNER_NPUB", "npub1notvalid")
        with pytest.raises(ConfigException, match="BURROW_OWNER_NPUB"):
            AccessControl(tmp_path)


class TestQueries:
    def test_owner_always_allowed(self, acl):
        assert acl.is_contact_allowed(OWNER)
        assert acl.is_contact_allowed(OWNER.upper())

    def test_unknown_contact_rejected(self, acl):
        assert not acl.is_contact_allowed(STRANGER)

    def test_groups_need_explicit_allow(self, acl):
        assert not acl.is_group_allowed(GROUP)
        acl.add_group(GROUP)
        assert acl.is_group_allowed(GROUP.upper())

    def test_get_config_is_a_copy(self, acl):
        acl.get_config().allowed_contacts.append(STRANGER)
        assert not acl.is_contact_allowed(STRANGER)


class TestMutations:
    def test_add_and_remove_contact(self, acl, data_dir):
        assert acl.add_contact(CONTACT)
        assert acl.is_contact_allowed(CONTACT)
        assert on_disk(data_dir)["allowedContacts"] == [CONTACT]

        assert acl.remove_contact(CONTACT)
        assert not acl.is_contact_allowed(CONTACT)
        assert on_disk(data_dir)["allowedContacts"] == []

    def test_add_contact_by_npub(self, acl):
        assert acl.add_contact(npub_encode(CONTACT))
        assert acl.is_contact_allowed(CONTACT)

    def test_duplicate_add_is_noop(self, acl, data_dir):
        assert acl.add_contact(CONTACT)
        assert not acl.add_contact(CONTACT)
        assert on_disk(data_dir)["allowedContacts"] == [CONTACT]

    def test_remove_absent_is_noop(self, acl):
        assert not acl.remove_contact(CONTACT)
        assert not acl.remove_group(GROUP)

    def test_group_id_validated(self, acl):
        with pytest.raises(ValidationException, match="64 hex"):
            acl.add_group("abcd")

    def test_owner_may_mutate(self, acl):
        assert acl.add_group(GROUP, requester=OWNER)

    def test_stranger_denied_and_audited(self, acl, data_dir):
        with pytest.raises(AccessDeniedError):
            acl.add_contact(CONTACT, requester=STRANGER)
        assert not acl.is_contact_allowed(CONTACT)

        entries = read_audit_log(data_dir)
        denial = entries[-1]
        assert denial.type == AuditEventType.ACCESS_CHANGE
        assert not denial.allowed
        assert denial.sender_pubkey == STRANGER[:16] + "..."

    def test_changes_are_audited(self, acl, data_dir):
        acl.add_contact(CONTACT)
        entry = read_audit_log(data_dir)[-1]
        assert entry.allowed
        assert entry.details == f"add_contact {CONTACT}"

    def test_failed_write_rolls_back(self, acl, data_dir, monkeypatch):
        def fail_write(path, data):
            raise StorageError("Failed to write access-control.json: disk full", path=str(path))

        monkeypatch.setattr("burrow.security.access_control.atomic_write_json", fail_write)

        with pytest.raises(StorageError):
            acl.add_contact(CONTACT)

        assert not acl.is_contact_allowed(CONTACT)
        assert on_disk(data_dir)["allowedContacts"] == []
        assert all(e.type != AuditEventType.ACCESS_CHANGE for e in read_audit_log(data_dir))
