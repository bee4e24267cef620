"""
Unit tests for the credential store.

The OS keyring is replaced by in-memory backends; the fallback file lives in a
per-test temporary directory.
"""

import json
import os
import sys

import pytest

from navtunnel.exceptions import CredentialsNotFound, NotFound, StoreAccessFailure
from navtunnel.local.credentials import CredentialStore, Credentials, StoreLocation


@pytest.fixture
def store(memory_keyring, config_dir) -> CredentialStore:
    return CredentialStore(keyring_backend=memory_keyring, config_dir=config_dir, service="NavTunnelTest")


@pytest.fixture
def fallback_store(broken_keyring, config_dir) -> CredentialStore:
    return CredentialStore(keyring_backend=broken_keyring, config_dir=config_dir, service="NavTunnelTest")


class TestCredentials:
    """Tests for the Credentials record."""

    def test_json_round_trip(self):
        creds = Credentials("alice", "pw1")
        assert Credentials.from_json(creds.to_json()) == creds

    def test_password_not_in_repr(self):
        assert "pw1" not in repr(Credentials("alice", "pw1"))

    def test_partial_record_is_not_present(self):
        assert not Credentials("alice", "").is_present
        assert not Credentials("", "pw1").is_present

    def test_from_json_rejects_non_object(self):
        with pytest.raises(ValueError):
            Credentials.from_json('["alice", "pw1"]')


class TestKeyringStore:
    """Tests with a working keyring."""

    def test_round_trip(self, store):
        saved = store.save("alice", "pw1")
        loaded = store.load()

        assert saved.location is StoreLocation.KEYRING
        assert saved.warning == ""
        assert (loaded.username, loaded.password) == ("alice", "pw1")
        assert loaded.location is StoreLocation.KEYRING

    def test_entry_uses_configured_identifiers(self, store, memory_keyring):
        store.save("alice", "pw1")
        assert ("NavTunnelTest", store.account) in memory_keyring.entries

    def test_no_fallback_file_written(self, store):
        store.save("alice", "pw1")
        assert not store.fallback_path().exists()

    def test_save_removes_stale_fallback_file(self, store):
        path = store.fallback_path()
        path.write_text(json.dumps({"username": "old", "password": "old"}))

        store.save("alice", "pw1")

        assert not path.exists()

    def test_delete_then_load_not_found(self, store):
        store.save("alice", "pw1")
        store.delete()

        with pytest.raises(CredentialsNotFound):
            store.load()

    def test_delete_when_empty_is_not_an_error(self, store):
        store.delete()

    def test_not_found_is_a_not_found_error(self, store):
        with pytest.raises(NotFound):
            store.load()

    def test_empty_fields_rejected_on_save(self, store):
        with pytest.raises(ValueError):
            store.save("", "pw1")
        with pytest.raises(ValueError):
            store.save("alice", "")

    def test_record_with_empty_field_counts_as_absent(self, store, memory_keyring):
        memory_keyring.set_password("NavTunnelTest", store.account, json.dumps({"username": "alice", "password": ""}))

        with pytest.raises(CredentialsNotFound) as exc_info:
            store.load()
        assert exc_info.value.warning == ""

    def test_has_credentials(self, store):
        assert not store.has_credentials()
        store.save("alice", "pw1")
        assert store.has_credentials()

    def test_overwrite(self, store):
        store.save("alice", "pw1")
        store.save("bob", "pw2")

        loaded = store.load()
        assert (loaded.username, loaded.password) == ("bob", "pw2")


class TestFallbackStore:
    """Tests with an unavailable keyring, forcing the fallback file."""

    def test_round_trip(self, fallback_store):
        saved = fallback_store.save("alice", "pw1")
        loaded = fallback_store.load()

        assert saved.location is StoreLocation.FILE
        assert (loaded.username, loaded.password) == ("alice", "pw1")
        assert loaded.location is StoreLocation.FILE

    def test_keyring_errors_surface_as_warnings(self, fallback_store):
        saved = fallback_store.save("alice", "pw1")
        loaded = fallback_store.load()

        assert "keyring" in saved.warning
        assert "secret service unavailable" in saved.warning
        assert "keyring" in loaded.warning

    def test_file_contents(self, fallback_store):
        fallback_store.save("alice", "pw1")

        data = json.loads(fallback_store.fallback_path().read_text())
        assert data == {"username": "alice", "password": "pw1"}

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")
    def test_file_is_owner_only(self, fallback_store):
        fallback_store.save("alice", "pw1")

        mode = os.stat(fallback_store.fallback_path()).st_mode & 0o777
        assert mode == 0o600

    def test_creates_missing_directory(self, broken_keyring, tmp_path):
        store = CredentialStore(keyring_backend=broken_keyring, config_dir=tmp_path / "nested" / "dir")
        store.save("alice", "pw1")

        assert store.fallback_path().exists()

    def test_no_temp_file_left_behind(self, fallback_store, config_dir):
        fallback_store.save("alice", "pw1")
        assert sorted(p.name for p in config_dir.iterdir()) == ["credentials.json"]

    def test_load_not_found_carries_warning(self, fallback_store):
        with pytest.raises(CredentialsNotFound) as exc_info:
            fallback_store.load()
        assert "keyring" in exc_info.value.warning

    def test_delete_reports_keyring_failure_but_removes_file(self, fallback_store):
        fallback_store.save("alice", "pw1")

        with pytest.raises(StoreAccessFailure, match="keyring delete failed"):
            fallback_store.delete()

        assert not fallback_store.fallback_path().exists()
        with pytest.raises(CredentialsNotFound):
            fallback_store.load()

    def test_corrupt_file_is_access_failure(self, fallback_store):
        fallback_store.fallback_path().write_text("{not json")

        with pytest.raises(StoreAccessFailure):
            fallback_store.load()

    def test_file_read_when_keyring_empty(self, store):
        store.fallback_path().write_text(json.dumps({"username": "alice", "password": "pw1"}))

        loaded = store.load()
        assert loaded.location is StoreLocation.FILE
        assert loaded.warning == ""

    def test_save_fails_when_both_locations_fail(self, broken_keyring, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = CredentialStore(keyring_backend=broken_keyring, config_dir=blocker / "sub")

        with pytest.raises(StoreAccessFailure):
            store.save("alice", "pw1")

    def test_delete_after_fallback_save_then_not_found(self, config_dir, broken_keyring, memory_keyring):
        CredentialStore(keyring_backend=broken_keyring, config_dir=config_dir).save("alice", "pw1")
        store = CredentialStore(keyring_backend=memory_keyring, config_dir=config_dir)

        store.delete()

        with pytest.raises(CredentialsNotFound):
            store.load()
