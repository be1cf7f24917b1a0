"""
Unit tests for the DuckDB credential and realm binding store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from qbo_einvoice.storage.base import DuplicateBindingError
from qbo_einvoice.storage.duckdb_storage import DuckDBStorage
from tests.conftest import REALM_ID, make_binding, make_credential


@pytest.fixture
def storage(tmp_path):
    return DuckDBStorage(db_path=str(tmp_path / "storage.duckdb"))


class TestCredentials:
    def test_missing_realm_returns_none(self, storage):
        assert storage.load_credential(REALM_ID) is None

    def test_round_trip_keeps_timezone(self, storage):
        issued_at = datetime(2025, 9, 23, 17, 30, tzinfo=timezone(timedelta(hours=1)))
        credential = make_credential(issued_at=issued_at)

        storage.save_credential(REALM_ID, credential)
        loaded = storage.load_credential(REALM_ID)

        assert loaded == credential
        assert loaded.issued_at.utcoffset() == timedelta(hours=1)
        assert loaded.expires_at == credential.expires_at

    def test_save_replaces_whole_record(self, storage):
        storage.save_credential(REALM_ID, make_credential())
        storage.save_credential(REALM_ID, make_credential(access_token="access-token-2", refresh_token=None))

        loaded = storage.load_credential(REALM_ID)
        assert loaded.access_token == "access-token-2"
        assert loaded.refresh_token is None

    def test_realms_newest_first(self, storage):
        storage.save_credential("older", make_credential(issued_at=datetime(2025, 1, 1, tzinfo=timezone.utc)))
        storage.save_credential("newer", make_credential(issued_at=datetime(2025, 6, 1, tzinfo=timezone.utc)))

        assert storage.list_credential_realms() == ["newer", "older"]

    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "reopen.duckdb")
        first = DuckDBStorage(db_path=path)
        first.save_credential(REALM_ID, make_credential())
        first._local.connection.close()

        assert DuckDBStorage(db_path=path).load_credential(REALM_ID) == make_credential()


class TestBindings:
    def test_create_assigns_id_and_timestamps(self, storage):
        created = storage.create_binding(make_binding())

        assert created.id
        assert created.created_at is not None
        assert created.created_at == created.updated_at
        assert storage.get_binding(created.id) == created
        assert storage.get_binding_by_realm(REALM_ID) == created

    def test_duplicate_realm_is_rejected(self, storage):
        storage.create_binding(make_binding())

        with pytest.raises(DuplicateBindingError):
            storage.create_binding(make_binding(tin="99999999-0001"))

    def test_list_bindings(self, storage):
        storage.create_binding(make_binding("realm-a"))
        storage.create_binding(make_binding("realm-b"))

        assert {b.realm_id for b in storage.list_bindings()} == {"realm-a", "realm-b"}

    def test_update_changes_only_given_fields(self, storage):
        created = storage.create_binding(make_binding())

        updated = storage.update_binding(created.id, {"tin": "87654321-0001", "firs_business_id": None})

        assert updated.tin == "87654321-0001"
        assert updated.firs_business_id == created.firs_business_id
        assert updated.updated_at >= created.updated_at
        assert storage.get_binding(created.id).tin == "87654321-0001"

    def test_update_to_taken_realm_is_rejected(self, storage):
        storage.create_binding(make_binding("realm-a"))
        second = storage.create_binding(make_binding("realm-b"))

        with pytest.raises(DuplicateBindingError):
            storage.update_binding(second.id, {"realm_id": "realm-a"})

    def test_update_missing_returns_none(self, storage):
        assert storage.update_binding("missing", {"tin": "x"}) is None

    def test_delete(self, storage):
        created = storage.create_binding(make_binding())

        assert storage.delete_binding(created.id) is True
        assert storage.get_binding(created.id) is None
        assert storage.delete_binding(created.id) is False
