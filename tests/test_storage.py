"""
Tests for storage backends and transaction support
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from debt_ledger.storage import (
    InMemoryStorage, SQLiteStorage, create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "debt_id": "debt_a",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each backend behind the same interface"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Test CRUD behaviour shared by every backend"""

    def test_basic_operations(self, storage):
        """Test save, load, load_all and delete"""
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data
        assert storage.load("test_table", "non_existent") is None

        storage.save("test_table", "record_2", {"id": "record_2", "debt_id": "debt_b"})
        assert len(storage.load_all("test_table")) == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.load("test_table", "record_1") is None

    def test_find(self, storage):
        storage.save("test_table", "record_1", test_data)
        storage.save("test_table", "record_2", {"id": "record_2", "debt_id": "debt_b"})
        storage.save("test_table", "record_3", {"id": "record_3", "debt_id": "debt_a"})

        found = storage.find("test_table", {"debt_id": "debt_a"})
        assert {r["id"] for r in found} == {"test_001", "record_3"}
        assert storage.find("test_table", {"debt_id": "missing"}) == []

    def test_update_replaces_document(self, storage):
        storage.save("test_table", "record_1", {"id": "record_1", "status": "pending"})
        storage.save("test_table", "record_1", {"id": "record_1", "status": "paid"})
        assert storage.load("test_table", "record_1")["status"] == "paid"
        assert len(storage.load_all("test_table")) == 1

    def test_decimal_values_stored_as_strings(self, storage):
        storage.save("test_table", "record_1", {"id": "record_1", "amount": Decimal('10.10')})
        assert storage.load("test_table", "record_1")["amount"] == "10.10"

    def test_atomic_commit(self, storage):
        with storage.atomic():
            storage.save("test_table", "record_1", test_data)
            storage.save("other_table", "record_2", {"id": "record_2"})
        assert storage.load("test_table", "record_1") is not None
        assert storage.load("other_table", "record_2") is not None

    def test_atomic_rollback(self, storage):
        """Test that a failure inside atomic() discards every write"""
        storage.save("test_table", "record_1", {"id": "record_1", "status": "pending"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("test_table", "record_1", {"id": "record_1", "status": "paid"})
                storage.save("test_table", "record_2", {"id": "record_2"})
                raise RuntimeError("boom")

        assert storage.load("test_table", "record_1")["status"] == "pending"
        assert storage.load("test_table", "record_2") is None

    def test_nested_atomic_joins_outer(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("test_table", "record_1", test_data)
                raise RuntimeError("boom")
        assert storage.load("test_table", "record_1") is None

    def test_rollback_of_new_table(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh_table", "record_1", test_data)
                raise RuntimeError("boom")
        assert len(storage.load_all("fresh_table")) == 0
        storage.save("fresh_table", "record_1", test_data)
        assert storage.load("fresh_table", "record_1") is not None


class TestInMemoryStorage:
    """Test in-memory specifics"""

    def test_loaded_records_are_copies(self):
        storage = InMemoryStorage()
        storage.save("test_table", "record_1", {"id": "record_1", "items": [1]})
        loaded = storage.load("test_table", "record_1")
        loaded["items"].append(2)
        assert storage.load("test_table", "record_1")["items"] == [1]


class TestSQLiteStorage:
    """Test SQLite persistence"""

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "ledger.db"
        first = SQLiteStorage(path)
        first.save("test_table", "record_1", test_data)
        first.close()

        second = SQLiteStorage(path)
        assert second.load("test_table", "record_1") == test_data
        second.close()


class TestCreateStorage:
    """Test storage selection by URL"""

    def test_memory(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_file(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'ledger.db'}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / "ledger.db")
        storage.close()

    def test_sqlite_in_memory(self):
        storage = create_storage("sqlite://")
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_storage("postgresql://localhost/ledger")
