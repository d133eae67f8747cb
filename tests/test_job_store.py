"""
Unit tests for job reference stores.
"""

import json
from types import SimpleNamespace

import pytest

from provtrack.models import PersistedJobRef
from provtrack.store import (
    JsonFileJobStore,
    MemoryJobStore,
    SqliteJobStore,
    build_store,
)


@pytest.fixture(params=["memory", "json", "sqlite"])
def store(request, tmp_path):
    """Each store implementation behind the same contract."""
    if request.param == "memory":
        return MemoryJobStore()
    if request.param == "json":
        return JsonFileJobStore(tmp_path / "state" / "job.json")
    return SqliteJobStore(tmp_path / "state" / "job.db")


class TestStoreContract:
    """Behaviour shared by every JobStore."""

    def test_empty_store_loads_none(self, store):
        assert store.load() is None

    def test_save_then_load(self, store):
        store.save(PersistedJobRef("job-1", {"correlation_id": "corr-1", "region": "us-east-1"}))

        ref = store.load()

        assert ref.job_id == "job-1"
        assert ref.correlation_id == "corr-1"
        assert ref.correlation_metadata["region"] == "us-east-1"
        assert ref.saved_at  # stamped on save

    def test_saved_at_is_utc_with_offset(self, store):
        store.save(PersistedJobRef("job-1"))
        assert store.load().saved_at.endswith("+00:00")

    def test_save_overwrites(self, store):
        store.save(PersistedJobRef("job-1"))
        store.save(PersistedJobRef("job-2"))
        assert store.load().job_id == "job-2"

    def test_clear_is_idempotent(self, store):
        store.clear()  # nothing stored: no error
        store.save(PersistedJobRef("job-1"))
        store.clear()
        store.clear()
        assert store.load() is None


class TestJsonFileJobStore:
    """Tests specific to the JSON file store."""

    def test_survives_new_instance(self, tmp_path):
        path = tmp_path / "job.json"
        JsonFileJobStore(path).save(PersistedJobRef("job-1", {"correlation_id": "c"}))

        assert JsonFileJobStore(path).load().job_id == "job-1"

    def test_document_layout(self, tmp_path):
        path = tmp_path / "job.json"
        JsonFileJobStore(path, key="custom.key").save(PersistedJobRef("job-1"))

        data = json.loads(path.read_text())

        assert data["custom.key"]["job_id"] == "job-1"
        assert "updated_at" in data
        assert not path.with_suffix(".json.tmp").exists()

    def test_corrupted_file_is_discarded(self, tmp_path):
        path = tmp_path / "job.json"
        path.write_text("{not json")

        store = JsonFileJobStore(path)

        assert store.load() is None
        assert not path.exists()

    def test_invalid_reference_is_discarded(self, tmp_path):
        path = tmp_path / "job.json"
        path.write_text(json.dumps({"aegis.clusterJobState": {"correlation_metadata": {}}}))

        assert JsonFileJobStore(path).load() is None
        assert not path.exists()

    def test_other_key_is_absent(self, tmp_path):
        path = tmp_path / "job.json"
        JsonFileJobStore(path, key="a").save(PersistedJobRef("job-1"))
        assert JsonFileJobStore(path, key="b").load() is None


class TestSqliteJobStore:
    def test_survives_new_instance(self, tmp_path):
        path = tmp_path / "job.db"
        SqliteJobStore(path).save(PersistedJobRef("job-1"))
        assert SqliteJobStore(path).load().job_id == "job-1"

    def test_keys_are_independent(self, tmp_path):
        path = tmp_path / "job.db"
        SqliteJobStore(path, key="a").save(PersistedJobRef("job-a"))
        SqliteJobStore(path, key="b").save(PersistedJobRef("job-b"))

        SqliteJobStore(path, key="a").clear()

        assert SqliteJobStore(path, key="a").load() is None
        assert SqliteJobStore(path, key="b").load().job_id == "job-b"


class TestBuildStore:
    @pytest.mark.parametrize(
        "backend,expected",
        [("memory", MemoryJobStore), ("json", JsonFileJobStore), ("sqlite", SqliteJobStore)],
    )
    def test_backend_selection(self, tmp_path, backend, expected):
        settings = SimpleNamespace(
            store_backend=backend, store_path=tmp_path / "job.store", store_key="k"
        )
        assert isinstance(build_store(settings), expected)
