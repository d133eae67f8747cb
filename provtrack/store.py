"""
Durable storage for the in-flight job reference.

A tracker tracks at most one job, so every store holds a single logical key.
The reference survives process restarts and lets a new tracker resume
polling a job that was submitted earlier.

Usage:
    from provtrack.store import JsonFileJobStore

    store = JsonFileJobStore(Path("data/provisioning_job.json"))
    store.save(PersistedJobRef(job_id="job-1"))
    ref = store.load()
    store.clear()
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional

from provtrack.models import PersistedJobRef

logger = logging.getLogger(__name__)

DEFAULT_KEY = "aegis.clusterJobState"


def _utc_isoformat() -> str:
    # Explicit +00:00 offset so readers can convert to local time
    return datetime.now(timezone.utc).isoformat()


class JobStore(ABC):
    """
    Single-slot job reference store.

    All operations are synchronous and idempotent; clear() on an empty store
    is a no-op.
    """

    @abstractmethod
    def save(self, ref: PersistedJobRef) -> None:
        """Store ref, replacing whatever was stored before."""
        ...

    @abstractmethod
    def load(self) -> Optional[PersistedJobRef]:
        """Return the stored ref, or None."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored ref if any."""
        ...

    @staticmethod
    def _stamp(ref: PersistedJobRef) -> PersistedJobRef:
        if not ref.saved_at:
            ref.saved_at = _utc_isoformat()
        return ref


class MemoryJobStore(JobStore):
    """Non-durable store for tests and short-lived processes."""

    def __init__(self, ref: Optional[PersistedJobRef] = None):
        self._data: Optional[Dict] = ref.to_dict() if ref else None
        self._lock = threading.RLock()

    def save(self, ref: PersistedJobRef) -> None:
        with self._lock:
            self._data = self._stamp(ref).to_dict()

    def load(self) -> Optional[PersistedJobRef]:
        with self._lock:
            if self._data is None:
                return None
            return PersistedJobRef.from_dict(dict(self._data))

    def clear(self) -> None:
        with self._lock:
            self._data = None


class JsonFileJobStore(JobStore):
    """
    JSON file store.

    The file holds {"<key>": {...ref...}, "updated_at": "..."}. Writes go to
    a temp file that is then renamed over the target, so a crash mid-write
    never leaves a half-written reference behind.
    """

    def __init__(self, path: Path, key: str = DEFAULT_KEY):
        """
        Initialize file store.

        Args:
            path: JSON file path (parent directory is created)
            key: Logical key the reference is stored under
        """
        self.path = Path(path)
        self.key = key
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read_document(self) -> Dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("state file is not a JSON object")
        return data

    def _write_document(self, data: Dict) -> None:
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2)
        temp_file.replace(self.path)

    def save(self, ref: PersistedJobRef) -> None:
        with self._lock:
            self._stamp(ref)
            self._write_document({self.key: ref.to_dict(), "updated_at": _utc_isoformat()})
            logger.debug(f"[{ref.correlation_id}] Persisted job {ref.job_id} to {self.path}")

    def load(self) -> Optional[PersistedJobRef]:
        with self._lock:
            try:
                data = self._read_document()
            except (json.JSONDecodeError, ValueError) as e:
                logger.error(f"Corrupted job state file {self.path}: {e}")
                self._remove()
                return None

            raw = data.get(self.key)
            if raw is None:
                return None
            try:
                return PersistedJobRef.from_dict(raw)
            except ValueError as e:
                logger.warning(f"Discarding invalid job reference: {e}")
                self._remove()
                return None

    def clear(self) -> None:
        with self._lock:
            self._remove()

    def _remove(self) -> None:
        self.path.unlink(missing_ok=True)


class SqliteJobStore(JobStore):
    """Embedded sqlite store; one row per logical key."""

    def __init__(self, path: Path, key: str = DEFAULT_KEY):
        self.path = Path(path)
        self.key = key
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                create table if not exists job_refs (
                  key text primary key,
                  value_json text not null,
                  saved_at text not null
                );
                """
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def save(self, ref: PersistedJobRef) -> None:
        with self._lock, self._connect() as conn:
            self._stamp(ref)
            conn.execute(
                """
                insert into job_refs (key, value_json, saved_at)
                values (?, ?, ?)
                on conflict(key) do update set
                  value_json = excluded.value_json,
                  saved_at = excluded.saved_at
                """,
                (self.key, json.dumps(ref.to_dict()), ref.saved_at),
            )

    def load(self) -> Optional[PersistedJobRef]:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "select value_json from job_refs where key = ?", (self.key,)
            ).fetchone()
            if row is None:
                return None
            try:
                return PersistedJobRef.from_dict(json.loads(row[0]))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Discarding invalid job reference: {e}")
                conn.execute("delete from job_refs where key = ?", (self.key,))
                return None

    def clear(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("delete from job_refs where key = ?", (self.key,))


def build_store(tracker_settings) -> JobStore:
    """Create the store selected by TrackerSettings.store_backend."""
    backend = tracker_settings.store_backend
    if backend == "memory":
        return MemoryJobStore()
    if backend == "sqlite":
        return SqliteJobStore(tracker_settings.store_path, key=tracker_settings.store_key)
    return JsonFileJobStore(tracker_settings.store_path, key=tracker_settings.store_key)
