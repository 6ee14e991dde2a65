"""
JSON-serialized key-value persistence with change notification.

Every key holds one JSON document (usually a list of records) and a revision
counter. Reads never raise: a missing or corrupt value comes back empty.
Writes overwrite the whole value, bump the revision and then notify
subscribers of that key.

Backends only move raw strings around; serialization and notification live
in KeyValueStore so every backend behaves the same.
"""
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import StaleWriteError

logger = logging.getLogger(__name__)

# (raw json or None when removed, revision)
Record = Tuple[Optional[str], int]


def scoped_key(base: str, scope: Optional[str] = None) -> str:
    return f"{base}:{scope}" if scope else base


class ChangeEvent(NamedTuple):
    key: str
    revision: int


Listener = Callable[[ChangeEvent], None]


# ---------- Backends ----------

class MemoryBackend:
    def __init__(self):
        self._data: Dict[str, Record] = {}

    def read(self, key: str) -> Optional[Record]:
        return self._data.get(key)

    def write(self, key: str, raw: Optional[str], expected_revision: Optional[int] = None) -> int:
        current = self._data.get(key, (None, 0))[1]
        if expected_revision is not None and expected_revision != current:
            raise StaleWriteError(key, expected_revision, current)
        self._data[key] = (raw, current + 1)
        return current + 1


class JsonFileBackend:
    """All keys in one JSON file: {key: {"value": raw, "revision": n}}."""

    def __init__(self, path):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Corrupt store file %s; starting fresh", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def read(self, key: str) -> Optional[Record]:
        entry = self._read_all().get(key)
        if not isinstance(entry, dict):
            return None
        return entry.get("value"), int(entry.get("revision", 0))

    def write(self, key: str, raw: Optional[str], expected_revision: Optional[int] = None) -> int:
        data = self._read_all()
        entry = data.get(key) if isinstance(data.get(key), dict) else {}
        current = int(entry.get("revision", 0))
        if expected_revision is not None and expected_revision != current:
            raise StaleWriteError(key, expected_revision, current)
        data[key] = {"value": raw, "revision": current + 1}
        self._replace(json.dumps(data, indent=2))
        return current + 1

    def _replace(self, text: str) -> None:
        # write a sibling temp file, then swap it in so readers never see a partial file
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


class MongoBackend:
    """One document per key: {_id: key, value: raw, revision: n}."""

    def __init__(self, collection):
        self.collection = collection

    def read(self, key: str) -> Optional[Record]:
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None
        return doc.get("value"), int(doc.get("revision", 0))

    def write(self, key: str, raw: Optional[str], expected_revision: Optional[int] = None) -> int:
        now = datetime.now(timezone.utc)
        if expected_revision == 0:
            try:
                self.collection.insert_one({"_id": key, "value": raw, "revision": 1, "updated_at": now})
                return 1
            except DuplicateKeyError:
                raise StaleWriteError(key, 0, self._revision(key))

        filt = {"_id": key}
        if expected_revision is not None:
            filt["revision"] = expected_revision
        doc = self.collection.find_one_and_update(
            filt,
            {"$set": {"value": raw, "updated_at": now}, "$inc": {"revision": 1}},
            upsert=expected_revision is None,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(key, expected_revision, self._revision(key))
        return int(doc["revision"])

    def _revision(self, key: str) -> int:
        doc = self.collection.find_one({"_id": key}, {"revision": 1})
        return int(doc.get("revision", 0)) if doc else 0


# ---------- Store ----------

Staged = Dict[str, Tuple[Optional[str], Optional[int]]]


class KeyValueStore:
    """Thread-safe front for a backend.

    Request handlers run on a thread pool, so staged batch writes are kept
    per thread and every write (plain or batched) is serialized by one
    re-entrant lock. A batch holds that lock for its whole block; other
    threads can still read committed values meanwhile.
    """

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else MemoryBackend()
        self._listeners: List[Tuple[Optional[str], Listener]] = []
        self._lock = threading.RLock()
        self._local = threading.local()

    @property
    def _staged(self) -> Optional[Staged]:
        # key -> (raw, expected revision of the first staged write), this thread only
        return getattr(self._local, "staged", None)

    @_staged.setter
    def _staged(self, value: Optional[Staged]) -> None:
        self._local.staged = value

    # reads

    def _raw(self, key: str) -> Optional[str]:
        staged = self._staged
        if staged is not None and key in staged:
            return staged[key][0]
        rec = self.backend.read(key)
        return rec[0] if rec else None

    def _decode(self, key: str, expected_type: type):
        raw = self._raw(key)
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Corrupt value under %r; treating as empty", key)
            return None
        if not isinstance(value, expected_type):
            logger.warning("Unexpected %s under %r; treating as empty", type(value).__name__, key)
            return None
        return value

    def load(self, key: str) -> List[Any]:
        """Return the sequence stored under key, or [] if missing or corrupt."""
        return self._decode(key, list) or []

    def load_object(self, key: str) -> Optional[Dict[str, Any]]:
        return self._decode(key, dict)

    def load_value(self, key: str, default: Any = None) -> Any:
        value = self._decode(key, object)
        return default if value is None else value

    def revision(self, key: str) -> int:
        rec = self.backend.read(key)
        return rec[1] if rec else 0

    # writes

    def save(self, key: str, value: Any, expected_revision: Optional[int] = None) -> None:
        """Overwrite key with value, then notify subscribers of key.

        With expected_revision the write is rejected (StaleWriteError) unless
        the stored revision still matches.
        """
        self._write(key, json.dumps(value, ensure_ascii=False), expected_revision)

    def remove(self, key: str, expected_revision: Optional[int] = None) -> None:
        self._write(key, None, expected_revision)

    def _write(self, key: str, raw: Optional[str], expected_revision: Optional[int]) -> None:
        staged = self._staged
        if staged is not None:
            if key in staged:
                expected_revision = staged[key][1]
            staged[key] = (raw, expected_revision)
            return
        with self._lock:
            revision = self.backend.write(key, raw, expected_revision)
        self._notify(ChangeEvent(key, revision))

    @contextmanager
    def batch(self) -> Iterator["KeyValueStore"]:
        """Stage writes and commit them together when the block exits cleanly.

        Loads inside the block see staged values; other threads never do.
        An exception discards everything staged. A nested batch is a
        savepoint: if it raises, only its own writes are dropped, even when
        the caller catches the error and carries on with the outer batch.

        Wrap read-modify-write sequences in a batch so concurrent writers
        cannot interleave with them.
        """
        staged = self._staged
        if staged is not None:
            savepoint = dict(staged)
            try:
                yield self
            except BaseException:
                staged.clear()
                staged.update(savepoint)
                raise
            return

        with self._lock:
            self._staged = {}
            try:
                yield self
            except BaseException:
                self._staged = None
                raise
            staged, self._staged = self._staged, None

            for key, (_, expected) in staged.items():
                if expected is not None and self.revision(key) != expected:
                    raise StaleWriteError(key, expected, self.revision(key))
            events = []
            for key, (raw, expected) in staged.items():
                events.append(ChangeEvent(key, self.backend.write(key, raw, expected)))
        for event in events:
            self._notify(event)

    # notification

    def subscribe(self, callback: Listener, key: Optional[str] = None) -> Callable[[], None]:
        """Call callback after every committed write to key (every key if None)."""
        entry = (key, callback)
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, event: ChangeEvent) -> None:
        for key, callback in list(self._listeners):
            if key is not None and key != event.key:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Change listener for %r failed", event.key)


M = TypeVar("M", bound=BaseModel)


class RecordCollection:
    """An ordered list of pydantic records kept under one key."""

    def __init__(self, store: KeyValueStore, key: str, model: Type[M], id_field: str = "id"):
        self.store = store
        self.key = key
        self.model = model
        self.id_field = id_field

    def all(self) -> List[M]:
        records = []
        for raw in self.store.load(self.key):
            try:
                records.append(self.model.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed %s record under %r", self.model.__name__, self.key)
        return records

    def replace_all(self, records: List[M]) -> None:
        self.store.save(self.key, [r.model_dump(mode="json") for r in records])

    def get(self, record_id: str) -> Optional[M]:
        return next((r for r in self.all() if getattr(r, self.id_field) == record_id), None)

    def upsert(self, record: M) -> M:
        """Replace the first record with the same id in place, else prepend."""
        with self.store.batch():
            records = self.all()
            record_id = getattr(record, self.id_field)
            for i, existing in enumerate(records):
                if getattr(existing, self.id_field) == record_id:
                    records[i] = record
                    break
            else:
                records.insert(0, record)
            self.replace_all(records)
        return record

    def append(self, record: M) -> M:
        with self.store.batch():
            records = self.all()
            records.append(record)
            self.replace_all(records)
        return record

    def delete(self, record_id: str) -> bool:
        with self.store.batch():
            records = self.all()
            kept = [r for r in records if getattr(r, self.id_field) != record_id]
            if len(kept) == len(records):
                return False
            self.replace_all(kept)
        return True

    def clear(self) -> None:
        self.store.save(self.key, [])
