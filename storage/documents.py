"""
BinWatch — Document Store
==========================
Collections of JSON documents keyed by an auto-generated id.

  - MemoryStore    in-process dicts (tests, simulator dry runs)
  - JsonFileStore  one JSON file per document under <root>/<collection>/,
                   written atomically (temp file + rename) so the Pathway
                   engine can watch the readings directory

Both fire in-process subscribers after a document is added; that is the
"reading created" trigger when processing runs inside the API process.
"""
import json
import logging
import os
import tempfile
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone

from alerting.errors import NotFoundError, TransientStoreError
from config.settings import STORE_BACKEND, STORE_DIR

logger = logging.getLogger(__name__)

_MIN_TS = datetime.min.replace(tzinfo=timezone.utc)


def new_id():
    return uuid.uuid4().hex


def _parse_ts(value):
    """ISO string or datetime -> timezone-aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return _MIN_TS
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _MIN_TS
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _clone(doc):
    """Deep copy through JSON so stored documents never alias caller objects."""
    return json.loads(json.dumps(doc))


def _matches(doc, filters, range_field, start, end):
    for field, expected in (filters or {}).items():
        if doc.get(field) != expected:
            return False
    if range_field:
        ts = _parse_ts(doc.get(range_field))
        if start is not None and ts < _parse_ts(start):
            return False
        if end is not None and ts >= _parse_ts(end):
            return False
    return True


def _select(docs, filters=None, range_field=None, start=None, end=None,
            order_by=None, descending=False, limit=None):
    """Shared query semantics: equality filters, [start, end) window, ordering."""
    out = [d for d in docs if _matches(d, filters, range_field, start, end)]
    if order_by:
        out.sort(key=lambda d: _parse_ts(d.get(order_by)), reverse=descending)
    if limit is not None:
        out = out[:limit]
    return out


class DocumentStore:
    """Common subscription plumbing. Subclasses implement the storage."""

    backend = "base"

    def __init__(self):
        self._subscribers = defaultdict(list)

    def subscribe(self, collection, callback):
        """Call `callback(doc)` after every document added to `collection`."""
        self._subscribers[collection].append(callback)

    def unsubscribe(self, collection, callback):
        if callback in self._subscribers[collection]:
            self._subscribers[collection].remove(callback)

    def _notify(self, collection, docs):
        for cb in list(self._subscribers[collection]):
            for doc in docs:
                cb(_clone(doc))

    # Interface
    def add(self, collection, data, doc_id=None):
        raise NotImplementedError

    def add_many(self, collection, docs):
        raise NotImplementedError

    def set(self, collection, doc_id, data):
        raise NotImplementedError

    def get(self, collection, doc_id):
        raise NotImplementedError

    def update(self, collection, doc_id, fields):
        raise NotImplementedError

    def query(self, collection, filters=None, range_field=None, start=None, end=None,
              order_by=None, descending=False, limit=None):
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════
class MemoryStore(DocumentStore):

    backend = "memory"

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._data = defaultdict(dict)  # collection -> id -> doc

    def add(self, collection, data, doc_id=None):
        doc = _clone(data)
        doc["id"] = doc_id or new_id()
        with self._lock:
            self._data[collection][doc["id"]] = doc
        self._notify(collection, [doc])
        return doc["id"]

    def add_many(self, collection, docs):
        """All-or-nothing: documents become visible together."""
        prepared = []
        for data in docs:
            doc = _clone(data)
            doc["id"] = new_id()
            prepared.append(doc)
        with self._lock:
            for doc in prepared:
                self._data[collection][doc["id"]] = doc
        self._notify(collection, prepared)
        return [d["id"] for d in prepared]

    def set(self, collection, doc_id, data):
        doc = _clone(data)
        doc["id"] = doc_id
        with self._lock:
            self._data[collection][doc_id] = doc

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._data[collection].get(doc_id)
            return _clone(doc) if doc is not None else None

    def update(self, collection, doc_id, fields):
        with self._lock:
            doc = self._data[collection].get(doc_id)
            if doc is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            doc.update(_clone(fields))
            doc["id"] = doc_id

    def query(self, collection, filters=None, range_field=None, start=None, end=None,
              order_by=None, descending=False, limit=None):
        with self._lock:
            docs = [_clone(d) for d in self._data[collection].values()]
        return _select(docs, filters, range_field, start, end, order_by, descending, limit)


# ═══════════════════════════════════════════════════════════════════════════
# JSON FILES (one document per file, atomic writes)
# ═══════════════════════════════════════════════════════════════════════════
class JsonFileStore(DocumentStore):

    backend = "json"

    def __init__(self, root):
        super().__init__()
        self.root = root
        # Temp files live outside the collection dirs so watchers never see them
        self._tmp_dir = os.path.join(root, ".tmp")
        self._lock = threading.RLock()
        try:
            os.makedirs(self._tmp_dir, exist_ok=True)
        except OSError as e:
            raise TransientStoreError(f"Cannot create store at {root}: {e}") from e

    def collection_dir(self, collection):
        return os.path.join(self.root, collection)

    def _path(self, collection, doc_id):
        return os.path.join(self.collection_dir(collection), f"{doc_id}.json")

    def _write_temp(self, doc):
        fd, tmp_path = tempfile.mkstemp(dir=self._tmp_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(doc, tmp)
                tmp.flush()
        except Exception:
            os.unlink(tmp_path)
            raise
        return tmp_path

    def _write(self, collection, doc):
        try:
            os.makedirs(self.collection_dir(collection), exist_ok=True)
            tmp_path = self._write_temp(doc)
            os.replace(tmp_path, self._path(collection, doc["id"]))
        except OSError as e:
            raise TransientStoreError(f"Write failed for {collection}/{doc['id']}: {e}") from e

    def _read(self, path):
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _read_all(self, collection):
        directory = self.collection_dir(collection)
        if not os.path.exists(directory):
            return []
        docs = []
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            raise TransientStoreError(f"Cannot list {collection}: {e}") from e
        for fname in names:
            if not fname.endswith(".json"):
                continue
            try:
                docs.append(self._read(os.path.join(directory, fname)))
            except FileNotFoundError:
                continue
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable document %s/%s", collection, fname)
            except OSError as e:
                raise TransientStoreError(f"Read failed for {collection}/{fname}: {e}") from e
        return docs

    def add(self, collection, data, doc_id=None):
        doc = _clone(data)
        doc["id"] = doc_id or new_id()
        with self._lock:
            self._write(collection, doc)
        self._notify(collection, [doc])
        return doc["id"]

    def add_many(self, collection, docs):
        """All temp files are written before any is renamed into place."""
        prepared = []
        for data in docs:
            doc = _clone(data)
            doc["id"] = new_id()
            prepared.append(doc)
        staged = []
        with self._lock:
            try:
                os.makedirs(self.collection_dir(collection), exist_ok=True)
                for doc in prepared:
                    staged.append((self._write_temp(doc), self._path(collection, doc["id"])))
            except OSError as e:
                for tmp_path, _ in staged:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
                raise TransientStoreError(f"Batch write failed for {collection}: {e}") from e
            committed = []
            try:
                for tmp_path, final_path in staged:
                    os.replace(tmp_path, final_path)
                    committed.append(final_path)
            except OSError as e:
                # Roll back: nothing of a failed batch stays visible
                for path in committed + [tmp for tmp, _ in staged[len(committed):]]:
                    try:
                        os.unlink(path)
                    except FileNotFoundError:
                        continue
                raise TransientStoreError(f"Batch commit failed for {collection}: {e}") from e
        self._notify(collection, prepared)
        return [d["id"] for d in prepared]

    def set(self, collection, doc_id, data):
        doc = _clone(data)
        doc["id"] = doc_id
        with self._lock:
            self._write(collection, doc)

    def get(self, collection, doc_id):
        path = self._path(collection, doc_id)
        try:
            return self._read(path)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise TransientStoreError(f"Read failed for {collection}/{doc_id}: {e}") from e

    def update(self, collection, doc_id, fields):
        with self._lock:
            doc = self.get(collection, doc_id)
            if doc is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            doc.update(_clone(fields))
            doc["id"] = doc_id
            self._write(collection, doc)

    def query(self, collection, filters=None, range_field=None, start=None, end=None,
              order_by=None, descending=False, limit=None):
        return _select(self._read_all(collection), filters, range_field, start, end,
                       order_by, descending, limit)


def create_store(backend=None, root=None):
    """Build the configured store (STORE_BACKEND / STORE_DIR)."""
    backend = backend or STORE_BACKEND
    if backend == "memory":
        return MemoryStore()
    if backend == "json":
        return JsonFileStore(root or STORE_DIR)
    raise ValueError(f"Unknown store backend: {backend}")
