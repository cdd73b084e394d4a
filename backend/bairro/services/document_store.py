"""Document store port and the in-memory adapter.

The marketplace never owns persistent storage. Providers, conversations,
messages and reviews live in a document-oriented store with Firestore-like
semantics: collections addressed by slash-separated paths, equality and
array-membership filters, one order-by field, atomic write batches and live
snapshot listeners.
"""

import copy
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from itertools import count
from threading import RLock
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder resolved by the store to the commit time of the batch.
SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentStoreError(RuntimeError):
    """The remote store rejected or failed an operation."""


class DocumentExistsError(DocumentStoreError):
    pass


class DocumentNotFoundError(DocumentStoreError):
    pass


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: Literal["==", "array_contains"]
    value: Any

    def matches(self, data: Dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        current = data[self.field]
        if self.op == "==":
            return current == self.value
        if self.op == "array_contains":
            return isinstance(current, list) and self.value in current
        raise ValueError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class StoreQuery:
    collection: str
    filters: Tuple[FieldFilter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field: str, op: Literal["==", "array_contains"], value: Any) -> "StoreQuery":
        return replace(self, filters=self.filters + (FieldFilter(field, op, value),))

    def ordered_by(self, field: str, descending: bool = False) -> "StoreQuery":
        return replace(self, order_by=field, descending=descending)

    def limited(self, limit: int) -> "StoreQuery":
        return replace(self, limit=limit)


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    path: str
    data: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class Write:
    kind: Literal["create", "set", "update"]
    path: str
    data: Dict[str, Any]


SnapshotCallback = Callable[[List[DocumentSnapshot]], None]


class ListenerHandle(Protocol):
    def unsubscribe(self) -> None:
        ...


class DocumentStore(Protocol):
    """Operations the marketplace needs from the remote store.

    ``commit`` applies every write or none of them and returns the commit time,
    which is also the value stored wherever ``SERVER_TIMESTAMP`` was used.
    ``create`` writes fail with ``DocumentExistsError`` when the document is
    already present, ``update`` writes fail with ``DocumentNotFoundError`` when
    it is missing. ``listen`` delivers the full query result once immediately
    and again after every change, until the handle is unsubscribed.
    """

    async def query(self, query: StoreQuery) -> List[DocumentSnapshot]:
        ...

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        ...

    def new_id(self, collection: str) -> str:
        ...

    async def commit(self, writes: Sequence[Write]) -> datetime:
        ...

    def listen(self, query: StoreQuery, callback: SnapshotCallback) -> ListenerHandle:
        ...


def split_path(path: str) -> Tuple[str, str]:
    collection, _, doc_id = path.strip("/").rpartition("/")
    if not collection or not doc_id:
        raise ValueError(f"Invalid document path: {path!r}")
    return collection, doc_id


def document_path(collection: str, doc_id: str) -> str:
    return f"{collection}/{doc_id}"


def new_document_id() -> str:
    return uuid4().hex[:20]


@dataclass
class _Listener:
    query: StoreQuery
    callback: SnapshotCallback


class _InMemoryListenerHandle:
    def __init__(self, store: "InMemoryDocumentStore", listener_id: int) -> None:
        self._store = store
        self._listener_id = listener_id

    def unsubscribe(self) -> None:
        self._store._remove_listener(self._listener_id)


class InMemoryDocumentStore:
    """Thread-safe document store kept in process memory.

    Listener callbacks run synchronously in the committing thread while the
    store lock is held, so every listener sees snapshots in commit order.
    Documents that tie on the order-by field keep insertion order.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._lock = RLock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: Dict[int, _Listener] = {}
        self._listener_ids = count(1)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_commit_at: Optional[datetime] = None

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    async def query(self, query: StoreQuery) -> List[DocumentSnapshot]:
        return self.run_query(query)

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        return self.read(path)

    def new_id(self, collection: str) -> str:
        return new_document_id()

    async def commit(self, writes: Sequence[Write]) -> datetime:
        return self.apply(writes)

    def listen(self, query: StoreQuery, callback: SnapshotCallback) -> ListenerHandle:
        with self._lock:
            listener_id = next(self._listener_ids)
            listener = _Listener(query=query, callback=callback)
            self._listeners[listener_id] = listener
            self._dispatch(listener)
        return _InMemoryListenerHandle(self, listener_id)

    def put(self, path: str, data: Dict[str, Any]) -> datetime:
        """Overwrite one document; used for seeding."""
        return self.apply([Write(kind="set", path=path, data=data)])

    def run_query(self, query: StoreQuery) -> List[DocumentSnapshot]:
        with self._lock:
            docs = self._collections.get(query.collection, {})
            matched = [
                (doc_id, data)
                for doc_id, data in docs.items()
                if all(item.matches(data) for item in query.filters)
            ]
            if query.order_by:
                key = query.order_by
                matched = [item for item in matched if item[1].get(key) is not None]
                matched.sort(key=lambda item: item[1][key], reverse=query.descending)
            if query.limit is not None:
                matched = matched[: query.limit]
            return [
                DocumentSnapshot(
                    id=doc_id,
                    path=document_path(query.collection, doc_id),
                    data=copy.deepcopy(data),
                )
                for doc_id, data in matched
            ]

    def read(self, path: str) -> Optional[DocumentSnapshot]:
        collection, doc_id = split_path(path)
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            if data is None:
                return None
            return DocumentSnapshot(id=doc_id, path=document_path(collection, doc_id), data=copy.deepcopy(data))

    def apply(self, writes: Sequence[Write]) -> datetime:
        with self._lock:
            self._check_preconditions(writes)
            commit_at = self._next_commit_time()
            touched = set()
            for write in writes:
                collection, doc_id = split_path(write.path)
                docs = self._collections.setdefault(collection, {})
                data = self._resolve(write.data, commit_at)
                if write.kind == "update":
                    docs[doc_id].update(data)
                else:
                    docs[doc_id] = data
                touched.add(collection)
            for listener in list(self._listeners.values()):
                if listener.query.collection in touched:
                    self._dispatch(listener)
            return commit_at

    def _check_preconditions(self, writes: Sequence[Write]) -> None:
        present: Dict[str, bool] = {}
        for write in writes:
            collection, doc_id = split_path(write.path)
            exists = present.get(write.path, doc_id in self._collections.get(collection, {}))
            if write.kind == "create" and exists:
                raise DocumentExistsError(f"Document already exists: {write.path}")
            if write.kind == "update" and not exists:
                raise DocumentNotFoundError(f"Document not found: {write.path}")
            if write.kind not in {"create", "set", "update"}:
                raise ValueError(f"Unsupported write kind: {write.kind}")
            present[write.path] = True

    def _next_commit_time(self) -> datetime:
        now = self._clock()
        if self._last_commit_at is not None and now < self._last_commit_at:
            now = self._last_commit_at
        self._last_commit_at = now
        return now

    def _resolve(self, data: Dict[str, Any], commit_at: datetime) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                resolved[key] = commit_at
            elif isinstance(value, dict):
                resolved[key] = self._resolve(value, commit_at)
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _dispatch(self, listener: _Listener) -> None:
        snapshots = self.run_query(listener.query)
        try:
            listener.callback(snapshots)
        except Exception:
            logger.exception("Snapshot listener failed for collection %s", listener.query.collection)

    def _remove_listener(self, listener_id: int) -> None:
        with self._lock:
            self._listeners.pop(listener_id, None)
