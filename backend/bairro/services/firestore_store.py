import asyncio
import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence

from google.api_core import exceptions as google_exceptions

from bairro.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStoreError,
    ListenerHandle,
    SnapshotCallback,
    StoreQuery,
    Write,
)

logger = logging.getLogger(__name__)


class FirestoreDocumentStore:
    """DocumentStore backed by Cloud Firestore through firebase-admin.

    The admin SDK is blocking, so reads and commits run in worker threads.
    Snapshot listeners are invoked on the SDK's watch thread.
    """

    def __init__(self, credentials_path: str = "", project_id: Optional[str] = None) -> None:
        self.credentials_path = credentials_path
        self.project_id = project_id
        self._lock = Lock()
        self._client = None
        self._firestore = None

    def _ensure_client(self):
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is not None:
                return self._client
            import firebase_admin
            from firebase_admin import credentials, firestore

            try:
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    if self.credentials_path:
                        cred = credentials.Certificate(self.credentials_path)
                    else:
                        cred = credentials.ApplicationDefault()
                    options = {"projectId": self.project_id} if self.project_id else None
                    firebase_admin.initialize_app(cred, options)
                self._client = firestore.client()
                self._firestore = firestore
                logger.info("Firestore document store initialized")
            except Exception as exc:
                logger.exception("Firestore document store init failed")
                raise DocumentStoreError("Firestore is not available") from exc
        return self._client

    def _build_query(self, query: StoreQuery):
        from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter

        client = self._ensure_client()
        ref = client.collection(query.collection)
        for item in query.filters:
            ref = ref.where(filter=FirestoreFieldFilter(item.field, item.op, item.value))
        if query.order_by:
            direction = self._firestore.Query.DESCENDING if query.descending else self._firestore.Query.ASCENDING
            ref = ref.order_by(query.order_by, direction=direction)
        if query.limit is not None:
            ref = ref.limit(query.limit)
        return ref

    def _snapshot(self, doc) -> DocumentSnapshot:
        return DocumentSnapshot(id=doc.id, path=doc.reference.path, data=doc.to_dict() or {})

    def _to_firestore(self, data: Dict[str, Any]) -> Dict[str, Any]:
        converted: Dict[str, Any] = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                converted[key] = self._firestore.SERVER_TIMESTAMP
            elif isinstance(value, dict):
                converted[key] = self._to_firestore(value)
            else:
                converted[key] = value
        return converted

    def _query_sync(self, query: StoreQuery) -> List[DocumentSnapshot]:
        return [self._snapshot(doc) for doc in self._build_query(query).stream()]

    def _get_sync(self, path: str) -> Optional[DocumentSnapshot]:
        doc = self._ensure_client().document(path).get()
        if not doc.exists:
            return None
        return self._snapshot(doc)

    def _commit_sync(self, writes: Sequence[Write]) -> datetime:
        client = self._ensure_client()
        batch = client.batch()
        for write in writes:
            ref = client.document(write.path)
            data = self._to_firestore(write.data)
            if write.kind == "create":
                batch.create(ref, data)
            elif write.kind == "set":
                batch.set(ref, data)
            elif write.kind == "update":
                batch.update(ref, data)
            else:
                raise ValueError(f"Unsupported write kind: {write.kind}")
        batch.commit()
        commit_time = getattr(batch, "commit_time", None)
        if commit_time is None:
            return datetime.now(timezone.utc)
        if hasattr(commit_time, "ToDatetime"):
            return commit_time.ToDatetime(tzinfo=timezone.utc)
        return commit_time

    async def query(self, query: StoreQuery) -> List[DocumentSnapshot]:
        try:
            return await asyncio.to_thread(self._query_sync, query)
        except google_exceptions.GoogleAPIError as exc:
            raise DocumentStoreError(f"Query on {query.collection} failed: {exc}") from exc

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        try:
            return await asyncio.to_thread(self._get_sync, path)
        except google_exceptions.GoogleAPIError as exc:
            raise DocumentStoreError(f"Read of {path} failed: {exc}") from exc

    def new_id(self, collection: str) -> str:
        return self._ensure_client().collection(collection).document().id

    async def commit(self, writes: Sequence[Write]) -> datetime:
        try:
            return await asyncio.to_thread(self._commit_sync, list(writes))
        except google_exceptions.AlreadyExists as exc:
            raise DocumentExistsError(str(exc)) from exc
        except google_exceptions.NotFound as exc:
            raise DocumentNotFoundError(str(exc)) from exc
        except google_exceptions.GoogleAPIError as exc:
            raise DocumentStoreError(f"Commit failed: {exc}") from exc

    def listen(self, query: StoreQuery, callback: SnapshotCallback) -> ListenerHandle:
        def on_snapshot(docs, changes, read_time) -> None:
            callback([self._snapshot(doc) for doc in docs])

        try:
            return self._build_query(query).on_snapshot(on_snapshot)
        except google_exceptions.GoogleAPIError as exc:
            raise DocumentStoreError(f"Listen on {query.collection} failed: {exc}") from exc
