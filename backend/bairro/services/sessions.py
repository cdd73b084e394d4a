import logging
from threading import Lock
from typing import Dict, List, Literal, Optional

import pydantic

from bairro.config import (
    DISCOVERY_RESULT_CAP,
    DOCUMENT_STORE_BACKEND,
    FIREBASE_CREDENTIALS_PATH,
    FIREBASE_PROJECT_ID,
    PREFERENCES_DB_PATH,
    SEED_DEMO_DATA,
    USERS_COLLECTION,
)
from bairro.models import DiscoveryQuery, DiscoveryResult
from bairro.services.chat import ChatSessionManager
from bairro.services.demo_data import seed_demo_data
from bairro.services.discovery import DiscoveryEngine
from bairro.services.document_store import DocumentStore, DocumentStoreError, InMemoryDocumentStore, document_path
from bairro.services.errors import DiscoveryUnavailable, StoreUnavailable, ValidationError
from bairro.services.firestore_store import FirestoreDocumentStore
from bairro.services.location import LocationService
from bairro.services.messages import MessageStream
from bairro.services.notifications import NotificationAggregator
from bairro.services.preferences import PreferenceStore
from bairro.services.profiles import profile_from_document
from bairro.services.reviews import ReviewBook
from bairro.services.subscriptions import Subscription

logger = logging.getLogger(__name__)


class MarketplaceSession:
    """State owned by one signed-in user between login and logout.

    Holds the search radius, the last ranked provider list that loaded
    successfully, the notification aggregator and any open message
    subscriptions. ``close`` releases all live listeners.
    """

    def __init__(
        self,
        user_id: str,
        store: DocumentStore,
        preferences: PreferenceStore,
        role: Literal["provider", "client"] = "client",
        display_name: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.preferences = preferences
        self.role = role
        self.display_name = display_name
        self.search_radius_km = preferences.default_radius_km
        self.discovery = DiscoveryEngine(store)
        self.notifications = NotificationAggregator(store, user_id, is_provider=role == "provider")
        self.last_result: Optional[DiscoveryResult] = None
        self._lock = Lock()
        self._subscriptions: List[Subscription] = []
        self._closed = False

    @classmethod
    async def open(cls, user_id: str, store: DocumentStore, preferences: PreferenceStore) -> "MarketplaceSession":
        try:
            snapshot = await store.get(document_path(USERS_COLLECTION, user_id))
        except DocumentStoreError as exc:
            raise StoreUnavailable("Could not load your profile right now.") from exc
        profile = profile_from_document(snapshot) if snapshot else None
        session = cls(
            user_id=user_id,
            store=store,
            preferences=preferences,
            role=profile.role if profile else "client",
            display_name=profile.display_name if profile else None,
        )
        session.search_radius_km = preferences.load_search_radius(user_id)
        session.notifications.start()
        logger.info("Opened session for %s (%s)", user_id, session.role)
        return session

    @property
    def closed(self) -> bool:
        return self._closed

    def set_search_radius(self, radius_km: int) -> int:
        self.search_radius_km = self.preferences.save_search_radius(self.user_id, radius_km)
        return self.search_radius_km

    async def refresh_providers(
        self,
        location: LocationService,
        service_filter: Optional[str] = None,
        neighborhood_filter: Optional[str] = None,
        free_text: Optional[str] = None,
        result_cap: int = DISCOVERY_RESULT_CAP,
    ) -> DiscoveryResult:
        origin, is_fallback = await location.resolve_origin()
        try:
            query = DiscoveryQuery(
                origin=None if is_fallback else origin,
                radius_km=self.search_radius_km,
                service_filter=service_filter or None,
                neighborhood_filter=neighborhood_filter or None,
                free_text=free_text or None,
                result_cap=result_cap,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid discovery query: {exc.errors()[0]['msg']}") from exc

        try:
            providers = await self.discovery.list_candidates(query)
        except DiscoveryUnavailable as exc:
            logger.warning("Discovery refresh failed for %s, serving last list: %s", self.user_id, exc)
            previous = self.last_result
            return DiscoveryResult(
                providers=previous.providers if previous else [],
                origin=origin,
                origin_is_fallback=is_fallback,
                radius_km=self.search_radius_km,
                stale=True,
                notice=str(exc),
            )

        result = DiscoveryResult(
            providers=providers,
            origin=origin,
            origin_is_fallback=is_fallback,
            radius_km=self.search_radius_km,
        )
        self.last_result = result
        return result

    def track(self, subscription: Subscription) -> None:
        with self._lock:
            if not self._closed:
                self._subscriptions = [item for item in self._subscriptions if not item.cancelled]
                self._subscriptions.append(subscription)
                return
        subscription.cancel()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
        self.notifications.stop()
        for subscription in subscriptions:
            subscription.cancel()
        logger.info("Closed session for %s", self.user_id)


class SessionRegistry:
    def __init__(self, store: DocumentStore, preferences: PreferenceStore) -> None:
        self.store = store
        self.preferences = preferences
        self.discovery = DiscoveryEngine(store)
        self.chats = ChatSessionManager(store)
        self.messages = MessageStream(store)
        self.reviews = ReviewBook(store)
        self._lock = Lock()
        self._sessions: Dict[str, MarketplaceSession] = {}

    def get(self, user_id: str) -> Optional[MarketplaceSession]:
        with self._lock:
            return self._sessions.get(user_id)

    async def get_or_open(self, user_id: str) -> MarketplaceSession:
        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationError("user_id is required")
        existing = self.get(user_id)
        if existing is not None:
            return existing
        session = await MarketplaceSession.open(user_id, self.store, self.preferences)
        with self._lock:
            current = self._sessions.get(user_id)
            if current is None:
                self._sessions[user_id] = session
                return session
        # Another request opened it while we were loading the profile.
        session.close()
        return current

    def close(self, user_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()


def build_document_store() -> DocumentStore:
    if DOCUMENT_STORE_BACKEND == "firestore":
        return FirestoreDocumentStore(credentials_path=FIREBASE_CREDENTIALS_PATH, project_id=FIREBASE_PROJECT_ID)
    if DOCUMENT_STORE_BACKEND != "memory":
        logger.warning("Unknown DOCUMENT_STORE_BACKEND %r, using in-memory store", DOCUMENT_STORE_BACKEND)
    store = InMemoryDocumentStore()
    if SEED_DEMO_DATA:
        seed_demo_data(store)
    return store


document_store = build_document_store()
preference_store = PreferenceStore(db_path=PREFERENCES_DB_PATH)
session_registry = SessionRegistry(store=document_store, preferences=preference_store)
