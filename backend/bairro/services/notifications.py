"""Session-scoped notification feed.

The aggregator watches two live sources: the conversations the user takes
part in and, for providers, the reviews they receive. Each source update
replaces every event of that kind, then the union is re-sorted newest first.
Events are keyed by ``(kind, source_id)`` so a source never shows up twice.

Read state survives a refresh of its kind as long as the source has no newer
activity: marking a conversation read and then receiving the same snapshot
again keeps it read, while a new message in that conversation makes it unread.

A conversation only notifies while its last message came from the other
participant. Once the user replies, the pending message event for that
conversation is dropped, since there is nothing left for them to answer.
"""

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

from bairro.config import (
    CONVERSATIONS_COLLECTION,
    NOTIFICATION_CONVERSATION_LIMIT,
    NOTIFICATION_REVIEW_LIMIT,
    REVIEWS_COLLECTION,
)
from bairro.models import NotificationEvent, NotificationFeed, NotificationKind, NotificationView
from bairro.services.chat import conversation_from_document
from bairro.services.document_store import (
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    ListenerHandle,
    StoreQuery,
)
from bairro.services.errors import StoreUnavailable
from bairro.services.subscriptions import Subscription

logger = logging.getLogger(__name__)

EventKey = Tuple[str, str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def notification_id(kind: str, source_id: str) -> str:
    return f"{kind}-{source_id}"


def format_relative_time(now: datetime, occurred_at: datetime) -> str:
    minutes = int((now - occurred_at).total_seconds() // 60)
    if minutes < 1:
        return "Agora"
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def build_feed(events: Iterable[NotificationEvent], now: Optional[datetime] = None) -> NotificationFeed:
    now = now or _utc_now()
    views = [
        NotificationView(**event.model_dump(), relative_time=format_relative_time(now, event.occurred_at))
        for event in events
    ]
    return NotificationFeed(events=views, unread_count=sum(1 for view in views if not view.read))


class NotificationAggregator:
    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        is_provider: bool = False,
        conversations_collection: str = CONVERSATIONS_COLLECTION,
        reviews_collection: str = REVIEWS_COLLECTION,
        conversation_limit: int = NOTIFICATION_CONVERSATION_LIMIT,
        review_limit: int = NOTIFICATION_REVIEW_LIMIT,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.is_provider = is_provider
        self.conversations_collection = conversations_collection
        self.reviews_collection = reviews_collection
        self.conversation_limit = conversation_limit
        self.review_limit = review_limit
        self._lock = Lock()
        self._events: Dict[EventKey, NotificationEvent] = {}
        self._feed: List[NotificationEvent] = []
        self._unread_count = 0
        self._read_marks: Dict[EventKey, datetime] = {}
        self._handles: List[ListenerHandle] = []
        self._watchers: List[Subscription] = []
        self._started = False
        self._stopped = False

    @property
    def unread_count(self) -> int:
        with self._lock:
            return self._unread_count

    @property
    def stopped(self) -> bool:
        return self._stopped

    def events(self) -> List[NotificationEvent]:
        with self._lock:
            return list(self._feed)

    def feed(self, now: Optional[datetime] = None) -> NotificationFeed:
        return build_feed(self.events(), now=now)

    def start(self) -> None:
        with self._lock:
            if self._started or self._stopped:
                return
            self._started = True

        conversations = (
            StoreQuery(self.conversations_collection)
            .where("participants", "array_contains", self.user_id)
            .ordered_by("lastMessageTime", descending=True)
            .limited(self.conversation_limit)
        )
        reviews = (
            StoreQuery(self.reviews_collection)
            .where("providerId", "==", self.user_id)
            .ordered_by("createdAt", descending=True)
            .limited(self.review_limit)
        )

        # Listeners may fire synchronously, so the lock is not held here.
        handles: List[ListenerHandle] = []
        try:
            handles.append(self.store.listen(conversations, self._on_conversations))
            if self.is_provider:
                handles.append(self.store.listen(reviews, self._on_reviews))
        except DocumentStoreError as exc:
            for handle in handles:
                handle.unsubscribe()
            raise StoreUnavailable("Could not subscribe to notifications.") from exc

        with self._lock:
            if not self._stopped:
                self._handles.extend(handles)
                return
        for handle in handles:
            handle.unsubscribe()

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            handles, self._handles = self._handles, []
            watchers, self._watchers = self._watchers, []
        for handle in handles:
            handle.unsubscribe()
        for watcher in watchers:
            watcher.cancel()

    def _on_conversations(self, snapshots: List[DocumentSnapshot]) -> None:
        events: List[NotificationEvent] = []
        for snapshot in snapshots:
            conversation = conversation_from_document(snapshot)
            if not conversation.last_message_text or conversation.last_message_at is None:
                continue
            if conversation.last_sender_id == self.user_id:
                continue
            other = conversation.other_participant(self.user_id) or ""
            sender_name = conversation.participant_names.get(other) or "Usuário"
            events.append(
                NotificationEvent(
                    id=notification_id("message", conversation.id),
                    kind="message",
                    source_id=conversation.id,
                    title=f"Nova mensagem de {sender_name}",
                    body=conversation.last_message_text,
                    occurred_at=conversation.last_message_at,
                )
            )
        self.ingest("message", events)

    def _on_reviews(self, snapshots: List[DocumentSnapshot]) -> None:
        events: List[NotificationEvent] = []
        for snapshot in snapshots:
            created_at = snapshot.get("createdAt")
            if created_at is None:
                continue
            client_name = snapshot.get("clientName") or "Cliente"
            events.append(
                NotificationEvent(
                    id=notification_id("review", snapshot.id),
                    kind="review",
                    source_id=snapshot.id,
                    title=f"Nova avaliação de {client_name}",
                    body=f"{snapshot.get('rating')} estrelas: {snapshot.get('comment') or ''}",
                    occurred_at=created_at,
                )
            )
        self.ingest("review", events)

    def ingest(self, kind: NotificationKind, events: Iterable[NotificationEvent]) -> None:
        """Replace every event of ``kind`` with ``events``."""
        incoming = list(events)
        if any(event.kind != kind for event in incoming):
            raise ValueError(f"All events must be of kind {kind!r}")

        with self._lock:
            if self._stopped:
                return
            fresh: Dict[EventKey, NotificationEvent] = {}
            for event in incoming:
                key = (kind, event.source_id)
                current = fresh.get(key)
                if current is not None and current.occurred_at >= event.occurred_at:
                    continue
                marked_at = self._read_marks.get(key)
                read = event.read or (marked_at is not None and marked_at >= event.occurred_at)
                fresh[key] = event.model_copy(update={"id": notification_id(kind, event.source_id), "read": read})
            self._events = {key: value for key, value in self._events.items() if key[0] != kind}
            self._events.update(fresh)
            feed, watchers = self._rebuild_locked()
        self._notify(feed, watchers)

    def mark_read(self, event_id: str) -> Optional[NotificationEvent]:
        with self._lock:
            for key, event in self._events.items():
                if event.id != event_id:
                    continue
                updated = event.model_copy(update={"read": True})
                self._events[key] = updated
                self._read_marks[key] = event.occurred_at
                feed, watchers = self._rebuild_locked()
                break
            else:
                return None
        self._notify(feed, watchers)
        return updated

    def mark_all_read(self) -> None:
        with self._lock:
            for key, event in self._events.items():
                self._events[key] = event.model_copy(update={"read": True})
                self._read_marks[key] = event.occurred_at
            feed, watchers = self._rebuild_locked()
        self._notify(feed, watchers)

    def feed_updates(self) -> Subscription[List[NotificationEvent]]:
        """Subscription that receives the whole feed after every change."""
        subscription: Subscription[List[NotificationEvent]] = Subscription()
        with self._lock:
            if self._stopped:
                subscription.cancel()
                return subscription
            self._watchers.append(subscription)
            current = list(self._feed)
        subscription.bind(lambda: self._remove_watcher(subscription))
        subscription.publish(current)
        return subscription

    def _remove_watcher(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._watchers:
                self._watchers.remove(subscription)

    def _rebuild_locked(self) -> Tuple[List[NotificationEvent], List[Subscription]]:
        self._feed = sorted(self._events.values(), key=lambda event: event.occurred_at, reverse=True)
        self._unread_count = sum(1 for event in self._feed if not event.read)
        return list(self._feed), list(self._watchers)

    def _notify(self, feed: List[NotificationEvent], watchers: List[Subscription]) -> None:
        for watcher in watchers:
            watcher.publish(feed)
