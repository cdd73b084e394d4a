import logging
from threading import Lock
from typing import List, Optional, Set

from bairro.config import CONVERSATIONS_COLLECTION, MESSAGE_MAX_LENGTH, MESSAGES_SUBCOLLECTION
from bairro.models import Message
from bairro.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    StoreQuery,
    Write,
    document_path,
)
from bairro.services.errors import MessageSendFailed, StoreUnavailable, ValidationError
from bairro.services.subscriptions import Subscription

logger = logging.getLogger(__name__)


def message_from_document(conversation_id: str, snapshot: DocumentSnapshot) -> Optional[Message]:
    data = snapshot.data
    sent_at = data.get("timestamp")
    if sent_at is None:
        return None
    return Message(
        id=snapshot.id,
        conversation_id=conversation_id,
        sender_id=data.get("senderId") or "",
        sender_name=data.get("senderName") or "",
        text=data.get("text") or "",
        sent_at=sent_at,
    )


class MessageStream:
    def __init__(
        self,
        store: DocumentStore,
        collection: str = CONVERSATIONS_COLLECTION,
        subcollection: str = MESSAGES_SUBCOLLECTION,
        max_length: int = MESSAGE_MAX_LENGTH,
    ) -> None:
        self.store = store
        self.collection = collection
        self.subcollection = subcollection
        self.max_length = max_length

    def messages_collection(self, conversation_id: str) -> str:
        return f"{self.collection}/{conversation_id}/{self.subcollection}"

    def _ordered_query(self, conversation_id: str) -> StoreQuery:
        return StoreQuery(self.messages_collection(conversation_id)).ordered_by("timestamp")

    def validate_text(self, text: str) -> str:
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message text cannot be empty")
        if len(body) > self.max_length:
            raise ValidationError(f"Message text is limited to {self.max_length} characters")
        return body

    async def send_message(self, conversation_id: str, sender_id: str, sender_name: str, text: str) -> Message:
        """Append a message and refresh the conversation's last-message cache.

        Both writes go in one batch, so list views never show a last message
        that is missing from the thread.
        """
        body = self.validate_text(text)
        if not sender_id:
            raise ValidationError("sender_id is required")

        collection = self.messages_collection(conversation_id)
        try:
            message_id = self.store.new_id(collection)
            sent_at = await self.store.commit(
                [
                    Write(
                        kind="create",
                        path=document_path(collection, message_id),
                        data={
                            "senderId": sender_id,
                            "senderName": sender_name,
                            "text": body,
                            "timestamp": SERVER_TIMESTAMP,
                        },
                    ),
                    Write(
                        kind="update",
                        path=document_path(self.collection, conversation_id),
                        data={
                            "lastMessage": body,
                            "lastMessageTime": SERVER_TIMESTAMP,
                            "lastSenderId": sender_id,
                        },
                    ),
                ]
            )
        except DocumentStoreError as exc:
            logger.exception("Message send failed for conversation %s", conversation_id)
            raise MessageSendFailed("Message not sent. Tap send to retry.") from exc

        return Message(
            id=message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_name=sender_name,
            text=body,
            sent_at=sent_at,
        )

    async def history(self, conversation_id: str) -> List[Message]:
        try:
            snapshots = await self.store.query(self._ordered_query(conversation_id))
        except DocumentStoreError as exc:
            raise StoreUnavailable("Could not load messages right now.") from exc
        messages = [message_from_document(conversation_id, snapshot) for snapshot in snapshots]
        return [message for message in messages if message is not None]

    def subscribe(self, conversation_id: str) -> Subscription[Message]:
        """Replay the conversation in order, then follow new messages.

        Must be called from a running event loop; the caller owns the returned
        subscription and has to cancel it.
        """
        subscription: Subscription[Message] = Subscription()
        delivered: Set[str] = set()
        lock = Lock()

        def on_snapshot(snapshots: List[DocumentSnapshot]) -> None:
            with lock:
                for snapshot in snapshots:
                    if snapshot.id in delivered:
                        continue
                    message = message_from_document(conversation_id, snapshot)
                    if message is None:
                        continue
                    delivered.add(snapshot.id)
                    subscription.publish(message)

        try:
            handle = self.store.listen(self._ordered_query(conversation_id), on_snapshot)
        except DocumentStoreError as exc:
            subscription.cancel()
            raise StoreUnavailable("Could not open the conversation right now.") from exc
        subscription.bind(handle.unsubscribe)
        return subscription
