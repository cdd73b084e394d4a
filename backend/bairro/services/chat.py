import hashlib
import logging
from typing import List, Optional

from bairro.config import CONVERSATIONS_COLLECTION
from bairro.models import Conversation
from bairro.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    StoreQuery,
    Write,
    document_path,
)
from bairro.services.errors import (
    ConversationCreateFailed,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)


def conversation_id_for(user_a: str, user_b: str) -> str:
    """Conversation id derived from the unordered participant pair."""
    low, high = sorted((user_a, user_b))
    digest = hashlib.sha256(f"{low}\n{high}".encode("utf-8")).hexdigest()[:24]
    return f"chat_{digest}"


def conversation_from_document(snapshot: DocumentSnapshot) -> Conversation:
    data = snapshot.data
    return Conversation(
        id=snapshot.id,
        participant_ids=list(data.get("participants") or []),
        participant_names=dict(data.get("participantNames") or {}),
        last_message_text=data.get("lastMessage") or "",
        last_message_at=data.get("lastMessageTime"),
        last_sender_id=data.get("lastSenderId"),
        created_at=data.get("createdAt"),
    )


class ChatSessionManager:
    def __init__(self, store: DocumentStore, collection: str = CONVERSATIONS_COLLECTION) -> None:
        self.store = store
        self.collection = collection

    def conversations_query(self, user_id: str) -> StoreQuery:
        return (
            StoreQuery(self.collection)
            .where("participants", "array_contains", user_id)
            .ordered_by("lastMessageTime", descending=True)
        )

    async def _find_existing(self, user_a: str, user_b: str) -> Optional[str]:
        # Older conversations were created with random ids, so look them up
        # before falling back to the derived id.
        query = StoreQuery(self.collection).where("participants", "array_contains", user_a)
        for snapshot in await self.store.query(query):
            if user_b in (snapshot.get("participants") or []):
                return snapshot.id
        return None

    async def create_or_get_conversation(self, user_a: str, user_b: str, name_a: str, name_b: str) -> str:
        user_a = (user_a or "").strip()
        user_b = (user_b or "").strip()
        if not user_a or not user_b:
            raise ValidationError("Both participant ids are required")
        if user_a == user_b:
            raise ValidationError("A conversation needs two different participants")

        try:
            existing_id = await self._find_existing(user_a, user_b)
            if existing_id:
                return existing_id

            conversation_id = conversation_id_for(user_a, user_b)
            data = {
                "participants": [user_a, user_b],
                "participantNames": {user_a: name_a, user_b: name_b},
                "lastMessage": "",
                "lastMessageTime": SERVER_TIMESTAMP,
                "createdAt": SERVER_TIMESTAMP,
            }
            try:
                await self.store.commit(
                    [Write(kind="create", path=document_path(self.collection, conversation_id), data=data)]
                )
                logger.info("Created conversation %s", conversation_id)
            except DocumentExistsError:
                logger.info("Conversation %s was created concurrently; reusing it", conversation_id)
            return conversation_id
        except DocumentStoreError as exc:
            logger.exception("Conversation create failed for %s/%s", user_a, user_b)
            raise ConversationCreateFailed("Could not start the conversation. Please try again.") from exc

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            snapshot = await self.store.get(document_path(self.collection, conversation_id))
        except DocumentStoreError as exc:
            raise StoreUnavailable("Could not load the conversation right now.") from exc
        if snapshot is None:
            return None
        return conversation_from_document(snapshot)

    async def list_conversations(self, user_id: str, limit: Optional[int] = None) -> List[Conversation]:
        query = self.conversations_query(user_id)
        if limit is not None:
            query = query.limited(limit)
        try:
            snapshots = await self.store.query(query)
        except DocumentStoreError as exc:
            raise StoreUnavailable("Could not load conversations right now.") from exc
        return [conversation_from_document(snapshot) for snapshot in snapshots]

    async def require_participant(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if user_id not in conversation.participant_ids:
            raise PermissionDeniedError("User is not a participant in this conversation")
        return conversation
