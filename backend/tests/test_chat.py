import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from bairro.services.chat import ChatSessionManager, conversation_id_for
from bairro.services.document_store import DocumentStoreError, InMemoryDocumentStore, document_path
from bairro.services.errors import ConversationCreateFailed, NotFoundError, PermissionDeniedError, ValidationError


class BlindLookupStore(InMemoryDocumentStore):
    """Store whose queries miss documents, as when another device wins the create race."""

    async def query(self, query):
        return []


class ReadOnlyStore(InMemoryDocumentStore):
    async def commit(self, writes):
        raise DocumentStoreError("permission denied")


def test_conversation_id_ignores_participant_order():
    assert conversation_id_for("a", "b") == conversation_id_for("b", "a")
    assert conversation_id_for("a", "b") != conversation_id_for("a", "c")
    assert conversation_id_for("a", "b").startswith("chat_")


def test_create_or_get_is_idempotent_over_unordered_pair():
    store = InMemoryDocumentStore()
    chats = ChatSessionManager(store)

    first = asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana"))
    second = asyncio.run(chats.create_or_get_conversation("prov_ana", "cli_maria", "Ana", "Maria"))

    assert first == second == conversation_id_for("cli_maria", "prov_ana")
    assert len(store.run_query(chats.conversations_query("cli_maria"))) == 1


def test_new_conversation_initial_state():
    store = InMemoryDocumentStore()
    chats = ChatSessionManager(store)
    conversation_id = asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana"))

    conversation = asyncio.run(chats.get_conversation(conversation_id))
    assert conversation.participant_ids == ["cli_maria", "prov_ana"]
    assert conversation.participant_names == {"cli_maria": "Maria", "prov_ana": "Ana"}
    assert conversation.last_message_text == ""
    assert conversation.created_at is not None
    assert conversation.last_message_at == conversation.created_at


def test_existing_conversation_with_random_id_is_reused():
    store = InMemoryDocumentStore()
    store.put(
        document_path("chats", "legacy123"),
        {"participants": ["prov_ana", "cli_maria"], "participantNames": {}, "lastMessage": "oi"},
    )
    chats = ChatSessionManager(store)
    assert asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana")) == "legacy123"


def test_losing_create_race_returns_same_id():
    store = BlindLookupStore()
    derived = conversation_id_for("cli_maria", "prov_ana")
    store.put(document_path("chats", derived), {"participants": ["prov_ana", "cli_maria"]})

    chats = ChatSessionManager(store)
    assert asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana")) == derived


@pytest.mark.parametrize("user_a,user_b", [("", "prov_ana"), ("cli_maria", "  "), ("prov_ana", "prov_ana")])
def test_invalid_participants_are_rejected(user_a, user_b):
    chats = ChatSessionManager(InMemoryDocumentStore())
    with pytest.raises(ValidationError):
        asyncio.run(chats.create_or_get_conversation(user_a, user_b, "A", "B"))


def test_store_failure_raises_conversation_create_failed():
    chats = ChatSessionManager(ReadOnlyStore())
    with pytest.raises(ConversationCreateFailed) as excinfo:
        asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana"))
    assert excinfo.value.retryable


def test_require_participant():
    store = InMemoryDocumentStore()
    chats = ChatSessionManager(store)
    conversation_id = asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana"))

    assert asyncio.run(chats.require_participant(conversation_id, "prov_ana")).id == conversation_id
    with pytest.raises(PermissionDeniedError):
        asyncio.run(chats.require_participant(conversation_id, "prov_bruno"))
    with pytest.raises(NotFoundError):
        asyncio.run(chats.require_participant("chat_missing", "prov_ana"))


def test_list_conversations_only_returns_own():
    store = InMemoryDocumentStore()
    chats = ChatSessionManager(store)
    mine = asyncio.run(chats.create_or_get_conversation("cli_maria", "prov_ana", "Maria", "Ana"))
    asyncio.run(chats.create_or_get_conversation("cli_joao", "prov_bruno", "Joao", "Bruno"))

    conversations = asyncio.run(chats.list_conversations("cli_maria"))
    assert [conversation.id for conversation in conversations] == [mine]
