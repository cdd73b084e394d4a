from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from bairro.models import Conversation, ConversationCreateRequest, ConversationCreateResponse, Message, MessageSendRequest
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.sessions import session_registry

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationCreateResponse)
async def create_conversation(payload: ConversationCreateRequest):
    try:
        conversation_id = await session_registry.chats.create_or_get_conversation(
            payload.user_id,
            payload.other_user_id,
            payload.user_name,
            payload.other_user_name,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return ConversationCreateResponse(conversation_id=conversation_id)


@router.get("", response_model=list[Conversation])
async def list_conversations(
    user_id: str = Query(...),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
):
    try:
        return await session_registry.chats.list_conversations(user_id, limit=limit)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(conversation_id: str, user_id: str = Query(...)):
    try:
        return await session_registry.chats.require_participant(conversation_id, user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{conversation_id}/messages", response_model=list[Message])
async def list_messages(conversation_id: str, user_id: str = Query(...)):
    try:
        await session_registry.chats.require_participant(conversation_id, user_id)
        return await session_registry.messages.history(conversation_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/{conversation_id}/messages", response_model=Message)
async def send_message(conversation_id: str, payload: MessageSendRequest):
    try:
        session_registry.messages.validate_text(payload.text)
        await session_registry.chats.require_participant(conversation_id, payload.sender_id)
        return await session_registry.messages.send_message(
            conversation_id,
            sender_id=payload.sender_id,
            sender_name=payload.sender_name,
            text=payload.text,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{conversation_id}/stream")
async def stream_messages(conversation_id: str, user_id: str = Query(...)):
    try:
        await session_registry.chats.require_participant(conversation_id, user_id)
        subscription = session_registry.messages.subscribe(conversation_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)

    session = session_registry.get(user_id)
    if session is not None:
        # Logging out ends the stream.
        session.track(subscription)

    async def event_generator():
        try:
            async for message in subscription:
                yield f"data: {message.model_dump_json()}\n\n"
        finally:
            # Client disconnected or the session closed.
            subscription.cancel()

    return StreamingResponse(event_generator(), media_type="text/event-stream")
