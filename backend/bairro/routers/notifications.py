import json

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from bairro.models import NotificationEvent, NotificationFeed
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.notifications import build_feed
from bairro.services.sessions import MarketplaceSession, session_registry

router = APIRouter(prefix="/notifications", tags=["notifications"])


async def _session_for(user_id: str) -> MarketplaceSession:
    try:
        return await session_registry.get_or_open(user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("", response_model=NotificationFeed)
async def list_notifications(user_id: str = Query(...), unread_only: bool = Query(default=False)):
    session = await _session_for(user_id)
    feed = session.notifications.feed()
    if unread_only:
        feed.events = [event for event in feed.events if not event.read]
    return feed


@router.post("/read-all", response_model=NotificationFeed)
async def mark_all_notifications_read(user_id: str = Query(...)):
    session = await _session_for(user_id)
    session.notifications.mark_all_read()
    return session.notifications.feed()


@router.post("/{notification_id}/read", response_model=NotificationEvent)
async def mark_notification_read(notification_id: str, user_id: str = Query(...)):
    session = await _session_for(user_id)
    updated = session.notifications.mark_read(notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated


@router.get("/stream")
async def stream_notifications(user_id: str = Query(...)):
    session = await _session_for(user_id)
    subscription = session.notifications.feed_updates()

    async def event_generator():
        try:
            async for events in subscription:
                feed = build_feed(events)
                yield f"data: {json.dumps(feed.model_dump(mode='json'))}\n\n"
        finally:
            subscription.cancel()

    return StreamingResponse(event_generator(), media_type="text/event-stream")
