from fastapi import APIRouter, HTTPException

from bairro.models import SessionInfo, SessionOpenRequest
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.sessions import session_registry

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionInfo)
async def open_session(payload: SessionOpenRequest):
    try:
        session = await session_registry.get_or_open(payload.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return SessionInfo(
        user_id=session.user_id,
        role=session.role,
        display_name=session.display_name,
        search_radius_km=session.search_radius_km,
        unread_count=session.notifications.unread_count,
    )


@router.delete("/{user_id}", response_model=dict)
def close_session(user_id: str):
    if not session_registry.close(user_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "closed"}
