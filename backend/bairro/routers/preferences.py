from fastapi import APIRouter, Query

from bairro.models import SearchRadiusResponse, SearchRadiusUpdateRequest
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.sessions import preference_store, session_registry

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get("/search-radius", response_model=SearchRadiusResponse)
def get_search_radius(user_id: str = Query(...)):
    session = session_registry.get(user_id)
    radius_km = session.search_radius_km if session else preference_store.load_search_radius(user_id)
    return SearchRadiusResponse(user_id=user_id, radius_km=radius_km)


@router.put("/search-radius", response_model=SearchRadiusResponse)
def update_search_radius(payload: SearchRadiusUpdateRequest):
    session = session_registry.get(payload.user_id)
    try:
        if session is not None:
            radius_km = session.set_search_radius(payload.radius_km)
        else:
            radius_km = preference_store.save_search_radius(payload.user_id, payload.radius_km)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return SearchRadiusResponse(user_id=payload.user_id, radius_km=radius_km)
