from typing import Optional

from fastapi import APIRouter, Query

from bairro.config import DISCOVERY_RESULT_CAP
from bairro.models import DiscoveryResult, ProviderRecord
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.location import FixedLocationProvider, LocationService
from bairro.services.sessions import session_registry

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("", response_model=DiscoveryResult)
async def list_providers(
    user_id: str = Query(...),
    service: Optional[str] = Query(default=None),
    neighborhood: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None),
    user_lat: Optional[float] = Query(default=None, ge=-90, le=90),
    user_lng: Optional[float] = Query(default=None, ge=-180, le=180),
    limit: int = Query(default=DISCOVERY_RESULT_CAP, ge=1),
):
    # Omitting user_lat/user_lng is how a client reports denied location permission.
    location = LocationService(FixedLocationProvider.from_lat_lng(user_lat, user_lng))
    try:
        session = await session_registry.get_or_open(user_id)
        return await session.refresh_providers(
            location,
            service_filter=service,
            neighborhood_filter=neighborhood,
            free_text=q,
            result_cap=limit,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{provider_id}", response_model=ProviderRecord)
async def get_provider(provider_id: str):
    try:
        return await session_registry.discovery.get_provider(provider_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
