from fastapi import APIRouter, Query

from bairro.models import Review, ReviewCreateRequest
from bairro.routers.errors import raise_marketplace_http_error
from bairro.services.errors import MarketplaceError
from bairro.services.sessions import session_registry

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("", response_model=Review)
async def submit_review(payload: ReviewCreateRequest):
    try:
        return await session_registry.reviews.submit_review(
            provider_id=payload.provider_id,
            client_id=payload.client_id,
            client_name=payload.client_name,
            rating=payload.rating,
            comment=payload.comment,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("", response_model=list[Review])
async def list_reviews(provider_id: str = Query(...), limit: int = Query(default=20, ge=1, le=100)):
    try:
        return await session_registry.reviews.list_reviews(provider_id, limit=limit)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
