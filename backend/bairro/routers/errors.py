from fastapi import HTTPException

from bairro.services.errors import MarketplaceError, NotFoundError, PermissionDeniedError, ValidationError


def raise_marketplace_http_error(exc: MarketplaceError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if exc.retryable:
        raise HTTPException(status_code=503, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))
