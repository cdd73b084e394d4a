import logging
from typing import List, Optional

from bairro.config import REVIEW_COMMENT_MAX_LENGTH, REVIEWS_COLLECTION, USERS_COLLECTION
from bairro.models import ProviderRecord, Review
from bairro.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    StoreQuery,
    Write,
    document_path,
)
from bairro.services.errors import NotFoundError, ReviewSubmitFailed, StoreUnavailable, ValidationError
from bairro.services.profiles import profile_from_document

logger = logging.getLogger(__name__)


def review_from_document(snapshot: DocumentSnapshot) -> Review:
    return Review(
        id=snapshot.id,
        provider_id=snapshot.get("providerId") or "",
        client_id=snapshot.get("clientId") or "",
        client_name=snapshot.get("clientName") or "",
        rating=int(snapshot.get("rating") or 1),
        comment=snapshot.get("comment") or "",
        created_at=snapshot.get("createdAt"),
    )


class ReviewBook:
    def __init__(
        self,
        store: DocumentStore,
        reviews_collection: str = REVIEWS_COLLECTION,
        users_collection: str = USERS_COLLECTION,
    ) -> None:
        self.store = store
        self.reviews_collection = reviews_collection
        self.users_collection = users_collection

    def _validate(self, provider_id: str, client_id: str, rating: int, comment: str) -> str:
        if not provider_id or not client_id:
            raise ValidationError("provider_id and client_id are required")
        if provider_id == client_id:
            raise ValidationError("Providers cannot review themselves")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be a whole number from 1 to 5")
        body = (comment or "").strip()
        if not body:
            raise ValidationError("A comment is required")
        if len(body) > REVIEW_COMMENT_MAX_LENGTH:
            raise ValidationError(f"Comment is limited to {REVIEW_COMMENT_MAX_LENGTH} characters")
        return body

    async def submit_review(
        self,
        provider_id: str,
        client_id: str,
        client_name: str,
        rating: int,
        comment: str,
    ) -> Review:
        body = self._validate(provider_id, client_id, rating, comment)
        provider_path = document_path(self.users_collection, provider_id)
        try:
            snapshot = await self.store.get(provider_path)
            provider = profile_from_document(snapshot) if snapshot else None
            if not isinstance(provider, ProviderRecord):
                raise NotFoundError("Provider not found")

            # Read-then-write: concurrent reviews of one provider can drop an
            # average update.
            review_count = provider.review_count + 1
            rating_average = round(
                (provider.rating_average * provider.review_count + rating) / review_count, 2
            )
            review_id = self.store.new_id(self.reviews_collection)
            created_at = await self.store.commit(
                [
                    Write(
                        kind="create",
                        path=document_path(self.reviews_collection, review_id),
                        data={
                            "providerId": provider_id,
                            "clientId": client_id,
                            "clientName": client_name,
                            "rating": rating,
                            "comment": body,
                            "createdAt": SERVER_TIMESTAMP,
                        },
                    ),
                    Write(
                        kind="update",
                        path=provider_path,
                        data={"rating": rating_average, "reviewCount": review_count},
                    ),
                ]
            )
        except DocumentStoreError as exc:
            logger.exception("Review submit failed for provider %s", provider_id)
            raise ReviewSubmitFailed("Review not sent. Please try again.") from exc

        logger.info("Provider %s reviewed (%s stars, avg %.2f)", provider_id, rating, rating_average)
        return Review(
            id=review_id,
            provider_id=provider_id,
            client_id=client_id,
            client_name=client_name,
            rating=rating,
            comment=body,
            created_at=created_at,
        )

    async def list_reviews(self, provider_id: str, limit: Optional[int] = None) -> List[Review]:
        query = (
            StoreQuery(self.reviews_collection)
            .where("providerId", "==", provider_id)
            .ordered_by("createdAt", descending=True)
        )
        if limit is not None:
            query = query.limited(limit)
        try:
            snapshots = await self.store.query(query)
        except DocumentStoreError as exc:
            raise StoreUnavailable("Could not load reviews right now.") from exc
        return [review_from_document(snapshot) for snapshot in snapshots]
