import logging
from typing import List, Optional

from bairro.config import DISCOVERY_FETCH_LIMIT, USERS_COLLECTION
from bairro.models import DiscoveryQuery, ProviderRecord, RankedProvider
from bairro.services.document_store import DocumentStore, DocumentStoreError, StoreQuery, document_path
from bairro.services.errors import DiscoveryUnavailable, NotFoundError, ValidationError
from bairro.services.location import distance_km
from bairro.services.profiles import profile_from_document

logger = logging.getLogger(__name__)


class DiscoveryEngine:
    def __init__(
        self,
        store: DocumentStore,
        collection: str = USERS_COLLECTION,
        fetch_limit: int = DISCOVERY_FETCH_LIMIT,
    ) -> None:
        self.store = store
        self.collection = collection
        self.fetch_limit = fetch_limit

    def _candidates_query(self) -> StoreQuery:
        return (
            StoreQuery(self.collection)
            .where("userType", "==", "prestador")
            .where("isProfileComplete", "==", True)
            .limited(self.fetch_limit)
        )

    async def _fetch_providers(self) -> List[ProviderRecord]:
        try:
            snapshots = await self.store.query(self._candidates_query())
        except DocumentStoreError as exc:
            logger.warning("Provider query failed: %s", exc)
            raise DiscoveryUnavailable("Could not load providers right now. Pull to refresh.") from exc
        providers: List[ProviderRecord] = []
        for snapshot in snapshots:
            profile = profile_from_document(snapshot)
            if isinstance(profile, ProviderRecord):
                providers.append(profile)
        return providers

    async def list_candidates(self, query: DiscoveryQuery) -> List[RankedProvider]:
        """Fetch, filter and rank providers around ``query.origin``.

        Every call re-fetches from the store. Providers without a known position
        are dropped whenever an origin is given, since they cannot be shown to be
        inside the radius.
        """
        if query.result_cap < 1:
            raise ValidationError("result_cap must be at least 1")
        providers = await self._fetch_providers()

        service = (query.service_filter or "").strip().lower()
        neighborhood = query.neighborhood_filter or ""
        text = (query.free_text or "").strip().lower()

        result: List[RankedProvider] = []
        for provider in providers:
            distance: Optional[float] = None
            if query.origin is not None:
                if provider.coordinate is None:
                    continue
                distance = distance_km(query.origin, provider.coordinate)
                if distance > query.radius_km:
                    continue
            if service and service not in provider.service_type.lower():
                continue
            if neighborhood and provider.neighborhood != neighborhood:
                continue
            if text and text not in provider.display_name.lower() and text not in provider.service_type.lower():
                continue
            result.append(RankedProvider(**provider.model_dump(), distance_km=distance))

        # Stable: equal distances keep fetch order.
        result.sort(key=lambda p: p.distance_km if p.distance_km is not None else 0.0)
        return result[: query.result_cap]

    async def get_provider(self, provider_id: str) -> ProviderRecord:
        try:
            snapshot = await self.store.get(document_path(self.collection, provider_id))
        except DocumentStoreError as exc:
            raise DiscoveryUnavailable("Could not load provider right now.") from exc
        profile = profile_from_document(snapshot) if snapshot else None
        if not isinstance(profile, ProviderRecord):
            raise NotFoundError("Provider not found")
        return profile
