import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from bairro.models import Coordinate, DiscoveryQuery
from bairro.services.demo_data import seed_demo_data
from bairro.services.discovery import DiscoveryEngine
from bairro.services.document_store import DocumentStoreError, InMemoryDocumentStore, document_path
from bairro.services.errors import DiscoveryUnavailable, NotFoundError

CENTRO = Coordinate(latitude=-22.9068, longitude=-43.1729)


class OfflineStore(InMemoryDocumentStore):
    async def query(self, query):
        raise DocumentStoreError("network unreachable")

    async def get(self, path):
        raise DocumentStoreError("network unreachable")


def _engine(store=None):
    if store is None:
        store = InMemoryDocumentStore()
        seed_demo_data(store)
    return DiscoveryEngine(store)


def _ids(providers):
    return [provider.id for provider in providers]


def test_radius_five_includes_nearby_providers_ordered_by_distance():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=5)))
    assert _ids(providers) == ["prov_ana", "prov_carlos"]
    assert providers[1].distance_km == pytest.approx(3.78, abs=0.05)


def test_radius_two_excludes_provider_four_km_away():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=2)))
    assert _ids(providers) == ["prov_ana"]


def test_service_filter_is_case_insensitive_substring():
    providers = asyncio.run(
        _engine().list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=5, service_filter="encanador"))
    )
    assert _ids(providers) == ["prov_carlos"]


def test_neighborhood_filter_is_exact():
    engine = _engine()
    lapa = asyncio.run(engine.list_candidates(DiscoveryQuery(neighborhood_filter="Lapa")))
    assert _ids(lapa) == ["prov_ana"]
    partial = asyncio.run(engine.list_candidates(DiscoveryQuery(neighborhood_filter="lapa")))
    assert partial == []


def test_free_text_matches_name_or_service():
    engine = _engine()
    by_name = asyncio.run(engine.list_candidates(DiscoveryQuery(free_text="luz")))
    assert _ids(by_name) == ["prov_ana"]
    by_service = asyncio.run(engine.list_candidates(DiscoveryQuery(free_text="ELETRIC")))
    assert _ids(by_service) == ["prov_ana", "prov_marcos"]


def test_unknown_origin_keeps_store_order_and_providers_without_coordinates():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery(origin=None)))
    assert _ids(providers) == ["prov_carlos", "prov_ana", "prov_bruno", "prov_julia", "prov_marcos", "prov_rita"]
    assert all(provider.distance_km is None for provider in providers)


def test_known_origin_drops_providers_without_coordinates():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=50)))
    assert "prov_rita" not in _ids(providers)
    distances = [provider.distance_km for provider in providers]
    assert distances == sorted(distances)


def test_incomplete_profiles_and_clients_are_never_listed():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery()))
    assert "prov_pedro" not in _ids(providers)
    assert "cli_maria" not in _ids(providers)


def test_records_missing_required_fields_are_skipped():
    store = InMemoryDocumentStore()
    store.put(
        document_path("users", "no_name"),
        {"userType": "prestador", "isProfileComplete": True, "serviceType": "Pintor", "neighborhood": "Lapa"},
    )
    store.put(
        document_path("users", "ok"),
        {
            "userType": "prestador",
            "isProfileComplete": True,
            "displayName": "Ok",
            "serviceType": "Pintor",
            "neighborhood": "Lapa",
        },
    )
    providers = asyncio.run(_engine(store).list_candidates(DiscoveryQuery()))
    assert _ids(providers) == ["ok"]
    assert providers[0].availability_status == "available"


def test_busy_status_is_mapped():
    provider = asyncio.run(_engine().get_provider("prov_julia"))
    assert provider.availability_status == "busy"


def test_result_cap_truncates_after_sorting():
    providers = asyncio.run(_engine().list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=50, result_cap=2)))
    assert _ids(providers) == ["prov_ana", "prov_carlos"]


def test_equal_distances_keep_fetch_order():
    store = InMemoryDocumentStore()
    for provider_id in ("first", "second", "third"):
        store.put(
            document_path("users", provider_id),
            {
                "userType": "prestador",
                "isProfileComplete": True,
                "displayName": provider_id.title(),
                "serviceType": "Pintor",
                "neighborhood": "Centro",
                "latitude": -22.9068,
                "longitude": -43.1729,
            },
        )
    providers = asyncio.run(_engine(store).list_candidates(DiscoveryQuery(origin=CENTRO, radius_km=1)))
    assert _ids(providers) == ["first", "second", "third"]


def test_store_failure_raises_discovery_unavailable():
    with pytest.raises(DiscoveryUnavailable):
        asyncio.run(_engine(OfflineStore()).list_candidates(DiscoveryQuery()))


def test_get_provider_rejects_clients_and_unknown_ids():
    engine = _engine()
    with pytest.raises(NotFoundError):
        asyncio.run(engine.get_provider("cli_maria"))
    with pytest.raises(NotFoundError):
        asyncio.run(engine.get_provider("nobody"))
