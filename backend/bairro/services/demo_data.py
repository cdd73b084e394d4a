import logging
from typing import Any, Dict

from bairro.config import USERS_COLLECTION
from bairro.services.document_store import InMemoryDocumentStore, document_path

logger = logging.getLogger(__name__)


def _provider(
    name: str,
    service: str,
    neighborhood: str,
    latitude: Any,
    longitude: Any,
    rating: float,
    review_count: int,
    status: str = "disponivel",
    complete: bool = True,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "displayName": name,
        "userType": "prestador",
        "serviceType": service,
        "neighborhood": neighborhood,
        "isProfileComplete": complete,
        "status": status,
        "rating": rating,
        "reviewCount": review_count,
        "photoURL": None,
    }
    if latitude is not None and longitude is not None:
        data["latitude"] = latitude
        data["longitude"] = longitude
    return data


DEMO_USERS: Dict[str, Dict[str, Any]] = {
    "prov_carlos": _provider("Carlos Reparos", "Encanador", "Estácio", -22.9035, -43.2096, 4.8, 12),
    "prov_ana": _provider("Ana Luz", "Eletricista", "Lapa", -22.9133, -43.1800, 4.6, 8),
    "prov_bruno": _provider("Bruno Cores", "Pintor", "Botafogo", -22.9519, -43.1833, 4.2, 5),
    "prov_julia": _provider("Júlia Limpeza", "Diarista", "Copacabana", -22.9711, -43.1822, 4.9, 20, status="ocupado"),
    "prov_marcos": _provider("Marcos Elétrica", "Eletricista", "Barra da Tijuca", -23.0004, -43.3659, 4.4, 3),
    "prov_rita": _provider("Rita Hidráulica", "Encanador", "Tijuca", None, None, 4.7, 9),
    "prov_pedro": _provider("Pedro Montagens", "Montador de Móveis", "Centro", -22.9068, -43.1729, 0.0, 0, complete=False),
    "cli_maria": {
        "displayName": "Maria Souza",
        "userType": "cliente",
        "neighborhood": "Centro",
        "isProfileComplete": True,
    },
}


def seed_demo_data(store: InMemoryDocumentStore) -> None:
    if store.read(document_path(USERS_COLLECTION, "prov_carlos")) is not None:
        return
    for user_id, data in DEMO_USERS.items():
        store.put(document_path(USERS_COLLECTION, user_id), {"uid": user_id, **data})
    logger.info("Seeded %s demo users", len(DEMO_USERS))
