import logging
from typing import Any, Dict, Optional

import pydantic
from pydantic import TypeAdapter

from bairro.models import Coordinate, UserProfile
from bairro.services.document_store import DocumentSnapshot

logger = logging.getLogger(__name__)

USER_TYPE_ROLES = {"prestador": "provider", "cliente": "client"}
STATUS_VALUES = {"disponivel": "available", "ocupado": "busy"}

_profile_adapter: TypeAdapter = TypeAdapter(UserProfile)


def _coordinate_from(data: Dict[str, Any]) -> Optional[Coordinate]:
    latitude = data.get("latitude")
    longitude = data.get("longitude")
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        return None
    try:
        return Coordinate(latitude=float(latitude), longitude=float(longitude))
    except pydantic.ValidationError:
        return None


def profile_from_document(snapshot: DocumentSnapshot) -> Optional[UserProfile]:
    """Validate a user document into its role variant, or ``None`` if unusable."""
    data = snapshot.data
    role = USER_TYPE_ROLES.get(str(data.get("userType") or "").strip().lower())
    if role is None:
        logger.debug("Skipping user %s with unknown userType %r", snapshot.id, data.get("userType"))
        return None

    payload: Dict[str, Any] = {
        "id": snapshot.id,
        "role": role,
        "display_name": data.get("displayName"),
        "neighborhood": data.get("neighborhood"),
        "photo_url": data.get("photoURL"),
    }
    if role == "provider":
        payload.update(
            service_type=data.get("serviceType"),
            coordinate=_coordinate_from(data),
            rating_average=data.get("rating") or 0.0,
            review_count=data.get("reviewCount") or 0,
            availability_status=STATUS_VALUES.get(str(data.get("status") or "disponivel"), "available"),
        )
    try:
        return _profile_adapter.validate_python(payload)
    except pydantic.ValidationError as exc:
        logger.debug("Skipping user %s with invalid profile: %s", snapshot.id, exc.errors())
        return None
