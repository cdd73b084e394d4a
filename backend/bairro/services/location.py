import asyncio
import logging
import math
from typing import Optional, Protocol, Tuple

from bairro.config import DEFAULT_LATITUDE, DEFAULT_LONGITUDE, LOCATION_TIMEOUT_SECONDS
from bairro.models import Coordinate
from bairro.services.errors import LocationUnavailable

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
DEFAULT_COORDINATE = Coordinate(latitude=DEFAULT_LATITUDE, longitude=DEFAULT_LONGITUDE)


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates (haversine)."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, max(0.0, h))))


class LocationProvider(Protocol):
    async def resolve(self) -> Coordinate:
        ...


class FixedLocationProvider:
    """Location reported by the client device; ``None`` means permission was denied."""

    def __init__(self, coordinate: Optional[Coordinate] = None) -> None:
        self.coordinate = coordinate

    @classmethod
    def from_lat_lng(cls, latitude: Optional[float], longitude: Optional[float]) -> "FixedLocationProvider":
        if latitude is None or longitude is None:
            return cls(None)
        return cls(Coordinate(latitude=latitude, longitude=longitude))

    async def resolve(self) -> Coordinate:
        if self.coordinate is None:
            raise LocationUnavailable("Location permission denied")
        return self.coordinate


class LocationService:
    def __init__(
        self,
        provider: LocationProvider,
        timeout_seconds: float = LOCATION_TIMEOUT_SECONDS,
        fallback: Coordinate = DEFAULT_COORDINATE,
    ) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.fallback = fallback

    async def current_coordinate(self) -> Coordinate:
        try:
            return await asyncio.wait_for(self.provider.resolve(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise LocationUnavailable(f"Location lookup timed out after {self.timeout_seconds:g}s") from exc

    async def resolve_origin(self) -> Tuple[Coordinate, bool]:
        """Return ``(coordinate, is_fallback)``.

        A fallback coordinate only centres the map; callers must not radius-filter
        against it.
        """
        try:
            return await self.current_coordinate(), False
        except LocationUnavailable as exc:
            logger.warning("Using default coordinate: %s", exc)
            return self.fallback, True

    @staticmethod
    def distance_km(a: Coordinate, b: Coordinate) -> float:
        return distance_km(a, b)
