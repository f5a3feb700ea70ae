"""
Location Service

Attaches human readable addresses to coordinates and ranks nearby users by
straight-line distance. Reverse geocoding always yields something printable:
when no address can be found the coordinates themselves are returned.
"""

import logging
import math
from typing import Sequence

from ..schemas import LocationData, NearbyCandidate
from ..shared.validators import format_coordinates
from .places_client import PlacesClient

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points in kilometers.
    Uses the Haversine formula.
    """
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


class LocationService:
    """Coordinates-to-address helpers on top of the Places client"""

    def __init__(self, places_client: PlacesClient):
        self.places_client = places_client

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        address = await self.places_client.reverse_geocode(latitude, longitude)
        if address:
            return address

        logger.info(f"No address for ({latitude}, {longitude}), using coordinates")
        return format_coordinates(latitude, longitude)

    async def with_address(self, location: LocationData) -> LocationData:
        """Return a copy of location carrying its reverse geocoded address"""
        if location.address:
            return location
        address = await self.reverse_geocode(location.latitude, location.longitude)
        return location.model_copy(update={"address": address})

    def calculate_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return haversine_km(lat1, lon1, lat2, lon2)

    def find_nearby_users(
        self,
        origin: LocationData,
        users: Sequence[NearbyCandidate],
        max_distance_km: float = 10.0,
    ) -> list[dict]:
        """
        Straight-line ranking of users around origin.

        Returns:
            [{"id", "location", "distance"}] within max_distance_km, closest first
        """
        nearby = []
        for user in users:
            if user.location is None:
                continue
            distance = self.calculate_distance(
                origin.latitude, origin.longitude, user.location.latitude, user.location.longitude
            )
            if distance <= max_distance_km:
                nearby.append({"id": user.id, "location": user.location, "distance": distance})

        nearby.sort(key=lambda u: u["distance"])
        return nearby

    def clear_cache(self) -> None:
        self.places_client.geocode_cache.clear()

    def cache_stats(self) -> dict:
        return self.places_client.geocode_cache.stats()
