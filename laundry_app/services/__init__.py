"""
Geo services for the laundry pickup app.

Usage:
    http_client = httpx.AsyncClient()
    places = create_places_client(http_client)
    await places.initialize()
    widget = AddressAutocomplete(places, on_address_select=handle_address)
"""

import httpx

from ..config import (
    GOOGLE_MAPS_API_KEY,
    GOOGLE_MAPS_API_KEYS,
    PLACES_PROXY_BASE_URL,
    PLACES_USE_PROXY,
)
from .address_autocomplete import AddressAutocomplete, AutocompleteState
from .geocode_cache import GeocodeCache
from .location_service import LocationService
from .places_client import PlacesClient
from .request_queue import RateLimitedRequestQueue


def create_places_client(http_client: httpx.AsyncClient) -> PlacesClient:
    """Build a PlacesClient from environment configuration (call initialize() next)"""
    return PlacesClient(
        http_client,
        api_key=GOOGLE_MAPS_API_KEY,
        candidate_keys=GOOGLE_MAPS_API_KEYS,
        use_proxy=PLACES_USE_PROXY,
        proxy_base_url=PLACES_PROXY_BASE_URL,
    )


__all__ = [
    "AddressAutocomplete",
    "AutocompleteState",
    "GeocodeCache",
    "LocationService",
    "PlacesClient",
    "RateLimitedRequestQueue",
    "create_places_client",
]
