"""
Google Maps Platform client for address entry and provider matching

Covers place autocomplete, place details, forward/reverse geocoding,
directions and distance matrix lookups.

Failure policy: public methods never raise. Every operation has a defined
"nothing found" value (None, an empty list, or locally synthesized fallback
suggestions for autocomplete), and failures are logged instead.

Clients that cannot reach maps.googleapis.com directly (browser builds behind
CORS) set use_proxy=True: autocomplete and place details then go through the
same-origin proxy routes, while geocoding returns None.
"""

import asyncio
import logging
import math
import time
import uuid
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union
from urllib.parse import urlencode

import httpx

from ..config import GOOGLE_REQUEST_TIMEOUT, PLACES_PROXY_BASE_URL
from ..schemas import (
    FALLBACK_PLACE_PREFIX,
    DirectionsResult,
    DistanceMatrixResult,
    KeySelection,
    LaundryBusiness,
    LocationData,
    MapMarker,
    NearbyCandidate,
    PlaceAutocomplete,
    PlaceDetails,
    PlaceDetailsProxyResponse,
    PlacesProxyResponse,
    RankedCandidate,
    StructuredFormatting,
    TravelMode,
)
from ..shared.validators import is_usable_api_key, mask_api_key
from .geocode_cache import GeocodeCache
from .request_queue import GEOCODE_REQUEST_DELAY, QueueClosedError, RateLimitedRequestQueue

logger = logging.getLogger(__name__)

GOOGLE_PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"
GOOGLE_GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
GOOGLE_STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"

AUTOCOMPLETE_URL = f"{GOOGLE_PLACES_BASE_URL}/autocomplete/json"
PLACE_DETAILS_URL = f"{GOOGLE_PLACES_BASE_URL}/details/json"
NEARBY_SEARCH_URL = f"{GOOGLE_PLACES_BASE_URL}/nearbysearch/json"
TEXT_SEARCH_URL = f"{GOOGLE_PLACES_BASE_URL}/textsearch/json"

PLACE_DETAILS_FIELDS = "place_id,formatted_address,geometry,name,types"
DEFAULT_AUTOCOMPLETE_RADIUS = 50000  # meters
DEFAULT_SEARCH_RADIUS = 5000  # meters

# A probe answering with either status means the key is enabled for Places
ACCEPTABLE_PROBE_STATUSES = {"OK", "ZERO_RESULTS"}

QUOTA_BACKOFF_SECONDS = 2.0
SEARCH_REQUEST_DELAY = 0.2

FALLBACK_STREET_SUFFIXES = ["Street", "Avenue", "Road", "Drive", "Lane", "Boulevard"]
MAX_FALLBACK_SUGGESTIONS = 5

LAUNDRY_TEXT_QUERIES = ["laundromat", "dry cleaning", "wash and fold"]

Waypoint = Union[LocationData, str]


def generate_session_token() -> str:
    """Random token bundling related autocomplete keystrokes for billing"""
    return uuid.uuid4().hex


def fallback_suggestions(query: str, reason: str) -> list[PlaceAutocomplete]:
    """
    Build locally synthesized suggestions for when the provider is unavailable.

    The first entry always echoes the query. Queries that look like a street
    address (longer than 3 characters, containing a digit) also get
    "<query> <suffix>" guesses for common street suffixes.
    """
    stamp = int(time.time() * 1000)
    suggestions = [
        PlaceAutocomplete(
            place_id=f"{FALLBACK_PLACE_PREFIX}{stamp}_1",
            description=query,
            structured_formatting=StructuredFormatting(
                main_text=query, secondary_text=f"Manual entry ({reason})"
            ),
            types=["establishment"],
        )
    ]

    if len(query) > 3 and any(ch.isdigit() for ch in query):
        query_lower = query.lower()
        for index, suffix in enumerate(FALLBACK_STREET_SUFFIXES):
            if suffix.lower() in query_lower:
                continue
            suggestions.append(
                PlaceAutocomplete(
                    place_id=f"{FALLBACK_PLACE_PREFIX}{stamp}_{index + 2}",
                    description=f"{query} {suffix}",
                    structured_formatting=StructuredFormatting(
                        main_text=f"{query} {suffix}",
                        secondary_text="Suggested address format",
                    ),
                    types=["route"],
                )
            )

    return suggestions[:MAX_FALLBACK_SUGGESTIONS]


def _format_waypoint(waypoint: Waypoint) -> str:
    if isinstance(waypoint, LocationData):
        return waypoint.as_query()
    return waypoint


def _business_score(business: LaundryBusiness) -> float:
    return (business.rating or 0) * math.log(business.user_ratings_total or 1)


class PlacesClient:
    """Service for interacting with the Google Maps Platform web APIs"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        candidate_keys: Iterable[str] = (),
        use_proxy: bool = False,
        proxy_base_url: str = PLACES_PROXY_BASE_URL,
        geocode_queue: Optional[RateLimitedRequestQueue] = None,
        geocode_cache: Optional[GeocodeCache] = None,
        search_queue: Optional[RateLimitedRequestQueue] = None,
        timeout: float = GOOGLE_REQUEST_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.configured_key = api_key if is_usable_api_key(api_key) else None
        self.candidate_keys = list(candidate_keys)
        self.api_key = self.configured_key
        self.use_proxy = use_proxy
        self.proxy_base_url = proxy_base_url.rstrip("/")
        self.geocode_queue = geocode_queue or RateLimitedRequestQueue(
            GEOCODE_REQUEST_DELAY, name="geocode"
        )
        self.geocode_cache = geocode_cache if geocode_cache is not None else GeocodeCache()
        self.search_queue = search_queue or RateLimitedRequestQueue(
            SEARCH_REQUEST_DELAY, name="places-search"
        )
        self.timeout = timeout
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return is_usable_api_key(self.api_key)

    @property
    def masked_key(self) -> str:
        return mask_api_key(self.api_key)

    # ========================================================================
    # KEY SELECTION
    # ========================================================================

    async def initialize(self) -> KeySelection:
        """
        Pick the API key for this session.

        A configured key is used as-is. Otherwise each candidate key is probed
        with a minimal autocomplete call and the first one the provider accepts
        becomes active.

        Returns:
            KeySelection describing which key (if any) is active
        """
        if self.configured_key:
            self.api_key = self.configured_key
            logger.info(f"🔑 Using configured Google Maps API key: {self.masked_key}")
            return KeySelection(api_key=self.api_key, source="configured")

        probed = []
        for key in self.candidate_keys:
            if not is_usable_api_key(key):
                continue
            probed.append(mask_api_key(key))
            logger.info(f"🔑 Testing API key: {mask_api_key(key)}")
            if await self._probe_key(key):
                self.api_key = key
                logger.info(f"✅ Found working API key: {mask_api_key(key)}")
                return KeySelection(api_key=key, source="probed", probed=probed)
            logger.info(f"❌ API key failed: {mask_api_key(key)}")

        self.api_key = None
        logger.warning("⚠️ No working Google Maps API key - address lookups will use fallbacks")
        return KeySelection(source="none", probed=probed)

    async def _probe_key(self, key: str) -> bool:
        try:
            data = await self.fetch_json(AUTOCOMPLETE_URL, {"input": "test", "key": key})
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Key probe failed for {mask_api_key(key)}: {e}")
            return False
        return data.get("status") in ACCEPTABLE_PROBE_STATUSES

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    async def fetch_json(self, url: str, params: dict) -> dict:
        """
        GET a JSON object.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx response
            ValueError: Body is not a JSON object
        """
        response = await self.http_client.get(
            url, params=params, headers={"Accept": "application/json"}, timeout=self.timeout
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {url}")
        return data

    async def request_autocomplete(
        self,
        query: str,
        bias: Optional[LocationData] = None,
        radius_meters: int = DEFAULT_AUTOCOMPLETE_RADIUS,
    ) -> dict:
        """Raw provider autocomplete payload (raises on transport errors)"""
        params = {
            "input": query,
            "key": self.api_key,
            "sessiontoken": generate_session_token(),
        }
        if bias is not None:
            params["location"] = bias.as_query()
            params["radius"] = radius_meters
        return await self.fetch_json(AUTOCOMPLETE_URL, params)

    async def request_place_details(self, place_id: str) -> dict:
        """Raw provider place details payload (raises on transport errors)"""
        params = {"place_id": place_id, "fields": PLACE_DETAILS_FIELDS, "key": self.api_key}
        return await self.fetch_json(PLACE_DETAILS_URL, params)

    # ========================================================================
    # AUTOCOMPLETE & PLACE DETAILS
    # ========================================================================

    async def autocomplete(
        self,
        query: str,
        bias: Optional[LocationData] = None,
        radius_meters: int = DEFAULT_AUTOCOMPLETE_RADIUS,
    ) -> list[PlaceAutocomplete]:
        """
        Get address suggestions for a partially typed query.

        Callers are expected to only ask for queries of 3+ characters.

        Returns:
            The provider's predictions in order, or fallback suggestions when
            the provider cannot be used
        """
        if not self.is_configured:
            logger.info("🚫 Google Places API key not available for autocomplete")
            return fallback_suggestions(query, "API not configured")

        if self.use_proxy:
            return await self._autocomplete_via_proxy(query, bias, radius_meters)

        logger.info(f"🔍 Fetching Google Places autocomplete for: {query}")
        try:
            data = await self.request_autocomplete(query, bias, radius_meters)
            status = data.get("status")
            if status == "OK":
                predictions = [
                    PlaceAutocomplete.model_validate(p) for p in data.get("predictions") or []
                ]
                logger.info(f"✅ Google Places autocomplete success: {len(predictions)} results")
                return predictions
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Google Places autocomplete failed: {e}")
            return fallback_suggestions(query, "Network error")

        logger.warning(
            f"⚠️ Google Places autocomplete error: {status} {data.get('error_message', '')}"
        )
        return fallback_suggestions(query, "API error")

    async def _autocomplete_via_proxy(
        self, query: str, bias: Optional[LocationData], radius_meters: int
    ) -> list[PlaceAutocomplete]:
        logger.info(f"🌐 Using backend proxy for autocomplete: {query}")
        params = {"input": query, "radius": radius_meters}
        if bias is not None:
            params["latitude"] = bias.latitude
            params["longitude"] = bias.longitude

        try:
            data = await self.fetch_json(f"{self.proxy_base_url}/google/places-proxy", params)
            result = PlacesProxyResponse.model_validate(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Backend proxy error: {e}")
            return fallback_suggestions(query, "Backend proxy unavailable")

        if not result.success:
            logger.warning(f"⚠️ Backend proxy failed: {result.status} {result.error}")
            return fallback_suggestions(query, "Backend proxy error")

        logger.info(f"✅ Backend proxy success: {len(result.predictions)} results")
        return result.predictions

    async def place_details(self, place_id: str) -> Optional[PlaceDetails]:
        """Resolve a prediction to its address and coordinates"""
        if place_id.startswith(FALLBACK_PLACE_PREFIX):
            logger.info("📝 Fallback place ID, skipping details lookup")
            return None

        if not self.is_configured:
            logger.info("🚫 Google Places API key not available for place details")
            return None

        try:
            if self.use_proxy:
                data = await self.fetch_json(
                    f"{self.proxy_base_url}/google/place-details-proxy", {"place_id": place_id}
                )
                proxied = PlaceDetailsProxyResponse.model_validate(data)
                if proxied.success and proxied.result is not None:
                    return proxied.result
                logger.warning(f"⚠️ Place details proxy failed: {proxied.status} {proxied.error}")
                return None

            data = await self.request_place_details(place_id)
            if data.get("status") == "OK":
                details = PlaceDetails.model_validate(data.get("result"))
                logger.info(f"✅ Google Place details success: {details.formatted_address}")
                return details
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Google Place details failed: {e}")
            return None

        logger.warning(
            f"⚠️ Google Place details error: {data.get('status')} {data.get('error_message', '')}"
        )
        return None

    # ========================================================================
    # GEOCODING
    # ========================================================================

    async def geocode_address(self, address: str) -> Optional[LocationData]:
        """Forward geocode an address to its first match"""
        if not address or not address.strip():
            return None
        if not self.is_configured:
            logger.info("🚫 Google Geocoding API key not available")
            return None
        if self.use_proxy:
            # Not proxied: geocoding is unavailable for proxied clients
            return None

        try:
            data = await self.fetch_json(
                GOOGLE_GEOCODING_URL, {"address": address.strip(), "key": self.api_key}
            )
            results = data.get("results") or []
            if data.get("status") == "OK" and results:
                first = results[0]
                location = first["geometry"]["location"]
                logger.info(f"✅ Geocoding success for: {address}")
                return LocationData(
                    latitude=location["lat"],
                    longitude=location["lng"],
                    address=first.get("formatted_address"),
                )
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error(f"❌ Geocoding error for '{address}': {e}")
            return None

        logger.warning(f"⚠️ Geocoding failed: {data.get('status')} {data.get('error_message', '')}")
        return None

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        """
        Reverse geocode coordinates to a formatted address.

        Cached per ~11m cell for the cache TTL. Network lookups go through the
        geocode queue, so consecutive dispatches are never closer together
        than its delay.
        """
        cached = self.geocode_cache.get(latitude, longitude)
        if cached is not None:
            logger.debug("Using cached geocode result")
            return cached

        if not self.is_configured or self.use_proxy:
            return None

        try:
            address = await self.geocode_queue.enqueue(
                partial(self._reverse_geocode_request, latitude, longitude)
            )
        except QueueClosedError:
            return None

        if address:
            self.geocode_cache.put(latitude, longitude, address)
        return address

    async def _reverse_geocode_request(self, latitude: float, longitude: float) -> Optional[str]:
        try:
            data = await self.fetch_json(
                GOOGLE_GEOCODING_URL, {"latlng": f"{latitude},{longitude}", "key": self.api_key}
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Reverse geocoding error for ({latitude}, {longitude}): {e}")
            return None

        status = data.get("status")
        results = data.get("results")
        if status == "OK" and isinstance(results, list) and results:
            first = results[0]
            address = first.get("formatted_address") if isinstance(first, dict) else None
            if isinstance(address, str) and address:
                return address
            logger.warning(f"⚠️ Malformed reverse geocoding result for ({latitude}, {longitude})")
            return None

        if status == "OVER_QUERY_LIMIT":
            logger.warning(
                f"🚫 Geocoding quota exceeded, backing off {QUOTA_BACKOFF_SECONDS}s"
            )
            await self._sleep(QUOTA_BACKOFF_SECONDS)
            return None

        logger.info(f"Reverse geocoding: status '{status}' for ({latitude}, {longitude})")
        return None

    # ========================================================================
    # ROUTING
    # ========================================================================

    async def directions(
        self, origin: Waypoint, destination: Waypoint, mode: TravelMode = "driving"
    ) -> Optional[DirectionsResult]:
        """Get directions between two points or addresses"""
        if not self.is_configured:
            logger.warning("Google Directions API key not configured")
            return None

        params = {
            "origin": _format_waypoint(origin),
            "destination": _format_waypoint(destination),
            "mode": mode,
            "key": self.api_key,
        }
        try:
            data = await self.fetch_json(GOOGLE_DIRECTIONS_URL, params)
            if data.get("status") == "OK":
                return DirectionsResult.model_validate(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error getting directions: {e}")
            return None

        logger.error(f"Google Directions error: {data.get('status')} {data.get('error_message', '')}")
        return None

    async def distance_matrix(
        self,
        origins: Sequence[Waypoint],
        destinations: Sequence[Waypoint],
        mode: TravelMode = "driving",
    ) -> Optional[DistanceMatrixResult]:
        """Distance and duration between every origin and destination"""
        if not self.is_configured:
            logger.warning("Google Distance Matrix API key not configured")
            return None

        params = {
            "origins": "|".join(_format_waypoint(o) for o in origins),
            "destinations": "|".join(_format_waypoint(d) for d in destinations),
            "mode": mode,
            "key": self.api_key,
        }
        try:
            data = await self.fetch_json(GOOGLE_DISTANCE_MATRIX_URL, params)
            if data.get("status") == "OK":
                return DistanceMatrixResult.model_validate(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error getting distance matrix: {e}")
            return None

        logger.error(
            f"Google Distance Matrix error: {data.get('status')} {data.get('error_message', '')}"
        )
        return None

    async def find_nearby_candidates(
        self,
        origin: LocationData,
        candidates: Sequence[NearbyCandidate],
        max_distance_km: float = 10.0,
    ) -> list[RankedCandidate]:
        """
        Rank candidates by driving distance from origin.

        Candidates without a location, without an OK matrix element, or
        farther than max_distance_km are dropped. Closest first.
        """
        located = [c for c in candidates if c.location is not None]
        if not located:
            return []

        matrix = await self.distance_matrix([origin], [c.location for c in located], "driving")
        if matrix is None or not matrix.rows:
            return []

        ranked = []
        for candidate, element in zip(located, matrix.rows[0].elements):
            if element.status != "OK" or element.distance is None:
                continue
            distance_km = element.distance.value / 1000
            if distance_km > max_distance_km:
                continue
            ranked.append(
                RankedCandidate(
                    id=candidate.id,
                    label=candidate.label,
                    location=candidate.location,
                    distance=element.distance.text,
                    duration=element.duration.text if element.duration else "",
                    distance_km=distance_km,
                )
            )

        ranked.sort(key=lambda r: r.distance_km)
        return ranked

    # ========================================================================
    # BUSINESS SEARCH & MAPS
    # ========================================================================

    async def search_laundry_businesses(
        self, location: LocationData, radius_meters: int = DEFAULT_SEARCH_RADIUS
    ) -> list[LaundryBusiness]:
        """
        Find laundromats, dry cleaners and wash-and-fold services near a point.

        Runs one nearby search plus several text searches, merges them by
        place_id (first seen wins) and ranks by rating weighted with the log
        of the review count.
        """
        if not self.is_configured or self.use_proxy:
            return []

        searches = [
            (
                NEARBY_SEARCH_URL,
                {"location": location.as_query(), "radius": radius_meters, "type": "laundry"},
            )
        ]
        for text_query in LAUNDRY_TEXT_QUERIES:
            searches.append(
                (
                    TEXT_SEARCH_URL,
                    {"query": f"{text_query} near {location.as_query()}", "radius": radius_meters},
                )
            )

        businesses: dict[str, LaundryBusiness] = {}
        successful = 0
        for url, params in searches:
            params["key"] = self.api_key
            try:
                results = await self.search_queue.enqueue(partial(self._search_places, url, params))
            except QueueClosedError:
                break
            if results is None:
                continue
            successful += 1
            for place in results:
                if not isinstance(place, dict):
                    logger.warning(f"⚠️ Skipping malformed place result: {place!r}")
                    continue
                place_id = place.get("place_id")
                if not isinstance(place_id, str) or not place_id or place_id in businesses:
                    continue
                try:
                    businesses[place_id] = LaundryBusiness(
                        place_id=place_id,
                        name=place.get("name", ""),
                        address=place.get("formatted_address") or place.get("vicinity"),
                        rating=place.get("rating"),
                        user_ratings_total=place.get("user_ratings_total"),
                        types=place.get("types") or [],
                        geometry=place.get("geometry"),
                        business_status=place.get("business_status"),
                    )
                except ValueError as e:
                    logger.warning(f"⚠️ Skipping malformed place {place_id}: {e}")

        ranked = sorted(businesses.values(), key=_business_score, reverse=True)
        logger.info(
            f"🏪 Found {len(ranked)} unique laundry businesses "
            f"({successful}/{len(searches)} searches succeeded)"
        )
        return ranked

    async def _search_places(self, url: str, params: dict) -> Optional[list[dict]]:
        try:
            data = await self.fetch_json(url, params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Places search failed: {e}")
            return None
        if data.get("status") != "OK":
            logger.warning(f"⚠️ Places search returned: {data.get('status')}")
            return None
        results = data.get("results") or []
        if not isinstance(results, list):
            logger.warning("⚠️ Places search returned malformed results")
            return None
        return results

    def static_map_url(
        self,
        center: LocationData,
        zoom: int = 15,
        size: str = "400x300",
        markers: Optional[Sequence[MapMarker]] = None,
    ) -> str:
        """Static map image URL, or an empty string when no key is configured"""
        if not self.is_configured:
            return ""

        params = [
            ("center", center.as_query()),
            ("zoom", zoom),
            ("size", size),
            ("key", self.api_key),
        ]
        if markers:
            for index, marker in enumerate(markers):
                color = marker.color or "red"
                label = marker.label or chr(65 + index)
                params.append(("markers", f"color:{color}|label:{label}|{marker.location.as_query()}"))
        else:
            params.append(("markers", f"color:red|{center.as_query()}"))

        return f"{GOOGLE_STATIC_MAP_URL}?{urlencode(params, safe=',|:')}"

    async def aclose(self) -> None:
        await self.geocode_queue.close()
        await self.search_queue.close()
