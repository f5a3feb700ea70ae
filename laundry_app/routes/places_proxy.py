"""Same-origin proxy for Google Places.

Browser builds of the app cannot call maps.googleapis.com directly (CORS),
so the Places client switches to these endpoints, which perform the call
server-side and return the same result shape.

- Rate limited per IP to protect the API key's quota
- Autocomplete and details responses are cached in Redis (fail open)
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..cache import build_autocomplete_key, build_place_details_key, cache
from ..config import PLACES_PROXY_CACHE_SECONDS, PLACES_PROXY_RPM
from ..rate_limiter import create_rate_limiter
from ..schemas import (
    LaundryBusinessesResponse,
    LocationData,
    PlaceAutocomplete,
    PlaceDetails,
    PlaceDetailsProxyResponse,
    PlacesProxyResponse,
)
from ..services.places_client import (
    DEFAULT_AUTOCOMPLETE_RADIUS,
    DEFAULT_SEARCH_RADIUS,
    FALLBACK_PLACE_PREFIX,
    PlacesClient,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google", tags=["Google"])

rate_limit_places = create_rate_limiter(
    limit=PLACES_PROXY_RPM,
    window_seconds=60,
    key_prefix="places_proxy",
)

NOT_CONFIGURED_ERROR = "Google Maps API key not configured"


def get_places_client(request: Request) -> PlacesClient:
    """Dependency returning the application's PlacesClient"""
    return request.app.state.places_client


def _bias_location(latitude: Optional[float], longitude: Optional[float]) -> Optional[LocationData]:
    if latitude is None and longitude is None:
        return None
    if latitude is None or longitude is None:
        raise HTTPException(status_code=400, detail="latitude and longitude must be given together")
    try:
        return LocationData(latitude=latitude, longitude=longitude)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid coordinates") from e


@router.get("/places-proxy", response_model=PlacesProxyResponse)
async def places_proxy(
    input_: str = Query(..., alias="input"),
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: int = Query(DEFAULT_AUTOCOMPLETE_RADIUS, ge=1, le=50000),
    client: PlacesClient = Depends(get_places_client),
    _: None = Depends(rate_limit_places),
):
    """Proxy for Places autocomplete"""
    query = input_.strip()
    if not query:
        raise HTTPException(status_code=400, detail="input is required")
    bias = _bias_location(latitude, longitude)

    if not client.is_configured:
        return PlacesProxyResponse(success=False, error=NOT_CONFIGURED_ERROR)

    cache_key = build_autocomplete_key(query, latitude, longitude, radius)
    cached = cache.get(cache_key)
    if cached:
        return PlacesProxyResponse.model_validate(cached)

    logger.info(f"🔍 Places proxy request for: {query}")
    try:
        data = await client.request_autocomplete(query, bias, radius)
        status = data.get("status")
        if status == "OK":
            predictions = [PlaceAutocomplete.model_validate(p) for p in data.get("predictions") or []]
            response = PlacesProxyResponse(success=True, predictions=predictions, status=status)
            cache.set(cache_key, response.model_dump(), PLACES_PROXY_CACHE_SECONDS)
            logger.info(f"✅ Places proxy success: {len(predictions)} results")
            return response
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Places proxy failed: {e}")
        return PlacesProxyResponse(success=False, error=str(e) or type(e).__name__)

    logger.warning(f"⚠️ Places proxy API error: {status} {data.get('error_message', '')}")
    return PlacesProxyResponse(
        success=False, status=status, error=data.get("error_message") or "API error"
    )


@router.get("/place-details-proxy", response_model=PlaceDetailsProxyResponse)
async def place_details_proxy(
    place_id: str = Query(..., min_length=1),
    client: PlacesClient = Depends(get_places_client),
    _: None = Depends(rate_limit_places),
):
    """Proxy for Places details"""
    if place_id.startswith(FALLBACK_PLACE_PREFIX):
        return PlaceDetailsProxyResponse(success=False, error="Fallback suggestions have no details")

    if not client.is_configured:
        return PlaceDetailsProxyResponse(success=False, error=NOT_CONFIGURED_ERROR)

    cache_key = build_place_details_key(place_id)
    cached = cache.get(cache_key)
    if cached:
        return PlaceDetailsProxyResponse.model_validate(cached)

    logger.info(f"📍 Place details proxy request for: {place_id}")
    try:
        data = await client.request_place_details(place_id)
        status = data.get("status")
        if status == "OK":
            result = PlaceDetails.model_validate(data.get("result"))
            response = PlaceDetailsProxyResponse(success=True, result=result, status=status)
            cache.set(cache_key, response.model_dump(), PLACES_PROXY_CACHE_SECONDS)
            return response
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Place details proxy failed: {e}")
        return PlaceDetailsProxyResponse(success=False, error=str(e) or type(e).__name__)

    logger.warning(f"⚠️ Place details proxy error: {status} {data.get('error_message', '')}")
    return PlaceDetailsProxyResponse(
        success=False, status=status, error=data.get("error_message") or "API error"
    )


@router.get("/laundry-businesses", response_model=LaundryBusinessesResponse)
async def laundry_businesses(
    latitude: float,
    longitude: float,
    radius: int = Query(DEFAULT_SEARCH_RADIUS, ge=1, le=50000),
    client: PlacesClient = Depends(get_places_client),
    _: None = Depends(rate_limit_places),
):
    """Laundromats, dry cleaners and wash-and-fold services around a point"""
    location = _bias_location(latitude, longitude)
    if not client.is_configured:
        return LaundryBusinessesResponse(success=False)

    businesses = await client.search_laundry_businesses(location, radius)
    return LaundryBusinessesResponse(
        success=True, businesses=businesses, total_found=len(businesses)
    )
