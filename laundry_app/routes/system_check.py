"""
Google Maps configuration diagnostics.

Lets the app's system check screen confirm which key is active and whether
each Maps API accepts it, without ever exposing the key itself.
"""

import logging
from typing import Literal

import httpx
from fastapi import APIRouter, Depends, Request

from ..schemas import ApiTestResponse
from ..services.places_client import (
    AUTOCOMPLETE_URL,
    GOOGLE_DIRECTIONS_URL,
    GOOGLE_GEOCODING_URL,
    PlacesClient,
)
from ..shared.validators import validate_api_key_format
from .places_proxy import get_places_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google", tags=["Google"])

# test_type -> (url, params, display name)
API_TESTS = {
    "places": (AUTOCOMPLETE_URL, {"input": "New York"}, "Places Autocomplete"),
    "geocoding": (GOOGLE_GEOCODING_URL, {"address": "New York"}, "Geocoding"),
    "directions": (
        GOOGLE_DIRECTIONS_URL,
        {"origin": "New York", "destination": "Boston"},
        "Directions",
    ),
}


@router.get("/config")
async def google_config(request: Request, client: PlacesClient = Depends(get_places_client)):
    """Report whether a key is active and where it came from"""
    selection = getattr(request.app.state, "key_selection", None)
    return {
        "configured": client.is_configured,
        "key_format_valid": validate_api_key_format(client.api_key),
        "key_source": selection.source if selection else "none",
        "use_proxy": client.use_proxy,
    }


@router.get("/test-api", response_model=ApiTestResponse)
async def test_google_api(
    test_type: Literal["places", "geocoding", "directions"] = "places",
    client: PlacesClient = Depends(get_places_client),
):
    """Call one Maps API with the active key and report the outcome"""
    if not client.is_configured:
        return ApiTestResponse(success=False, error="API key not configured")

    url, params, name = API_TESTS[test_type]
    logger.info(f"🧪 Testing Google API: {name}")

    try:
        data = await client.fetch_json(url, {**params, "key": client.api_key})
    except httpx.HTTPStatusError as e:
        return ApiTestResponse(
            success=False, error=f"{name} API failed", http_status=e.response.status_code
        )
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Google API test failed: {e}")
        return ApiTestResponse(success=False, error="Network or server error")

    status = data.get("status")
    if status != "OK":
        return ApiTestResponse(
            success=False,
            error=data.get("error_message") or f"{name} API failed",
            status=status,
            http_status=200,
        )

    results = data.get("predictions") or data.get("results") or data.get("routes") or []
    return ApiTestResponse(
        success=True,
        message=f"{name} API is working correctly",
        status=status,
        http_status=200,
        results_count=len(results),
    )
