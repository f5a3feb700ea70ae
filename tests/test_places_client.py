import asyncio

import httpx
import pytest

from laundry_app.schemas import LocationData, MapMarker, NearbyCandidate
from laundry_app.services.places_client import fallback_suggestions

from .conftest import TEST_API_KEY, ok

PREDICTIONS = [
    {
        "place_id": "ChIJ-first",
        "description": "Starbucks, Market Street, San Diego, CA, USA",
        "structured_formatting": {"main_text": "Starbucks", "secondary_text": "Market Street"},
        "types": ["cafe", "establishment"],
        "matched_substrings": [{"length": 3, "offset": 0}],
    },
    {
        "place_id": "ChIJ-second",
        "description": "Star Laundry, Clairemont Mesa Blvd, San Diego, CA, USA",
        "structured_formatting": {"main_text": "Star Laundry", "secondary_text": "San Diego"},
        "types": ["laundry"],
    },
]

DETAILS = {
    "place_id": "ChIJ-first",
    "formatted_address": "1 Market St, San Diego, CA 92101, USA",
    "geometry": {"location": {"lat": 32.71, "lng": -117.16}, "viewport": {}},
    "name": "Starbucks",
    "types": ["cafe"],
}

SAN_DIEGO = LocationData(latitude=32.7767, longitude=-117.1611)


def transport_error(request):
    raise httpx.ConnectError("network unreachable", request=request)


# ============================================================================
# AUTOCOMPLETE
# ============================================================================


async def test_autocomplete_returns_provider_predictions_in_order(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK", "predictions": PREDICTIONS}))

    results = await client.autocomplete("Sta")

    assert [r.place_id for r in results] == ["ChIJ-first", "ChIJ-second"]
    assert results[0].main_text == "Starbucks"
    assert not results[0].is_fallback
    assert len(recorder.requests) == 1
    params = recorder.requests[0].url.params
    assert params["input"] == "Sta"
    assert params["key"] == TEST_API_KEY
    assert params["sessiontoken"]
    assert "location" not in params


async def test_autocomplete_bias_and_fresh_session_tokens(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK", "predictions": []}))

    await client.autocomplete("Main", bias=SAN_DIEGO, radius_meters=1500)
    await client.autocomplete("Main")

    first, second = (r.url.params for r in recorder.requests)
    assert first["location"] == "32.7767,-117.1611"
    assert first["radius"] == "1500"
    assert first["sessiontoken"] != second["sessiontoken"]


async def test_autocomplete_transport_error_falls_back(make_places_client):
    client, _ = make_places_client(transport_error)

    results = await client.autocomplete("1600 Pennsylvania")

    assert results
    assert results[0].description == "1600 Pennsylvania"
    assert all(r.is_fallback for r in results)
    assert "Network error" in results[0].secondary_text


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}),
        httpx.Response(200, json={"status": "ZERO_RESULTS", "predictions": []}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_autocomplete_failures_never_raise(make_places_client, response):
    client, _ = make_places_client(lambda request: response)

    results = await client.autocomplete("42 Wallaby Way")

    assert results[0].description == "42 Wallaby Way"
    assert all(r.place_id.startswith("fallback_") for r in results)


async def test_autocomplete_without_key_makes_no_request(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK"}), api_key=None)

    results = await client.autocomplete("123 Main")

    assert recorder.requests == []
    assert results[0].description == "123 Main"
    assert "API not configured" in results[0].secondary_text


def test_fallback_suggestions_add_street_suffixes_for_addresses():
    results = fallback_suggestions("1600 Pennsylvania", "Network error")

    assert [r.description for r in results] == [
        "1600 Pennsylvania",
        "1600 Pennsylvania Street",
        "1600 Pennsylvania Avenue",
        "1600 Pennsylvania Road",
        "1600 Pennsylvania Drive",
    ]
    assert results[0].types == ["establishment"]
    assert results[1].types == ["route"]
    assert len({r.place_id for r in results}) == len(results)


def test_fallback_suggestions_skip_suffix_already_present():
    results = fallback_suggestions("12 Elm Street", "API error")

    descriptions = [r.description for r in results]
    assert "12 Elm Street Street" not in descriptions
    assert descriptions[1] == "12 Elm Street Avenue"


def test_fallback_suggestions_only_echo_non_addresses():
    results = fallback_suggestions("Starbucks", "API error")

    assert len(results) == 1
    assert results[0].main_text == "Starbucks"


# ============================================================================
# PLACE DETAILS & GEOCODING
# ============================================================================


async def test_place_details_fallback_id_short_circuits(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK", "result": DETAILS}))

    assert await client.place_details("fallback_1700000000000_1") is None
    assert recorder.requests == []


async def test_place_details_success(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK", "result": DETAILS}))

    details = await client.place_details("ChIJ-first")

    assert details.formatted_address == "1 Market St, San Diego, CA 92101, USA"
    location = details.to_location()
    assert (location.latitude, location.longitude) == (32.71, -117.16)
    params = recorder.requests[0].url.params
    assert params["place_id"] == "ChIJ-first"
    assert params["fields"] == "place_id,formatted_address,geometry,name,types"


async def test_place_details_provider_error_is_absent(make_places_client):
    client, _ = make_places_client(ok({"status": "NOT_FOUND"}))

    assert await client.place_details("ChIJ-gone") is None


async def test_geocode_address_first_result(make_places_client):
    payload = {
        "status": "OK",
        "results": [
            {
                "formatted_address": "New York, NY, USA",
                "geometry": {"location": {"lat": 40.7128, "lng": -74.006}},
            },
            {
                "formatted_address": "New York, USA",
                "geometry": {"location": {"lat": 43.0, "lng": -75.0}},
            },
        ],
    }
    client, recorder = make_places_client(ok(payload))

    location = await client.geocode_address("New York, NY")

    assert location == LocationData(latitude=40.7128, longitude=-74.006, address="New York, NY, USA")
    assert recorder.requests[0].url.params["address"] == "New York, NY"


@pytest.mark.parametrize(
    "handler",
    [ok({"status": "ZERO_RESULTS", "results": []}), ok({"status": "OK", "results": []}), transport_error],
)
async def test_geocode_address_failures(make_places_client, handler):
    client, _ = make_places_client(handler)

    assert await client.geocode_address("nowhere at all") is None


# ============================================================================
# REVERSE GEOCODING
# ============================================================================


def reverse_ok(request):
    lat, lng = request.url.params["latlng"].split(",")
    return httpx.Response(
        200, json={"status": "OK", "results": [{"formatted_address": f"Address at {lat},{lng}"}]}
    )


async def test_reverse_geocode_uses_cache_within_ttl(make_places_client, fake_clock):
    client, recorder = make_places_client(reverse_ok)

    first = await client.reverse_geocode(40.0, -75.0)
    fake_clock.now += 60
    second = await client.reverse_geocode(40.00001, -75.00001)

    assert first == second == "Address at 40.0,-75.0"
    assert len(recorder.requests) == 1


async def test_reverse_geocode_refetches_after_ttl(make_places_client, fake_clock):
    client, recorder = make_places_client(reverse_ok)

    await client.reverse_geocode(40.0, -75.0)
    fake_clock.now += 301
    await client.reverse_geocode(40.0, -75.0)

    assert len(recorder.requests) == 2


async def test_rapid_reverse_geocodes_are_spaced(make_places_client, fake_clock):
    dispatch_times = []

    def handler(request):
        dispatch_times.append(fake_clock())
        return reverse_ok(request)

    client, _ = make_places_client(handler)

    results = await asyncio.gather(
        client.reverse_geocode(40.0, -75.0),
        client.reverse_geocode(41.0, -75.0),
        client.reverse_geocode(42.0, -75.0),
    )

    assert len(dispatch_times) == 3
    assert all(results)
    gaps = [b - a for a, b in zip(dispatch_times, dispatch_times[1:])]
    assert all(gap >= client.geocode_queue.delay_seconds for gap in gaps)


async def test_reverse_geocode_over_quota_backs_off_once(make_places_client, fake_clock):
    client, recorder = make_places_client(ok({"status": "OVER_QUERY_LIMIT", "results": []}))

    result = await client.reverse_geocode(40.0, -75.0)

    assert result is None
    assert fake_clock.sleeps == [2.0]
    assert len(recorder.requests) == 1
    # Failures are not cached
    assert client.geocode_cache.get(40.0, -75.0) is None


@pytest.mark.parametrize(
    "results",
    [
        ["not-a-dict"],
        [{"formatted_address": 42}],
        [{}],
        {"formatted_address": "not a list"},
    ],
)
async def test_reverse_geocode_malformed_results_are_absent(make_places_client, results):
    client, _ = make_places_client(ok({"status": "OK", "results": results}))

    assert await client.reverse_geocode(40.0, -75.0) is None
    assert client.geocode_cache.get(40.0, -75.0) is None


async def test_reverse_geocode_transport_error_is_absent(make_places_client):
    client, _ = make_places_client(transport_error)

    assert await client.reverse_geocode(40.0, -75.0) is None


# ============================================================================
# KEY SELECTION
# ============================================================================


async def test_initialize_prefers_configured_key(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK"}), candidate_keys=["AIza-other"])

    selection = await client.initialize()

    assert selection.source == "configured"
    assert selection.api_key == TEST_API_KEY
    assert recorder.requests == []


async def test_initialize_probes_candidates_in_order(make_places_client):
    def handler(request):
        if request.url.params["key"] == "AIza-denied":
            return httpx.Response(200, json={"status": "REQUEST_DENIED"})
        return httpx.Response(200, json={"status": "ZERO_RESULTS", "predictions": []})

    client, recorder = make_places_client(
        handler, api_key=None, candidate_keys=["AIza-denied", "AIza-works", "AIza-unused"]
    )
    assert not client.is_configured

    selection = await client.initialize()

    assert selection.source == "probed"
    assert selection.api_key == "AIza-works"
    assert client.api_key == "AIza-works"
    assert client.is_configured
    assert [r.url.params["key"] for r in recorder.requests] == ["AIza-denied", "AIza-works"]
    assert recorder.requests[0].url.params["input"] == "test"


async def test_initialize_without_working_key(make_places_client):
    client, _ = make_places_client(transport_error, api_key=None, candidate_keys=["AIza-a", "AIza-b"])

    selection = await client.initialize()

    assert selection.source == "none"
    assert not selection.ok
    assert len(selection.probed) == 2
    assert not client.is_configured


async def test_placeholder_key_is_not_configured(make_places_client):
    client, _ = make_places_client(ok({}), api_key="YOUR_API_KEY_HERE")

    assert not client.is_configured
    assert client.static_map_url(SAN_DIEGO) == ""


# ============================================================================
# PROXY MODE
# ============================================================================


async def test_proxy_mode_routes_autocomplete_through_backend(make_places_client):
    client, recorder = make_places_client(
        ok({"success": True, "predictions": PREDICTIONS, "status": "OK"}),
        use_proxy=True,
        proxy_base_url="http://backend.test/",
    )

    results = await client.autocomplete("Sta", bias=SAN_DIEGO)

    assert [r.place_id for r in results] == ["ChIJ-first", "ChIJ-second"]
    request = recorder.requests[0]
    assert str(request.url).startswith("http://backend.test/google/places-proxy")
    assert request.url.params["latitude"] == "32.7767"


async def test_proxy_failure_falls_back(make_places_client):
    client, _ = make_places_client(
        ok({"success": False, "predictions": [], "error": "API error"}), use_proxy=True
    )

    results = await client.autocomplete("Sta")

    assert results[0].is_fallback
    assert "Backend proxy error" in results[0].secondary_text


async def test_proxy_mode_place_details(make_places_client):
    client, recorder = make_places_client(
        ok({"success": True, "result": DETAILS, "status": "OK"}), use_proxy=True
    )

    details = await client.place_details("ChIJ-first")

    assert details.name == "Starbucks"
    assert recorder.paths == ["/google/place-details-proxy"]


async def test_proxy_mode_skips_geocoding(make_places_client):
    client, recorder = make_places_client(reverse_ok, use_proxy=True)

    assert await client.geocode_address("New York") is None
    assert await client.reverse_geocode(40.0, -75.0) is None
    assert recorder.requests == []


# ============================================================================
# ROUTING & MATCHING
# ============================================================================


async def test_directions(make_places_client):
    payload = {
        "status": "OK",
        "routes": [
            {
                "summary": "I-5 N",
                "overview_polyline": {"points": "abc"},
                "legs": [
                    {
                        "distance": {"text": "5.1 km", "value": 5100},
                        "duration": {"text": "9 mins", "value": 540},
                        "start_address": "A",
                        "end_address": "B",
                        "steps": [],
                    }
                ],
            }
        ],
    }
    client, recorder = make_places_client(ok(payload))

    result = await client.directions(SAN_DIEGO, "Balboa Park", mode="walking")

    assert result.routes[0].legs[0].distance.value == 5100
    params = recorder.requests[0].url.params
    assert params["origin"] == "32.7767,-117.1611"
    assert params["destination"] == "Balboa Park"
    assert params["mode"] == "walking"


async def test_directions_error_is_absent(make_places_client):
    client, _ = make_places_client(ok({"status": "NOT_FOUND", "routes": []}))

    assert await client.directions("nowhere", "elsewhere") is None


def element(status, meters=None, text=None):
    if status != "OK":
        return {"status": status}
    return {
        "status": "OK",
        "distance": {"text": text, "value": meters},
        "duration": {"text": "10 mins", "value": 600},
    }


async def test_find_nearby_candidates_filters_and_sorts(make_places_client):
    payload = {
        "status": "OK",
        "rows": [
            {
                "elements": [
                    element("OK", 3000, "3.0 km"),
                    element("NOT_FOUND"),
                    element("OK", 15000, "15 km"),
                    element("OK", 1000, "1.0 km"),
                ]
            }
        ],
    }
    client, recorder = make_places_client(ok(payload))
    candidates = [
        NearbyCandidate(id="no-location", label="Nomad Laundry"),
        NearbyCandidate(id="b", label="Bubbles", location=LocationData(latitude=32.78, longitude=-117.16)),
        NearbyCandidate(id="c", label="Closed", location=LocationData(latitude=32.79, longitude=-117.16)),
        NearbyCandidate(id="d", label="Far Away", location=LocationData(latitude=33.0, longitude=-117.0)),
        NearbyCandidate(id="e", label="Express", location=LocationData(latitude=32.77, longitude=-117.16)),
    ]

    ranked = await client.find_nearby_candidates(SAN_DIEGO, candidates, max_distance_km=10)

    assert [r.id for r in ranked] == ["e", "b"]
    assert [r.distance_km for r in ranked] == [1.0, 3.0]
    assert ranked[0].distance == "1.0 km"
    params = recorder.requests[0].url.params
    assert params["origins"] == "32.7767,-117.1611"
    assert len(params["destinations"].split("|")) == 4


async def test_find_nearby_candidates_without_locations_skips_network(make_places_client):
    client, recorder = make_places_client(ok({"status": "OK", "rows": []}))

    ranked = await client.find_nearby_candidates(SAN_DIEGO, [NearbyCandidate(id="x", label="X")])

    assert ranked == []
    assert recorder.requests == []


async def test_find_nearby_candidates_matrix_failure(make_places_client):
    client, _ = make_places_client(ok({"status": "OVER_QUERY_LIMIT"}))
    candidates = [NearbyCandidate(id="b", label="B", location=SAN_DIEGO)]

    assert await client.find_nearby_candidates(SAN_DIEGO, candidates) == []


# ============================================================================
# BUSINESS SEARCH & STATIC MAPS
# ============================================================================


async def test_search_laundry_businesses_merges_and_ranks(make_places_client):
    def handler(request):
        if request.url.path.endswith("/nearbysearch/json"):
            return httpx.Response(
                200,
                json={
                    "status": "OK",
                    "results": [
                        {"place_id": "p1", "name": "Suds", "vicinity": "1 A St", "rating": 4.0, "user_ratings_total": 10},
                        {"place_id": "p2", "name": "Spin", "vicinity": "2 B St", "rating": 5.0, "user_ratings_total": 1},
                    ],
                },
            )
        if "dry cleaning" in request.url.params["query"]:
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "results": [
                    {"place_id": "p1", "name": "Suds (dup)", "formatted_address": "dup"},
                    {"place_id": "p3", "name": "Fold", "formatted_address": "3 C St", "rating": 4.5, "user_ratings_total": 100},
                ],
            },
        )

    client, recorder = make_places_client(handler)

    businesses = await client.search_laundry_businesses(SAN_DIEGO, radius_meters=3000)

    assert [b.place_id for b in businesses] == ["p3", "p1", "p2"]
    assert businesses[1].name == "Suds"
    assert businesses[1].address == "1 A St"
    assert len(recorder.requests) == 4
    assert recorder.requests[0].url.params["type"] == "laundry"


@pytest.mark.parametrize(
    "results",
    [
        ["not-a-dict", {"place_id": "p1", "name": "Suds", "vicinity": "1 A St"}],
        [{"place_id": ["unhashable"], "name": "Bad"}, {"place_id": "p1", "name": "Suds"}],
        [{"place_id": "p0", "name": None}, {"place_id": "p1", "name": "Suds"}],
    ],
)
async def test_search_laundry_businesses_skips_malformed_places(make_places_client, results):
    client, _ = make_places_client(ok({"status": "OK", "results": results}))

    businesses = await client.search_laundry_businesses(SAN_DIEGO)

    assert [b.place_id for b in businesses] == ["p1"]


async def test_search_laundry_businesses_malformed_results_list(make_places_client):
    client, _ = make_places_client(ok({"status": "OK", "results": {"place_id": "p1"}}))

    assert await client.search_laundry_businesses(SAN_DIEGO) == []


def test_static_map_url_markers(make_places_client):
    client, _ = make_places_client(ok({}))

    url = client.static_map_url(
        SAN_DIEGO,
        markers=[
            MapMarker(location=SAN_DIEGO),
            MapMarker(location=LocationData(latitude=32.8, longitude=-117.2), label="Z", color="blue"),
        ],
    )

    assert url.startswith("https://maps.googleapis.com/maps/api/staticmap?")
    assert "center=32.7767,-117.1611" in url
    assert "markers=color:red|label:A|32.7767,-117.1611" in url
    assert "markers=color:blue|label:Z|32.8,-117.2" in url


def test_static_map_url_default_marker(make_places_client):
    client, _ = make_places_client(ok({}))

    url = client.static_map_url(SAN_DIEGO, zoom=12, size="200x200")

    assert "zoom=12" in url
    assert "size=200x200" in url
    assert "markers=color:red|32.7767,-117.1611" in url
