"""Pydantic models for locations, places and the proxy endpoints"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .shared.validators import validate_latitude, validate_longitude

TravelMode = Literal["driving", "walking", "bicycling", "transit"]

FALLBACK_PLACE_PREFIX = "fallback_"


class LocationData(BaseModel):
    """A point on the map, optionally with its human readable address"""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    address: Optional[str] = None

    @field_validator("latitude")
    @classmethod
    def check_latitude(cls, v):
        return validate_latitude(v)

    @field_validator("longitude")
    @classmethod
    def check_longitude(cls, v):
        return validate_longitude(v)

    def as_query(self) -> str:
        """Render as 'lat,lng' for provider query strings"""
        return f"{self.latitude},{self.longitude}"


class StructuredFormatting(BaseModel):
    main_text: str = ""
    secondary_text: str = ""


class PlaceAutocomplete(BaseModel):
    """One autocomplete prediction, either from the provider or synthesized locally"""

    place_id: str
    description: str
    structured_formatting: StructuredFormatting = Field(default_factory=StructuredFormatting)
    types: list[str] = Field(default_factory=list)

    @property
    def main_text(self) -> str:
        return self.structured_formatting.main_text or self.description

    @property
    def secondary_text(self) -> str:
        return self.structured_formatting.secondary_text

    @property
    def is_fallback(self) -> bool:
        return self.place_id.startswith(FALLBACK_PLACE_PREFIX)


class LatLng(BaseModel):
    lat: float
    lng: float


class Geometry(BaseModel):
    location: LatLng


class PlaceDetails(BaseModel):
    place_id: str
    formatted_address: str
    geometry: Geometry
    name: str = ""
    types: list[str] = Field(default_factory=list)

    def to_location(self) -> LocationData:
        return LocationData(
            latitude=self.geometry.location.lat,
            longitude=self.geometry.location.lng,
            address=self.formatted_address,
        )


class TextValue(BaseModel):
    text: str
    value: int


class RouteStep(BaseModel):
    distance: TextValue
    duration: TextValue
    html_instructions: str = ""
    start_location: LatLng
    end_location: LatLng


class RouteLeg(BaseModel):
    distance: TextValue
    duration: TextValue
    start_address: str = ""
    end_address: str = ""
    steps: list[RouteStep] = Field(default_factory=list)


class OverviewPolyline(BaseModel):
    points: str


class Route(BaseModel):
    legs: list[RouteLeg] = Field(default_factory=list)
    overview_polyline: Optional[OverviewPolyline] = None
    summary: str = ""


class DirectionsResult(BaseModel):
    status: str
    routes: list[Route] = Field(default_factory=list)


class DistanceMatrixElement(BaseModel):
    status: str
    distance: Optional[TextValue] = None
    duration: Optional[TextValue] = None


class DistanceMatrixRow(BaseModel):
    elements: list[DistanceMatrixElement] = Field(default_factory=list)


class DistanceMatrixResult(BaseModel):
    status: str
    rows: list[DistanceMatrixRow] = Field(default_factory=list)
    origin_addresses: list[str] = Field(default_factory=list)
    destination_addresses: list[str] = Field(default_factory=list)


class NearbyCandidate(BaseModel):
    """A laundry master (or any provider) that may be close to a customer"""

    id: str
    label: str
    location: Optional[LocationData] = None


class RankedCandidate(BaseModel):
    id: str
    label: str
    location: LocationData
    distance: str
    duration: str
    distance_km: float


class LaundryBusiness(BaseModel):
    place_id: str
    name: str
    address: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    types: list[str] = Field(default_factory=list)
    geometry: Optional[Geometry] = None
    business_status: Optional[str] = None


class MapMarker(BaseModel):
    location: LocationData
    label: Optional[str] = None
    color: Optional[str] = None


class CacheEntry(BaseModel):
    address: str
    timestamp: float


class KeySelection(BaseModel):
    """Outcome of PlacesClient.initialize()"""

    api_key: Optional[str] = None
    source: Literal["configured", "probed", "none"]
    probed: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.api_key is not None


# ============================================================================
# SAME-ORIGIN PROXY RESPONSES
# ============================================================================


class PlacesProxyResponse(BaseModel):
    success: bool
    predictions: list[PlaceAutocomplete] = Field(default_factory=list)
    status: Optional[str] = None
    error: Optional[str] = None


class PlaceDetailsProxyResponse(BaseModel):
    success: bool
    result: Optional[PlaceDetails] = None
    status: Optional[str] = None
    error: Optional[str] = None


class ApiTestResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None
    http_status: Optional[int] = None
    results_count: int = 0


class LaundryBusinessesResponse(BaseModel):
    success: bool
    businesses: list[LaundryBusiness] = Field(default_factory=list)
    total_found: int = 0
