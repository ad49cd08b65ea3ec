from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.core.property_store import ContactMethod
from app.core.search_filters import SearchFilters, MapBounds, GeoPoint


class PointLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)


class MapBoundsRequest(BaseModel):
    north: float = Field(..., ge=-90, le=90)
    south: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)
    west: float = Field(..., ge=-180, le=180)

    def to_bounds(self) -> MapBounds:
        return MapBounds(north=self.north, south=self.south, east=self.east, west=self.west)


class PropertyFiltersRequest(BaseModel):
    """Non-geo filters shared by every discovery request."""
    location: Optional[str] = Field(default=None, max_length=200)
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    bedrooms: List[int] = Field(default_factory=list)
    property_types: List[str] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)

    def to_filters(self, **geo: Any) -> SearchFilters:
        return SearchFilters(
            location=self.location,
            price_min=self.price_min,
            price_max=self.price_max,
            bedrooms=list(self.bedrooms),
            property_types=list(self.property_types),
            amenities=list(self.amenities),
            **geo,
        )


class SearchRequest(PropertyFiltersRequest):
    """Listing / map search. Send `bounds` or `center`, not both."""
    bounds: Optional[MapBoundsRequest] = None
    center: Optional[PointLocation] = None
    radius_km: Optional[float] = None
    sort_by: str = "relevance"
    cursor: Optional[str] = None
    limit: Optional[int] = None

    def to_search_filters(self) -> SearchFilters:
        filters = self.to_filters(
            bounds=self.bounds.to_bounds() if self.bounds else None,
            center=self.center.to_point() if self.center else None,
            radius_km=self.radius_km,
        )
        filters.sort_by = self.sort_by
        filters.cursor = self.cursor
        filters.limit = self.limit
        return filters


class NearbySearchRequest(PropertyFiltersRequest):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius_km: Optional[float] = None
    sort_by: str = "distance"
    cursor: Optional[str] = None
    limit: Optional[int] = None

    def to_search_filters(self) -> SearchFilters:
        filters = self.to_filters(center=GeoPoint(lat=self.lat, lng=self.lng), radius_km=self.radius_km)
        filters.sort_by = self.sort_by
        filters.cursor = self.cursor
        filters.limit = self.limit
        return filters


class BoundsRequest(BaseModel):
    bounds: MapBoundsRequest
    filters: Optional[PropertyFiltersRequest] = None
    limit: int = Field(default=500, ge=1, le=1000)


class ClusterRequest(BaseModel):
    bounds: MapBoundsRequest
    zoom: float = Field(..., ge=0, le=22)
    filters: Optional[PropertyFiltersRequest] = None


class PropertyImageResponse(BaseModel):
    id: Optional[str] = None
    url: str
    alt: str
    is_primary: bool
    order: int

    class Config:
        from_attributes = True


class PropertyResponse(BaseModel):
    id: str
    title: str
    description: str
    property_type: Optional[str] = None
    address: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    price_amount: float
    currency: str
    price_period: str
    bedrooms: int
    bathrooms: int
    area_sqm: Optional[float] = None
    amenities: List[str]
    images: List[PropertyImageResponse]
    landlord_id: Optional[str] = None
    landlord_name: Optional[str] = None
    featured: bool
    view_count: int
    favorite_count: int
    contact_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    distance_km: Optional[float] = None

    class Config:
        from_attributes = True


class FacetSummaryResponse(BaseModel):
    neighborhoods: List[Dict[str, Any]]
    price_ranges: List[Dict[str, Any]]
    property_types: List[Dict[str, Any]]
    amenities: List[Dict[str, Any]]

    class Config:
        from_attributes = True


class SearchResponse(BaseModel):
    properties: List[PropertyResponse]
    total: int
    facets: FacetSummaryResponse
    next_cursor: Optional[str] = None
    has_more: bool
    mode: str


class ClusterResponse(BaseModel):
    id: str
    lat: float
    lng: float
    count: int
    min_price: float
    avg_price: float
    max_price: float
    property_ids: List[str]

    class Config:
        from_attributes = True


class AutocompleteSuggestionResponse(BaseModel):
    id: str
    text: str
    type: str
    icon: str
    subtitle: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class AutocompleteResponse(BaseModel):
    suggestions: List[AutocompleteSuggestionResponse]


class ViewEventRequest(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    source: str = "lista"


class ContactEventRequest(BaseModel):
    contact_method: ContactMethod = ContactMethod.WHATSAPP
    success: bool = True
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    phone_number: Optional[str] = None
    error_message: Optional[str] = None
    source: str = "modal"


class TrackingAccepted(BaseModel):
    accepted: bool = True
