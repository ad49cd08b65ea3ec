"""
Property store query interface.

Everything discovery needs from the database goes through PropertyStore:
filtered listing queries, viewport and radius geo queries, atomic counter
deltas, favorite links, neighborhood matching and engagement event rows.

Two implementations ship with the backend:
- SqlPropertyStore: PostgreSQL + PostGIS (production)
- InMemoryPropertyStore: process-local (local development and tests)

Rows are returned as plain dicts. Different query shapes return different
keys (e.g. radius queries carry `distance_km`); SearchService normalizes them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Iterable

from app.core.search_filters import (
    PropertyPredicate, MapBounds, GeoPoint, SortMode, SortPosition,
)


class Counter(str, Enum):
    VIEWS = "view_count"
    FAVORITES = "favorite_count"
    CONTACTS = "contact_count"


class ContactMethod(str, Enum):
    WHATSAPP = "whatsapp"
    PHONE = "phone"
    EMAIL = "email"


@dataclass
class StorePage:
    rows: List[Dict[str, Any]]
    total: int


@dataclass
class FacetCounts:
    neighborhoods: Dict[str, int] = field(default_factory=dict)
    property_types: Dict[str, int] = field(default_factory=dict)
    amenities: Dict[str, int] = field(default_factory=dict)
    price_brackets: Dict[str, int] = field(default_factory=dict)


@dataclass
class NeighborhoodMatch:
    id: str
    name: str
    properties_count: int
    city: Optional[str] = None


@dataclass
class PropertyViewEvent:
    property_id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    source: str = "lista"


@dataclass
class PropertyContactEvent:
    property_id: str
    contact_method: ContactMethod = ContactMethod.WHATSAPP
    success: bool = True
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    phone_number: Optional[str] = None
    error_message: Optional[str] = None
    source: str = "modal"


@dataclass
class FavoriteLink:
    id: str
    user_id: str
    property_id: str
    created_at: datetime
    property: Optional[Dict[str, Any]] = None


def bracket_label(edges: List[int], price: float) -> str:
    """Label of the price bracket `price` falls in, e.g. '5000-10000' or '25000+'."""
    ordered = sorted(edges)
    for low, high in zip(ordered, ordered[1:]):
        if low <= price < high:
            return f"{low}-{high}"
    if ordered and price >= ordered[-1]:
        return f"{ordered[-1]}+"
    return f"<{ordered[0]}" if ordered else "all"


class PropertyStore(ABC):
    """
    Query interface over property records.

    Implementations raise StoreError when a query cannot be completed and
    DuplicateFavorite when a (user, property) link already exists. Counter
    changes are applied as atomic deltas inside the store, never as
    read-modify-write by the caller.
    """

    # ============ Search ============

    @abstractmethod
    async def list_properties(
        self,
        predicate: PropertyPredicate,
        sort: SortMode,
        after: Optional[SortPosition],
        limit: int,
    ) -> StorePage:
        ...

    @abstractmethod
    async def find_in_bounds(
        self,
        bounds: MapBounds,
        predicate: PropertyPredicate,
        sort: SortMode,
        after: Optional[SortPosition],
        limit: int,
    ) -> StorePage:
        ...

    @abstractmethod
    async def find_within_radius(
        self,
        center: GeoPoint,
        radius_km: float,
        predicate: PropertyPredicate,
        sort: SortMode,
        after: Optional[SortPosition],
        limit: int,
    ) -> StorePage:
        """Rows carry `distance_km` from the center."""
        ...

    @abstractmethod
    async def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def property_exists(self, property_id: str) -> bool:
        ...

    @abstractmethod
    async def facet_counts(
        self,
        predicate: PropertyPredicate,
        bounds: Optional[MapBounds],
        price_edges: List[int],
        center: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
    ) -> FacetCounts:
        """Counts over the same rows the search returns: viewport, circle or whole catalog."""
        ...

    @abstractmethod
    async def match_neighborhoods(self, text: str, limit: int) -> List[NeighborhoodMatch]:
        """Substring match ignoring case and accents, most properties first."""
        ...

    # ============ Engagement ============

    @abstractmethod
    async def increment_counter(self, property_id: str, counter: Counter, delta: int) -> bool:
        """Apply `delta` atomically, never below zero. False if the property is unknown."""
        ...

    @abstractmethod
    async def record_view(self, event: PropertyViewEvent) -> None:
        ...

    @abstractmethod
    async def record_contact(self, event: PropertyContactEvent) -> None:
        ...

    # ============ Favorites ============

    @abstractmethod
    async def favorite_exists(self, user_id: str, property_id: str) -> bool:
        ...

    @abstractmethod
    async def insert_favorite(self, user_id: str, property_id: str) -> FavoriteLink:
        ...

    @abstractmethod
    async def delete_favorite(self, user_id: str, property_id: str) -> bool:
        """False when there was nothing to delete."""
        ...

    @abstractmethod
    async def list_favorites(self, user_id: str) -> List[FavoriteLink]:
        """Newest first, with the property row attached."""
        ...

    @abstractmethod
    async def contacted_property_ids(
        self, user_id: str, property_ids: Iterable[str]
    ) -> Dict[str, datetime]:
        """Earliest successful contact per property, in one query for the whole id set."""
        ...


def to_bounds_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Shape of a viewport query row: slim marker data, no distance."""
    return {
        "property_id": row["id"],
        "title": row.get("title"),
        "property_type": row.get("type"),
        "neighborhood": row.get("neighborhood"),
        "lat": row.get("latitude"),
        "lng": row.get("longitude"),
        "price_amount": row.get("price_amount"),
        "currency": row.get("currency"),
        "bedrooms": row.get("bedrooms"),
        "bathrooms": row.get("bathrooms"),
        "area_sqm": row.get("area_sqm"),
        "amenities": row.get("amenities"),
        "images": row.get("images"),
        "featured": row.get("featured"),
        "view_count": row.get("view_count"),
        "favorite_count": row.get("favorite_count"),
        "landlord_name": row.get("landlord_name"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }


def to_radius_row(row: Dict[str, Any], distance_km: float) -> Dict[str, Any]:
    """Shape of a radius query row: price under `price`, distance attached."""
    return {
        "property_id": row["id"],
        "title": row.get("title"),
        "type": row.get("type"),
        "address": row.get("address"),
        "neighborhood": row.get("neighborhood"),
        "lat": row.get("latitude"),
        "lng": row.get("longitude"),
        "price": row.get("price_amount"),
        "currency": row.get("currency"),
        "bedrooms": row.get("bedrooms"),
        "bathrooms": row.get("bathrooms"),
        "area_sqm": row.get("area_sqm"),
        "amenities": row.get("amenities"),
        "images": row.get("images"),
        "featured": row.get("featured"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
        "distance_km": distance_km,
    }
