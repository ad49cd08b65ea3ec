"""
In-process PropertyStore.

Holds property rows, favorites, events and neighborhoods in dictionaries.
Used for local development (PROPERTY_STORE=memory) and as the query
interface in tests. Every mutation runs under one lock so counter deltas and
favorite inserts are atomic, matching what the SQL store gets from Postgres.
"""

import copy
import logging
import math
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable, Tuple

from app.core.exceptions import DuplicateFavorite
from app.core.property_store import (
    PropertyStore, StorePage, FacetCounts, NeighborhoodMatch, Counter,
    PropertyViewEvent, PropertyContactEvent, FavoriteLink,
    bracket_label, to_bounds_row, to_radius_row,
)
from app.core.search_filters import (
    PropertyPredicate, MapBounds, GeoPoint, SortMode, SortPosition,
    SORT_KEYS, ordering_key, fold_text,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometers."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class InMemoryPropertyStore(PropertyStore):
    """Dictionary-backed store. Rows use the same keys as the SQL store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._properties: Dict[str, Dict[str, Any]] = {}
        self._favorites: Dict[Tuple[str, str], FavoriteLink] = {}
        self._neighborhoods: Dict[str, NeighborhoodMatch] = {}
        self.views: List[PropertyViewEvent] = []
        self.contacts: List[Tuple[PropertyContactEvent, datetime]] = []

    # ============================================================
    # Seeding
    # ============================================================

    def add_property(self, **fields: Any) -> str:
        now = datetime.now(timezone.utc)
        row = {
            "id": str(fields.pop("id", None) or uuid.uuid4()),
            "title": "",
            "description": "",
            "type": "apartment",
            "status": "active",
            "featured": False,
            "address": None,
            "neighborhood": None,
            "city": "Tegucigalpa",
            "latitude": None,
            "longitude": None,
            "price_amount": 0.0,
            "currency": "HNL",
            "price_period": "month",
            "bedrooms": 0,
            "bathrooms": 0,
            "area_sqm": None,
            "amenities": [],
            "images": [],
            "landlord_id": None,
            "landlord_name": None,
            "view_count": 0,
            "favorite_count": 0,
            "contact_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        row.update(fields)
        with self._lock:
            self._properties[row["id"]] = row
        return row["id"]

    def add_neighborhood(self, name: str, properties_count: int, city: Optional[str] = None) -> str:
        neighborhood_id = str(uuid.uuid4())
        with self._lock:
            self._neighborhoods[neighborhood_id] = NeighborhoodMatch(
                id=neighborhood_id, name=name, properties_count=properties_count, city=city,
            )
        return neighborhood_id

    def delete_property(self, property_id: str) -> None:
        """Remove a property and cascade its favorite links."""
        with self._lock:
            self._properties.pop(property_id, None)
            orphaned = [k for k in self._favorites if k[1] == property_id]
            for key in orphaned:
                del self._favorites[key]
        logger.info(f"Deleted property {property_id} with {len(orphaned)} favorites")

    def counters(self, property_id: str) -> Dict[str, int]:
        row = self._properties[property_id]
        return {c.value: row[c.value] for c in Counter}

    # ============================================================
    # Search
    # ============================================================

    def _matches(self, row: Dict[str, Any], predicate: PropertyPredicate) -> bool:
        if row.get("status") != "active":
            return False
        if row["id"] in predicate.exclude_ids:
            return False
        price = float(row.get("price_amount") or 0)
        if predicate.price_min is not None and price < predicate.price_min:
            return False
        if predicate.price_max is not None and price > predicate.price_max:
            return False
        if predicate.bedrooms and row.get("bedrooms") not in predicate.bedrooms:
            return False
        if predicate.property_types and row.get("type") not in predicate.property_types:
            return False
        if predicate.amenities:
            have = {a.lower() for a in row.get("amenities") or []}
            if not set(predicate.amenities) <= have:
                return False
        if predicate.text:
            haystack = " ".join(
                str(row.get(key) or "") for key in ("title", "description", "neighborhood")
            ).lower()
            if predicate.text.lower() not in haystack:
                return False
        return True

    def _page(
        self,
        rows: List[Dict[str, Any]],
        sort: SortMode,
        after: Optional[SortPosition],
        limit: int,
    ) -> List[Dict[str, Any]]:
        def key(row):
            values = tuple(row.get(name) for name, _ in SORT_KEYS[sort])
            return ordering_key(values, row["id"], sort)

        ordered = sorted(rows, key=key)
        if after is not None:
            start = ordering_key(after.values, after.id, sort)
            ordered = [row for row in ordered if key(row) > start]
        return ordered[:limit]

    def _snapshot(self, predicate: PropertyPredicate) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._properties.values() if self._matches(r, predicate)]

    async def list_properties(self, predicate, sort, after, limit) -> StorePage:
        rows = self._snapshot(predicate)
        return StorePage(rows=self._page(rows, sort, after, limit), total=len(rows))

    async def find_in_bounds(self, bounds: MapBounds, predicate, sort, after, limit) -> StorePage:
        rows = [
            r for r in self._snapshot(predicate)
            if r.get("latitude") is not None and r.get("longitude") is not None
            and bounds.contains(r["latitude"], r["longitude"])
        ]
        page = self._page(rows, sort, after, limit)
        return StorePage(rows=[to_bounds_row(r) for r in page], total=len(rows))

    async def find_within_radius(self, center: GeoPoint, radius_km, predicate, sort, after, limit) -> StorePage:
        nearby = []
        for row in self._snapshot(predicate):
            if row.get("latitude") is None or row.get("longitude") is None:
                continue
            distance = haversine_km(center.lat, center.lng, row["latitude"], row["longitude"])
            if distance <= radius_km:
                row["distance_km"] = distance
                nearby.append(row)
        page = self._page(nearby, sort, after, limit)
        return StorePage(
            rows=[to_radius_row(r, r["distance_km"]) for r in page],
            total=len(nearby),
        )

    async def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._properties.get(property_id)
            if row is None or row.get("status") != "active":
                return None
            return copy.deepcopy(row)

    async def property_exists(self, property_id: str) -> bool:
        with self._lock:
            return property_id in self._properties

    async def facet_counts(self, predicate, bounds, price_edges, center=None, radius_km=None) -> FacetCounts:
        facets = FacetCounts()
        for row in self._snapshot(predicate):
            if bounds is not None or center is not None:
                if row.get("latitude") is None or row.get("longitude") is None:
                    continue
                if bounds is not None and not bounds.contains(row["latitude"], row["longitude"]):
                    continue
                if center is not None and haversine_km(
                    center.lat, center.lng, row["latitude"], row["longitude"]
                ) > radius_km:
                    continue
            if row.get("neighborhood"):
                facets.neighborhoods[row["neighborhood"]] = facets.neighborhoods.get(row["neighborhood"], 0) + 1
            facets.property_types[row["type"]] = facets.property_types.get(row["type"], 0) + 1
            for amenity in row.get("amenities") or []:
                facets.amenities[amenity] = facets.amenities.get(amenity, 0) + 1
            label = bracket_label(price_edges, float(row.get("price_amount") or 0))
            facets.price_brackets[label] = facets.price_brackets.get(label, 0) + 1
        return facets

    async def match_neighborhoods(self, text: str, limit: int) -> List[NeighborhoodMatch]:
        needle = fold_text(text)
        with self._lock:
            matches = [n for n in self._neighborhoods.values() if needle in fold_text(n.name)]
        matches.sort(key=lambda n: (-n.properties_count, n.name))
        return matches[:limit]

    # ============================================================
    # Engagement
    # ============================================================

    async def increment_counter(self, property_id: str, counter: Counter, delta: int) -> bool:
        with self._lock:
            row = self._properties.get(property_id)
            if row is None:
                return False
            row[counter.value] = max(0, row[counter.value] + delta)
            return True

    async def record_view(self, event: PropertyViewEvent) -> None:
        with self._lock:
            self.views.append(event)

    async def record_contact(self, event: PropertyContactEvent) -> None:
        with self._lock:
            self.contacts.append((event, datetime.now(timezone.utc)))

    # ============================================================
    # Favorites
    # ============================================================

    async def favorite_exists(self, user_id: str, property_id: str) -> bool:
        with self._lock:
            return (user_id, property_id) in self._favorites

    async def insert_favorite(self, user_id: str, property_id: str) -> FavoriteLink:
        with self._lock:
            if (user_id, property_id) in self._favorites:
                raise DuplicateFavorite(f"Favorite already exists: {user_id}/{property_id}")
            link = FavoriteLink(
                id=str(uuid.uuid4()),
                user_id=user_id,
                property_id=property_id,
                created_at=datetime.now(timezone.utc),
            )
            self._favorites[(user_id, property_id)] = link
            return link

    async def delete_favorite(self, user_id: str, property_id: str) -> bool:
        with self._lock:
            return self._favorites.pop((user_id, property_id), None) is not None

    async def list_favorites(self, user_id: str) -> List[FavoriteLink]:
        with self._lock:
            links = [
                FavoriteLink(
                    id=link.id,
                    user_id=link.user_id,
                    property_id=link.property_id,
                    created_at=link.created_at,
                    property=copy.deepcopy(self._properties.get(link.property_id)),
                )
                for link in self._favorites.values()
                if link.user_id == user_id
            ]
        links.sort(key=lambda l: l.created_at, reverse=True)
        return links

    async def contacted_property_ids(
        self, user_id: str, property_ids: Iterable[str]
    ) -> Dict[str, datetime]:
        wanted = set(property_ids)
        contacted: Dict[str, datetime] = {}
        with self._lock:
            for event, at in self.contacts:
                if event.user_id != user_id or not event.success or event.property_id not in wanted:
                    continue
                if event.property_id not in contacted or at < contacted[event.property_id]:
                    contacted[event.property_id] = at
        return contacted
