"""
Geospatial Search Dispatcher

Executes one compiled search against the property store:
1. Bounded - everything inside the map viewport, plus non-geo filters
2. Radius - everything within N km of a point, with distance attached
3. Listing - filters + sort only (text / amenity searches)

Key Design:
- All three shapes return a unified PropertyResult
- Keyset pagination: the cursor carries the last sort values + id, so pages
  never skip or repeat rows when listings are inserted between requests
- Store failures and timeouts raise SearchUnavailable; a failing store is
  never reported as "no matches"
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Awaitable, Tuple

from app.core.config import Settings
from app.core.exceptions import SearchUnavailable
from app.core.property_store import PropertyStore, FacetCounts
from app.core.search_filters import (
    CompiledQuery, QueryMode, SortMode, SortPosition, MapBounds, PropertyPredicate,
    SORT_KEYS, encode_position,
)

logger = logging.getLogger(__name__)


@dataclass
class PropertyImage:
    id: Optional[str]
    url: str
    alt: str
    is_primary: bool = False
    order: int = 0


@dataclass
class PropertyResult:
    """A single property as returned by every discovery read path."""
    id: str
    title: str
    property_type: Optional[str]
    lat: Optional[float]
    lng: Optional[float]
    price_amount: float
    currency: str = "HNL"
    price_period: str = "month"
    description: str = ""
    address: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    bedrooms: int = 0
    bathrooms: int = 0
    area_sqm: Optional[float] = None
    amenities: List[str] = field(default_factory=list)
    images: List[PropertyImage] = field(default_factory=list)
    landlord_id: Optional[str] = None
    landlord_name: Optional[str] = None
    featured: bool = False
    view_count: int = 0
    favorite_count: int = 0
    contact_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    distance_km: Optional[float] = None


@dataclass
class FacetSummary:
    neighborhoods: List[Dict[str, Any]] = field(default_factory=list)
    price_ranges: List[Dict[str, Any]] = field(default_factory=list)
    property_types: List[Dict[str, Any]] = field(default_factory=list)
    amenities: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SearchPage:
    properties: List[PropertyResult]
    total: int
    next_cursor: Optional[str]
    mode: QueryMode


@dataclass
class SearchResults:
    """Result of a search operation."""
    properties: List[PropertyResult]
    total: int
    facets: FacetSummary
    next_cursor: Optional[str]
    mode: QueryMode


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _raw_distance_km(row: Dict[str, Any]) -> Optional[float]:
    if row.get("distance_km") is not None:
        return float(row["distance_km"])
    if row.get("distance_meters") is not None:
        return float(row["distance_meters"]) / 1000.0
    return None


def normalize_images(raw_images: Optional[List[Dict[str, Any]]], title: str) -> List[PropertyImage]:
    """Order images and make sure exactly one is primary."""
    images = [
        PropertyImage(
            id=str(img["id"]) if img.get("id") is not None else None,
            url=img.get("url") or img.get("image_url") or "",
            alt=img.get("alt") or img.get("alt_text") or title,
            is_primary=bool(img.get("is_primary")),
            order=int(img.get("order", img.get("display_order")) or 0),
        )
        for img in (raw_images or [])
        if isinstance(img, dict)
    ]
    images.sort(key=lambda img: (img.order, img.id or ""))
    if not images:
        return images

    primary_index = next((i for i, img in enumerate(images) if img.is_primary), 0)
    for i, img in enumerate(images):
        img.is_primary = i == primary_index
    return images


class SearchService:
    """
    Routes compiled queries to the store and normalizes what comes back.
    """

    def __init__(self, store: PropertyStore, config: Settings):
        self.store = store
        self.config = config
        self.timeout = config.STORE_TIMEOUT_SECONDS

    async def _call(self, operation: str, awaitable: Awaitable):
        """Run one store call under the store timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store timeout after {self.timeout}s: {operation}")
            raise SearchUnavailable(f"{operation} timed out")
        except SearchUnavailable:
            raise
        except Exception as e:
            logger.error(f"Store error during {operation}: {e}")
            raise SearchUnavailable(f"{operation} failed") from e

    # ============================================================
    # MAIN ENTRY POINT
    # ============================================================

    async def execute(self, query: CompiledQuery) -> SearchPage:
        """
        Execute exactly one query shape for a compiled search.

        Asks the store for one row more than the page size; if it arrives
        there is a next page and the cursor points at the last returned row.
        """
        logger.info(f"🔍 Search: mode={query.mode.value}, sort={query.sort.value}, limit={query.limit}")

        fetch = query.limit + 1
        if query.mode == QueryMode.BOUNDED:
            page = await self._call(
                "bounds search",
                self.store.find_in_bounds(query.bounds, query.predicate, query.sort, query.after, fetch),
            )
        elif query.mode == QueryMode.RADIUS:
            page = await self._call(
                "radius search",
                self.store.find_within_radius(
                    query.center, query.radius_km, query.predicate, query.sort, query.after, fetch,
                ),
            )
        else:
            page = await self._call(
                "listing search",
                self.store.list_properties(query.predicate, query.sort, query.after, fetch),
            )

        rows = page.rows[:query.limit]
        properties = [self.row_to_result(row, query.mode) for row in rows]

        next_cursor = None
        if len(page.rows) > query.limit and rows:
            last = rows[-1]
            position = SortPosition(
                values=self._sort_values(last, query.sort),
                id=str(last.get("id") or last.get("property_id")),
            )
            next_cursor = encode_position(position, query.sort, query.fingerprint, self.config)

        logger.info(f"   ✅ {len(properties)} of {page.total} properties, more={next_cursor is not None}")

        return SearchPage(
            properties=properties,
            total=page.total,
            next_cursor=next_cursor,
            mode=query.mode,
        )

    async def get_property(self, property_id: str) -> Optional[PropertyResult]:
        """None when the property does not exist; SearchUnavailable when the store fails."""
        row = await self._call("property detail", self.store.get_property(property_id))
        if row is None:
            return None
        return self.row_to_result(row, QueryMode.LISTING)

    async def get_properties_in_bounds(
        self,
        bounds: MapBounds,
        predicate: PropertyPredicate,
        limit: int,
    ) -> List[PropertyResult]:
        limit = min(max(int(limit), 1), self.config.BOUNDS_MAX_LIMIT)
        page = await self._call(
            "bounds query",
            self.store.find_in_bounds(bounds, predicate, SortMode.RELEVANCE, None, limit),
        )
        return [self.row_to_result(row, QueryMode.BOUNDED) for row in page.rows]

    async def get_similar_properties(self, base: PropertyResult, limit: int = 6) -> List[PropertyResult]:
        """Same type, bedrooms within one, price within 30%."""
        bedrooms = tuple(sorted({max(0, base.bedrooms - 1), base.bedrooms, base.bedrooms + 1}))
        predicate = PropertyPredicate(
            price_min=float(math.floor(base.price_amount * 0.7)),
            price_max=float(math.ceil(base.price_amount * 1.3)),
            bedrooms=bedrooms,
            property_types=(base.property_type,) if base.property_type else (),
            exclude_ids=(base.id,),
        )
        page = await self._call(
            "similar properties",
            self.store.list_properties(predicate, SortMode.RELEVANCE, None, limit),
        )
        return [self.row_to_result(row, QueryMode.LISTING) for row in page.rows]

    async def get_facets(self, query: CompiledQuery) -> FacetSummary:
        counts: FacetCounts = await self._call(
            "facet counts",
            self.store.facet_counts(
                query.predicate, query.bounds, self.config.PRICE_BRACKETS,
                center=query.center, radius_km=query.radius_km,
            ),
        )
        return self._facets_to_summary(counts)

    # ============================================================
    # Normalization
    # ============================================================

    def _sort_values(self, row: Dict[str, Any], sort: SortMode) -> Tuple[Any, ...]:
        values = []
        for name, _ in SORT_KEYS[sort]:
            if name == "price_amount":
                value = row.get("price_amount", row.get("price"))
                value = float(value) if value is not None else None
            elif name == "distance_km":
                value = _raw_distance_km(row)
            elif name == "created_at":
                value = _parse_datetime(row.get("created_at"))
            elif name == "featured":
                value = bool(row.get("featured"))
            else:
                value = row.get(name)
            values.append(value)
        return tuple(values)

    def row_to_result(self, row: Dict[str, Any], mode: QueryMode) -> PropertyResult:
        """Convert any store row shape to PropertyResult."""
        title = row.get("title") or ""
        price = row.get("price_amount", row.get("price"))
        lat = row.get("latitude", row.get("lat"))
        lng = row.get("longitude", row.get("lng"))

        distance = None
        if mode == QueryMode.RADIUS:
            raw = _raw_distance_km(row)
            distance = round(raw, 1) if raw is not None else None

        return PropertyResult(
            id=str(row.get("id") or row.get("property_id")),
            title=title,
            description=row.get("description") or "",
            property_type=row.get("type") or row.get("property_type"),
            address=row.get("address"),
            neighborhood=row.get("neighborhood"),
            city=row.get("city"),
            lat=float(lat) if lat is not None else None,
            lng=float(lng) if lng is not None else None,
            price_amount=float(price or 0),
            currency=row.get("currency") or "HNL",
            price_period=row.get("price_period") or "month",
            bedrooms=int(row.get("bedrooms") or 0),
            bathrooms=int(row.get("bathrooms") or 0),
            area_sqm=float(row["area_sqm"]) if row.get("area_sqm") is not None else None,
            amenities=list(row.get("amenities") or []),
            images=normalize_images(row.get("images"), title),
            landlord_id=str(row["landlord_id"]) if row.get("landlord_id") else None,
            landlord_name=row.get("landlord_name") or "Propietario",
            featured=bool(row.get("featured")),
            view_count=int(row.get("view_count") or 0),
            favorite_count=int(row.get("favorite_count") or 0),
            contact_count=int(row.get("contact_count") or 0),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
            distance_km=distance,
        )

    def _facets_to_summary(self, counts: FacetCounts) -> FacetSummary:
        def ranked(mapping: Dict[str, int], label: str) -> List[Dict[str, Any]]:
            items = sorted(mapping.items(), key=lambda item: (-item[1], item[0]))
            return [{label: name, "count": count} for name, count in items]

        edges = sorted(self.config.PRICE_BRACKETS)
        labels = [f"{low}-{high}" for low, high in zip(edges, edges[1:])]
        if edges:
            labels.append(f"{edges[-1]}+")

        return FacetSummary(
            neighborhoods=ranked(counts.neighborhoods, "name"),
            price_ranges=[{"range": label, "count": counts.price_brackets.get(label, 0)} for label in labels],
            property_types=ranked(counts.property_types, "type"),
            amenities=ranked(counts.amenities, "amenity"),
        )
